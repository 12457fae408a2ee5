"""
CallRecord model - voice-agent call history.

Written by the telephony pipeline; read here only by the call-spike detector.
"""

import uuid
from sqlalchemy import Column, String, DateTime, Integer, Index
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class CallRecord(Base):
    """One inbound or outbound voice-agent call."""

    __tablename__ = "call_history"
    __table_args__ = (
        Index("ix_call_history_user_start", "user_id", "call_start_time"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False)
    agent_id = Column(String, nullable=True, index=True)
    call_start_time = Column(DateTime, nullable=False)
    duration_seconds = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<CallRecord user={self.user_id} agent={self.agent_id} at {self.call_start_time}>"
