"""
Pydantic models for inbound webhook responses.

Successful deliveries receive WebhookResponse; rejections produced by the
signature guard receive WebhookError with a human-readable reason.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class WebhookResponse(BaseModel):
    """Standard response for an accepted webhook delivery."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "received",
                "provider": "twilio",
                "message": None,
            }
        }
    )

    status: str = Field("received", description="Response status")
    provider: Optional[str] = Field(None, description="Resolved provider name")
    message: Optional[str] = Field(None, description="Optional message")


class WebhookError(BaseModel):
    """
    Webhook rejection body.

    Status codes:
    - 401: signature missing or invalid
    - 403: caller IP not in the setting's allowlist
    - 429: per-endpoint rate limit exceeded
    - 500: validation failed internally (request rejected)
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"error": "Invalid webhook signature"}
        }
    )

    error: str = Field(..., description="Rejection reason")
