"""Pydantic schemas for admin authentication."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Credentials; both fields are checked by the route so it can answer 400."""

    email: Optional[str] = Field(None, description="Admin email")
    password: Optional[str] = Field(None, description="Admin password")


class AdminOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool = True
    last_login_at: Optional[datetime] = None


class LoginResponse(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "access_token": "eyJhbGciOiJIUzI1NiIs...",
                "token_type": "bearer",
                "expires_at": "2024-01-01T13:00:00",
                "admin": {
                    "id": "5f0c6b8e-2f4f-4d7e-9d1b-0f5b2d8d9a11",
                    "email": "ops@example.com",
                    "role": "ops",
                },
            }
        }
    )

    success: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    admin: AdminOut
