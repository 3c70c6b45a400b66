# automation_server/schemas/push.py
from typing import Optional

from pydantic import BaseModel, Field


class PushTokenRequest(BaseModel):
    """Register a device for push notifications."""

    token: str = Field(..., min_length=1, description="Device registration token")
    owner: Optional[str] = Field(None, description="Optional owner identifier")


class PushTokenResponse(BaseModel):
    token: str
    owner: Optional[str] = None
