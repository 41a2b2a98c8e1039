from typing import Literal, Optional

from pydantic import BaseModel


class WebhookAccepted(BaseModel):
    success: bool = True
    request_id: str


class WebhookIgnored(BaseModel):
    status: Literal["ignored", "acknowledged"]
    reason: str
    request_id: str


class WebhookRateLimited(BaseModel):
    success: bool = False
    reason: str = "rate_limited"
    request_id: str
    retry_after_seconds: int


class WebhookFailed(BaseModel):
    success: bool = False
    error: str = "Processing failed"
    request_id: Optional[str] = None
