"""
API Models - Pydantic models for the webhook surface.
"""

from pydantic import BaseModel, Field, field_validator


class AppStoreNotificationBody(BaseModel):
    """Body posted by App Store Server Notifications V2."""

    signed_payload: str = Field(..., alias="signedPayload", min_length=1)

    @field_validator("signed_payload")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only payloads."""
        if not v.strip():
            raise ValueError("signedPayload cannot be blank")
        return v


class WebhookResult(BaseModel):
    """Webhook response body. Unset flags are omitted from the JSON."""

    ok: bool
    ignored: bool | None = None
    deduped: bool | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    service: str
    version: str
