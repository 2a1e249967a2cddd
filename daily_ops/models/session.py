"""Session model. Sessions live in memory only and are never persisted."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Session(BaseModel):
    """An opaque bearer token bound to a user."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    token: str = Field(..., min_length=1)
    user_id: str
    created_at: datetime
    updated_at: datetime
    expires_at: int = Field(..., description="Expiry as epoch milliseconds")

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at < now_ms
