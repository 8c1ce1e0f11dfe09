"""
Subscription state record persisted in the key-value store.

Stored as camelCase JSON text. Reading is decode-or-absent: anything that
does not validate as a complete record is treated as no prior state.
"""

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError
from pydantic.alias_generators import to_camel


class SubscriptionState(BaseModel):
    """Rolling summary of one subscription (keyed by original transaction id)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    saw_free_trial: StrictBool
    did_renew_count: int = Field(ge=0)
    notification_count: int = Field(ge=0)
    first_seen_at: int
    updated_at: int
    first_notification_type: str = Field(min_length=1)
    last_notification_type: str = Field(min_length=1)
    original_purchase_date: int | None = None
    first_purchase_date: int | None = None
    last_purchase_date: int | None = None

    def to_json(self) -> str:
        """Serialize for storage."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


def parse_subscription_state(raw: str | bytes | None) -> SubscriptionState | None:
    """Decode a stored record, or None if absent or malformed."""
    if raw is None:
        return None
    try:
        return SubscriptionState.model_validate_json(raw)
    except ValidationError:
        return None
