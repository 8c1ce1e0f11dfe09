"""
Domain Models - Internal models using immutable dataclasses.

A VerifiedNotification only exists after signature verification and the
tenant bundle binding check have both passed.
"""

from dataclasses import dataclass
from enum import Enum

UNKNOWN_ENVIRONMENT = "UNKNOWN"


class ClassifiedAction(str, Enum):
    """What the pipeline does with a notification type."""

    PURCHASE = "PURCHASE"
    REFUND = "REFUND"
    IGNORE = "IGNORE"


class LifecycleHint(str, Enum):
    """Coarse subscription lifecycle stage inferred from stored history."""

    TRIAL_START = "TRIAL_START"
    FIRST_PAID_AFTER_TRIAL = "FIRST_PAID_AFTER_TRIAL"
    RENEWAL = "RENEWAL"


class PipelineResult(str, Enum):
    """Terminal outcomes of one webhook delivery."""

    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    IGNORED = "IGNORED"
    DEDUPED = "DEDUPED"
    PUSHED = "PUSHED"
    INFRA_ERROR = "INFRA_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


@dataclass(frozen=True)
class PushTarget:
    """Pushover routing for one tenant."""

    user_key: str
    device: str | None = None

    def __post_init__(self) -> None:
        """Validate routing fields."""
        if not self.user_key:
            raise ValueError("Pushover user key is required")


@dataclass(frozen=True)
class TenantConfig:
    """One configured App Store application.

    When bundle_id is set it pins the tenant: an envelope that decodes to a
    different bundle id is rejected even if its signature verifies.
    """

    app_apple_id: int
    push_target: PushTarget
    bundle_id: str | None = None
    position: int = 0

    def __post_init__(self) -> None:
        """Validate tenant fields."""
        if self.app_apple_id <= 0:
            raise ValueError(f"App Apple ID must be positive: {self.app_apple_id}")
        if self.bundle_id is not None and not self.bundle_id:
            raise ValueError("bundle_id cannot be empty when set")

    @property
    def identity(self) -> str:
        """Bundle id when pinned, else the configured position."""
        return self.bundle_id or f"#{self.position}"


@dataclass(frozen=True)
class DecodedTransactionInfo:
    """Selected fields of a verified JWS transaction.

    price is in milli-units of the currency (29990 == 29.99).
    Dates are epoch milliseconds.
    """

    product_id: str | None = None
    transaction_id: str | None = None
    original_transaction_id: str | None = None
    price: int | float | None = None
    currency: str | None = None
    purchase_date: int | None = None
    original_purchase_date: int | None = None
    offer_discount_type: str | None = None
    offer_type: int | None = None
    transaction_reason: str | None = None

    def has_free_trial(self) -> bool:
        """Check if the transaction was bought with a free-trial offer."""
        return self.offer_discount_type == "FREE_TRIAL"


@dataclass(frozen=True)
class VerifiedNotification:
    """Normalized App Store Server Notification V2."""

    notification_uuid: str
    notification_type: str
    subtype: str | None
    environment: str
    bundle_id: str
    app_apple_id: int
    push_target: PushTarget
    signed_transaction_info: str | None = None
    transaction_info: DecodedTransactionInfo | None = None


@dataclass(frozen=True)
class PipelineOutcome:
    """Result of running one envelope through the pipeline."""

    result: PipelineResult
    notification: VerifiedNotification | None = None
    lifecycle_hint: LifecycleHint | None = None
    error: str | None = None
