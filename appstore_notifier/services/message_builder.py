"""
Push message text for purchase and refund alerts.
"""

from dataclasses import dataclass
from decimal import Decimal

from appstore_notifier.models.domain import (
    ClassifiedAction,
    LifecycleHint,
    VerifiedNotification,
)

PURCHASE_TITLE = "In-App Kauf"
REFUND_TITLE = "Refund"
NOT_AVAILABLE = "n/a"

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class PushMessage:
    """Title and body of one alert."""

    title: str
    message: str


def short_transaction_id(transaction_id: str | None) -> str:
    """Abbreviate long ids to first6...last4."""
    if not transaction_id:
        return NOT_AVAILABLE
    if len(transaction_id) <= 12:
        return transaction_id
    return f"{transaction_id[:6]}...{transaction_id[-4:]}"


def format_amount(price: int | float | None, currency: str | None) -> str | None:
    """
    Render an App Store milli-unit price.

    29990 with EUR renders as "29.99 EUR". Returns None without a price.
    """
    if price is None:
        return None

    amount = Decimal(str(price)) / 1000
    if amount == amount.quantize(_CENT):
        text = f"{amount:.2f}"
    else:
        text = f"{amount:.3f}"

    return f"{text} {currency}" if currency else text


def build_push_message(
    action: ClassifiedAction,
    notification: VerifiedNotification,
    lifecycle_hint: LifecycleHint | None = None,
) -> PushMessage:
    """Summarize a notification as ` | `-joined key=value parts."""
    if action == ClassifiedAction.IGNORE:
        raise ValueError("Ignored notifications are not pushed")

    title = PURCHASE_TITLE if action == ClassifiedAction.PURCHASE else REFUND_TITLE
    transaction = notification.transaction_info

    parts = [
        f"app={notification.bundle_id}",
        f"type={notification.notification_type}",
    ]
    if notification.subtype:
        parts.append(f"subtype={notification.subtype}")
    parts.extend(
        [
            f"product={(transaction.product_id if transaction else None) or NOT_AVAILABLE}",
            f"env={notification.environment}",
            f"tx={short_transaction_id(transaction.transaction_id if transaction else None)}",
        ]
    )

    if transaction and transaction.transaction_reason:
        parts.append(f"reason={transaction.transaction_reason}")
    if transaction and transaction.offer_discount_type:
        parts.append(f"offer={transaction.offer_discount_type}")
    if lifecycle_hint:
        parts.append(f"lifecycle={lifecycle_hint.value}")

    amount = format_amount(
        transaction.price if transaction else None,
        transaction.currency if transaction else None,
    )
    if amount is not None:
        parts.append(f"amount={amount}")

    return PushMessage(title=title, message=" | ".join(parts))
