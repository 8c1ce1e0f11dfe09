"""
Notification type classification.

Fixed table: refunds, the three purchase-class types, everything else ignored.
"""

from appstore_notifier.models.domain import ClassifiedAction

REFUND_NOTIFICATION_TYPE = "REFUND"

PURCHASE_NOTIFICATION_TYPES: frozenset[str] = frozenset(
    {
        "SUBSCRIBED",
        "DID_RENEW",
        "ONE_TIME_CHARGE",
    }
)


def classify_notification_type(notification_type: str) -> ClassifiedAction:
    """Map an App Store notificationType onto the action taxonomy."""
    if notification_type == REFUND_NOTIFICATION_TYPE:
        return ClassifiedAction.REFUND

    if notification_type in PURCHASE_NOTIFICATION_TYPES:
        return ClassifiedAction.PURCHASE

    return ClassifiedAction.IGNORE
