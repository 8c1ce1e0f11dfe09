"""
Notification Decoder - signed envelope to VerifiedNotification.

The nested signedTransactionInfo is verified with the same verifier that
accepted the outer envelope, so both halves come from one tenant and one
environment.
"""

from collections.abc import Sequence
from typing import Any

from structlog import get_logger

from appstore_notifier.exceptions import InvalidPayloadError, NotificationVerificationError
from appstore_notifier.models.domain import (
    DecodedTransactionInfo,
    TenantConfig,
    VerifiedNotification,
)
from appstore_notifier.services.signed_payload import (
    read_environment,
    read_field,
    read_int,
    read_number,
    read_string,
)
from appstore_notifier.services.verifier_resolver import VerifierResolver

logger = get_logger(__name__)


def _require_string(payload: Any, field: str) -> str:
    value = read_string(payload, field)
    if value is None:
        raise InvalidPayloadError(f"Apple payload is missing required field '{field}'", field=field)
    return value


def parse_transaction_info(decoded: Any) -> DecodedTransactionInfo:
    """Map a verified JWS transaction onto DecodedTransactionInfo."""
    return DecodedTransactionInfo(
        product_id=read_string(decoded, "productId"),
        transaction_id=read_string(decoded, "transactionId"),
        original_transaction_id=read_string(decoded, "originalTransactionId"),
        price=read_number(decoded, "price"),
        currency=read_string(decoded, "currency"),
        purchase_date=read_int(decoded, "purchaseDate"),
        original_purchase_date=read_int(decoded, "originalPurchaseDate"),
        offer_discount_type=read_string(decoded, "offerDiscountType"),
        offer_type=read_int(decoded, "offerType"),
        transaction_reason=read_string(decoded, "transactionReason"),
    )


class NotificationDecoder:
    """Turns a raw signed envelope into a normalized notification."""

    def __init__(self, resolver: VerifierResolver) -> None:
        self._resolver = resolver

    def decode(self, signed_payload: str, tenants: Sequence[TenantConfig]) -> VerifiedNotification:
        """
        Verify and decode an App Store Server Notification V2.

        Args:
            signed_payload: Raw JWS envelope
            tenants: Ordered tenants to resolve against

        Returns:
            Verified, normalized notification

        Raises:
            NotificationVerificationError: If no tenant verifies the envelope
                or the signed transaction fails verification
            InvalidPayloadError: If a required field is missing
        """
        resolved = self._resolver.resolve(signed_payload, tenants)
        payload = resolved.payload

        notification_uuid = _require_string(payload, "notificationUUID")
        notification_type = _require_string(payload, "notificationType")

        if resolved.bundle_id is None:
            raise InvalidPayloadError(
                "Apple payload is missing required field 'bundleId' "
                "(expected at payload.bundleId or payload.data.bundleId)",
                field="bundleId",
            )

        data = read_field(payload, "data")
        signed_transaction_info = read_string(data, "signedTransactionInfo")

        transaction_info: DecodedTransactionInfo | None = None
        if signed_transaction_info:
            try:
                decoded = resolved.verifier.verify_and_decode_signed_transaction(signed_transaction_info)
            except Exception as exc:
                raise NotificationVerificationError(
                    f"signedTransactionInfo failed verification for {notification_uuid}", last_error=exc
                ) from exc
            transaction_info = parse_transaction_info(decoded)

        notification = VerifiedNotification(
            notification_uuid=notification_uuid,
            notification_type=notification_type,
            subtype=read_string(payload, "subtype"),
            environment=read_environment(payload),
            bundle_id=resolved.bundle_id,
            app_apple_id=resolved.tenant.app_apple_id,
            push_target=resolved.tenant.push_target,
            signed_transaction_info=signed_transaction_info,
            transaction_info=transaction_info,
        )

        logger.info(
            "apple_notification_verified",
            notification_uuid=notification.notification_uuid,
            notification_type=notification.notification_type,
            environment=notification.environment,
            verified_with=resolved.environment.value,
            tenant=resolved.tenant.identity,
        )
        return notification
