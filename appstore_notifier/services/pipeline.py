"""
Notification Pipeline - one webhook delivery from envelope to push.

Stages run in order: decode and verify, classify, dedup, lifecycle
(purchases only), build message, push. Each stage maps its failures onto
exactly one PipelineResult; nothing raises out of process().

Lifecycle tracking is best-effort. A failing subscription store is logged
and counted, the alert goes out without the lifecycle annotation, and the
terminal result is decided by the push alone.
"""

import asyncio
import json
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from appstore_notifier.exceptions import (
    ConfigurationError,
    DedupStoreError,
    InvalidPayloadError,
    NotificationVerificationError,
    PushDeliveryError,
    SubscriptionStateError,
)
from appstore_notifier.models.api import AppStoreNotificationBody
from appstore_notifier.models.domain import (
    ClassifiedAction,
    LifecycleHint,
    PipelineOutcome,
    PipelineResult,
    TenantConfig,
    VerifiedNotification,
)
from appstore_notifier.observability.logging import get_logger, log_context
from appstore_notifier.observability.metrics import metrics
from appstore_notifier.observability.tracing import add_span_attributes, get_tracer
from appstore_notifier.services.classifier import classify_notification_type
from appstore_notifier.services.dedup import DedupLedger
from appstore_notifier.services.message_builder import build_push_message
from appstore_notifier.services.notification_decoder import NotificationDecoder
from appstore_notifier.services.pushover import PushChannel
from appstore_notifier.services.subscription_state import SubscriptionStateStore

logger = get_logger(__name__)
tracer = get_tracer(__name__)


def extract_signed_payload(body: Any) -> str | None:
    """
    Pull signedPayload out of a parsed request body.

    Accepts a JSON object, or a JSON string that itself encodes the object
    (some proxies double-encode). Returns None for anything else.
    """
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except (ValueError, RecursionError):
            return None

    if not isinstance(body, dict):
        return None

    try:
        return AppStoreNotificationBody.model_validate(body).signed_payload
    except ValidationError:
        return None


class NotificationPipeline:
    """Runs signed App Store notifications through to a push alert."""

    def __init__(
        self,
        decoder: NotificationDecoder,
        dedup_ledger: DedupLedger,
        lifecycle_store: SubscriptionStateStore,
        push_channel: PushChannel,
        tenants: Sequence[TenantConfig],
    ) -> None:
        self._decoder = decoder
        self._dedup_ledger = dedup_ledger
        self._lifecycle_store = lifecycle_store
        self._push_channel = push_channel
        self._tenants = tuple(tenants)

    async def process(self, signed_payload: str | None) -> PipelineOutcome:
        """
        Process one envelope.

        Returns:
            Terminal outcome; INFRA_ERROR is the only retry-worthy result
        """
        with tracer.start_as_current_span("notification_pipeline") as span:
            outcome = await self._run(signed_payload)
            add_span_attributes(
                span,
                result=outcome.result.value,
                notification_uuid=(
                    outcome.notification.notification_uuid if outcome.notification else None
                ),
            )
        metrics.record_pipeline_outcome(outcome.result.value)
        return outcome

    async def _run(self, signed_payload: str | None) -> PipelineOutcome:
        if signed_payload is None or not signed_payload.strip():
            logger.warning("notification_payload_missing")
            return PipelineOutcome(PipelineResult.INVALID_PAYLOAD, error="missing signedPayload")

        try:
            # OCSP online checks block, keep them off the event loop
            notification = await asyncio.to_thread(
                self._decoder.decode, signed_payload, self._tenants
            )
        except NotificationVerificationError as exc:
            logger.warning("notification_verification_failed", error=str(exc))
            metrics.record_error("NotificationVerificationError", "decode")
            return PipelineOutcome(PipelineResult.INVALID_SIGNATURE, error=exc.message)
        except InvalidPayloadError as exc:
            logger.warning("notification_payload_invalid", error=exc.message, field=exc.field)
            return PipelineOutcome(PipelineResult.INVALID_PAYLOAD, error=exc.message)
        except ConfigurationError as exc:
            logger.error("notification_configuration_error", error=exc.message)
            metrics.record_error("ConfigurationError", "decode")
            return PipelineOutcome(PipelineResult.CONFIGURATION_ERROR, error=exc.message)

        with log_context(
            notification_uuid=notification.notification_uuid,
            notification_type=notification.notification_type,
        ):
            return await self._handle(notification)

    async def _handle(self, notification: VerifiedNotification) -> PipelineOutcome:
        action = classify_notification_type(notification.notification_type)
        if action == ClassifiedAction.IGNORE:
            logger.info("notification_ignored", subtype=notification.subtype)
            return PipelineOutcome(PipelineResult.IGNORED, notification=notification)

        try:
            is_new = await self._dedup_ledger.mark_if_new(notification.notification_uuid)
        except DedupStoreError as exc:
            metrics.record_error("DedupStoreError", "dedup")
            return PipelineOutcome(PipelineResult.INFRA_ERROR, notification=notification, error=exc.message)

        if not is_new:
            return PipelineOutcome(PipelineResult.DEDUPED, notification=notification)

        lifecycle_hint: LifecycleHint | None = None
        if action == ClassifiedAction.PURCHASE:
            lifecycle_hint = await self._lifecycle_hint(notification)

        push = build_push_message(action, notification, lifecycle_hint)
        try:
            await self._push_channel.send(push.title, push.message, notification.push_target)
        except PushDeliveryError as exc:
            metrics.record_error("PushDeliveryError", "push")
            logger.error("notification_push_failed", error=exc.message, status_code=exc.status_code)
            return PipelineOutcome(
                PipelineResult.INFRA_ERROR,
                notification=notification,
                lifecycle_hint=lifecycle_hint,
                error=exc.message,
            )

        logger.info(
            "notification_pushed",
            action=action.value,
            environment=notification.environment,
            bundle_id=notification.bundle_id,
            lifecycle_hint=lifecycle_hint.value if lifecycle_hint else None,
        )
        return PipelineOutcome(
            PipelineResult.PUSHED, notification=notification, lifecycle_hint=lifecycle_hint
        )

    async def _lifecycle_hint(self, notification: VerifiedNotification) -> LifecycleHint | None:
        try:
            hint = await self._lifecycle_store.determine_lifecycle_hint(
                notification.notification_type, notification.transaction_info
            )
        except SubscriptionStateError as exc:
            logger.warning(
                "subscription_lifecycle_failed",
                original_transaction_id=exc.original_transaction_id,
                error=exc.message,
            )
            metrics.record_error("SubscriptionStateError", "lifecycle")
            return None

        metrics.record_lifecycle_hint(hint.value if hint else None)
        return hint
