"""
End-to-end tests for NotificationPipeline over in-memory fakes.
"""

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest
from appstoreserverlibrary.models.Environment import Environment

from appstore_notifier.exceptions import ConfigurationError, SubscriptionStateError
from appstore_notifier.models.domain import LifecycleHint, PipelineResult, TenantConfig
from appstore_notifier.services.dedup import dedupe_key
from appstore_notifier.services.pipeline import extract_signed_payload
from appstore_notifier.services.subscription_state import ONE_DAY_MS, subscription_state_key
from conftest import (
    APP_APPLE_ID,
    BUNDLE_ID,
    DEEPLY_NESTED_JSON,
    FailingKeyValueStore,
    RecordingPushChannel,
    make_notification,
    make_transaction,
)


def signed_purchase(signer, notification_type="SUBSCRIBED", notification_uuid="uuid-1", **tx_overrides):
    transaction = signer.sign_transaction(make_transaction(**tx_overrides))
    return signer.sign_notification(
        make_notification(
            notification_type=notification_type,
            notification_uuid=notification_uuid,
            signed_transaction_info=transaction,
        )
    )


class TestExtractSignedPayload:
    """Tests for request body handling."""

    def test_object_body(self):
        assert extract_signed_payload({"signedPayload": "jws"}) == "jws"

    def test_json_string_body(self):
        """Double-encoded bodies are unwrapped."""
        assert extract_signed_payload('{"signedPayload": "jws"}') == "jws"

    @pytest.mark.parametrize(
        "body",
        [None, [], "not json", {}, {"signedPayload": ""}, {"signedPayload": "   "}, {"signedPayload": 5}],
    )
    def test_unusable_bodies(self, body):
        assert extract_signed_payload(body) is None

    def test_deeply_nested_string_body(self):
        """A double-encoded body nested past the decoder's limit is unusable."""
        assert extract_signed_payload(DEEPLY_NESTED_JSON) is None


class TestNotificationPipeline:
    """Tests for NotificationPipeline.process."""

    @pytest.mark.asyncio
    async def test_pushed_then_deduped(self, pipeline_factory, signer, push_channel, tenant):
        """A purchase pushes once; a redelivery is deduped without a second push."""
        pipeline = pipeline_factory()
        token = signed_purchase(signer)

        first = await pipeline.process(token)
        second = await pipeline.process(token)

        assert first.result == PipelineResult.PUSHED
        assert second.result == PipelineResult.DEDUPED
        assert len(push_channel.sent) == 1
        title, message, target = push_channel.sent[0]
        assert title == "In-App Kauf"
        assert f"app={BUNDLE_ID}" in message
        assert "amount=29.99 EUR" in message
        assert target == tenant.push_target

    @pytest.mark.asyncio
    async def test_ignored_types_do_not_touch_ledger(self, pipeline_factory, signer, push_channel, kv_store):
        """Ignored notifications are neither recorded nor pushed."""
        pipeline = pipeline_factory()
        token = signer.sign_notification(make_notification(notification_type="TEST", notification_uuid="uuid-t"))

        outcome = await pipeline.process(token)

        assert outcome.result == PipelineResult.IGNORED
        assert push_channel.sent == []
        assert kv_store.raw(dedupe_key("uuid-t")) is None

    @pytest.mark.asyncio
    async def test_refund_pushes_without_lifecycle(self, pipeline_factory, signer, push_channel, kv_store):
        """Refunds push with the refund title and skip lifecycle tracking."""
        pipeline = pipeline_factory()
        token = signed_purchase(signer, notification_type="REFUND", notification_uuid="uuid-r")

        outcome = await pipeline.process(token)

        assert outcome.result == PipelineResult.PUSHED
        assert outcome.lifecycle_hint is None
        assert push_channel.sent[0][0] == "Refund"
        assert kv_store.raw(subscription_state_key("1000001234500000")) is None

    @pytest.mark.asyncio
    async def test_trial_lifecycle_annotations(self, pipeline_factory, signer, push_channel):
        """Trial start and the first paid renewal are annotated."""
        pipeline = pipeline_factory()
        start = 1_700_000_000_000

        trial = await pipeline.process(
            signed_purchase(
                signer,
                notification_uuid="uuid-a",
                offerDiscountType="FREE_TRIAL",
                purchaseDate=start,
                originalPurchaseDate=start,
            )
        )
        renewal = await pipeline.process(
            signed_purchase(
                signer,
                notification_type="DID_RENEW",
                notification_uuid="uuid-b",
                purchaseDate=start + 7 * ONE_DAY_MS,
                originalPurchaseDate=start,
            )
        )

        assert trial.lifecycle_hint == LifecycleHint.TRIAL_START
        assert renewal.lifecycle_hint == LifecycleHint.FIRST_PAID_AFTER_TRIAL
        assert "lifecycle=TRIAL_START" in push_channel.sent[0][1]
        assert "lifecycle=FIRST_PAID_AFTER_TRIAL" in push_channel.sent[1][1]

    @pytest.mark.asyncio
    async def test_lifecycle_failure_still_pushes(self, pipeline_factory, signer, push_channel):
        """A failing subscription store drops the annotation but not the alert."""
        lifecycle_store = AsyncMock()
        lifecycle_store.determine_lifecycle_hint.side_effect = SubscriptionStateError("1000001234500000")
        pipeline = pipeline_factory(lifecycle_store=lifecycle_store)

        outcome = await pipeline.process(signed_purchase(signer))

        assert outcome.result == PipelineResult.PUSHED
        assert outcome.lifecycle_hint is None
        assert len(push_channel.sent) == 1
        assert "lifecycle=" not in push_channel.sent[0][1]

    @pytest.mark.asyncio
    async def test_missing_payload(self, pipeline_factory):
        pipeline = pipeline_factory()

        assert (await pipeline.process(None)).result == PipelineResult.INVALID_PAYLOAD
        assert (await pipeline.process("  ")).result == PipelineResult.INVALID_PAYLOAD

    @pytest.mark.asyncio
    async def test_forged_payload(self, pipeline_factory, push_channel):
        """Unverifiable envelopes are INVALID_SIGNATURE and never pushed."""
        outcome = await pipeline_factory().process("h.e30.forged")

        assert outcome.result == PipelineResult.INVALID_SIGNATURE
        assert push_channel.sent == []

    @pytest.mark.asyncio
    async def test_deeply_nested_envelope(self, pipeline_factory, push_channel, push_target):
        """An envelope nested past the decoder's limit is INVALID_SIGNATURE, not an exception."""
        unpinned = TenantConfig(app_apple_id=APP_APPLE_ID, push_target=push_target)
        nested = base64.urlsafe_b64encode(DEEPLY_NESTED_JSON.encode()).decode().rstrip("=")

        outcome = await pipeline_factory(tenants=(unpinned,)).process(f"h.{nested}.s")

        assert outcome.result == PipelineResult.INVALID_SIGNATURE
        assert push_channel.sent == []

    @pytest.mark.asyncio
    async def test_missing_required_field(self, pipeline_factory, signer):
        """A verified payload without notificationUUID is INVALID_PAYLOAD."""
        payload = make_notification()
        del payload["notificationUUID"]

        outcome = await pipeline_factory().process(signer.sign_notification(payload))

        assert outcome.result == PipelineResult.INVALID_PAYLOAD

    @pytest.mark.asyncio
    async def test_configuration_error_during_decode(self, pipeline_factory):
        decoder = MagicMock()
        decoder.decode.side_effect = ConfigurationError("no certificates")

        outcome = await pipeline_factory(decoder=decoder).process("jws")

        assert outcome.result == PipelineResult.CONFIGURATION_ERROR

    @pytest.mark.asyncio
    async def test_dedup_store_failure(self, pipeline_factory, signer, push_channel):
        """An unreachable ledger is INFRA_ERROR and nothing is pushed."""
        pipeline = pipeline_factory(store=FailingKeyValueStore())

        outcome = await pipeline.process(signed_purchase(signer))

        assert outcome.result == PipelineResult.INFRA_ERROR
        assert push_channel.sent == []

    @pytest.mark.asyncio
    async def test_push_failure(self, pipeline_factory, signer, kv_store):
        """A failed push is INFRA_ERROR; the UUID stays recorded."""
        pipeline = pipeline_factory(push_channel=RecordingPushChannel(fail=True))

        outcome = await pipeline.process(signed_purchase(signer))

        assert outcome.result == PipelineResult.INFRA_ERROR
        assert kv_store.raw(dedupe_key("uuid-1")) is not None

    @pytest.mark.asyncio
    async def test_production_envelope(self, pipeline_factory, signer, push_channel):
        """Production-signed envelopes verify and report their environment."""
        transaction = signer.sign_transaction(make_transaction(), Environment.PRODUCTION)
        token = signer.sign_notification(
            make_notification(signed_transaction_info=transaction, environment="Production"),
            Environment.PRODUCTION,
        )

        outcome = await pipeline_factory().process(token)

        assert outcome.result == PipelineResult.PUSHED
        assert "env=Production" in push_channel.sent[0][1]
