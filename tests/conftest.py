"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes and fixtures for testing:
- In-memory key-value store with a controllable clock
- Fake Apple signer and verifiers (no real JWS crypto)
- Recording push channel
- Settings and tenants
- API test client with container overrides
"""

import base64
import json
import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from appstoreserverlibrary.models.Environment import Environment
from appstoreserverlibrary.signed_data_verifier import VerificationException, VerificationStatus
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Keep a developer's .env from leaking into the test run
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("TRACING_ENABLED", "false")

from appstore_notifier.api.dependencies import get_container
from appstore_notifier.config import Settings, get_settings
from appstore_notifier.exceptions import KeyValueStoreError, PushDeliveryError
from appstore_notifier.models.domain import PushTarget, TenantConfig
from appstore_notifier.services.dedup import DedupLedger
from appstore_notifier.services.notification_decoder import NotificationDecoder
from appstore_notifier.services.pipeline import NotificationPipeline
from appstore_notifier.services.subscription_state import SubscriptionStateStore
from appstore_notifier.services.verifier_resolver import VerifierCache, VerifierResolver

BUNDLE_ID = "com.example.app"
APP_APPLE_ID = 1234567890
WEBHOOK_SECRET = "super-secret"
ROOT_CERTIFICATES = [b"fake-apple-root-ca-g3"]

# Nesting deep enough to exhaust the JSON decoder's recursion limit
DEEPLY_NESTED_JSON = "[" * 100_000 + "]" * 100_000

# ============================================================================
# Key-Value Store Fakes
# ============================================================================


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryKeyValueStore:
    """KeyValueStore honouring TTLs against an injectable clock."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._entries[key] = (value, self._clock() + ttl_seconds)
        return True

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def ttl(self, key: str) -> float | None:
        """Remaining lifetime of a key, for assertions."""
        entry = self._entries.get(key)
        return None if entry is None else entry[1] - self._clock()

    def raw(self, key: str) -> str | None:
        return self._live(key)


class FailingKeyValueStore:
    """KeyValueStore whose every command fails."""

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        raise KeyValueStoreError("set_nx", key)

    async def get(self, key: str) -> str | None:
        raise KeyValueStoreError("get", key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise KeyValueStoreError("set", key)


# ============================================================================
# Apple Verification Fakes
# ============================================================================


def _b64url(data: dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).decode("ascii").rstrip("=")


class FakeAppleSigner:
    """
    Issues compact-JWS-shaped tokens and remembers which environment signed them.

    Tokens carry the real payload in their middle segment so unverified
    bundle id extraction works on them.
    """

    def __init__(self) -> None:
        self.notifications: dict[str, tuple[Environment, dict[str, Any]]] = {}
        self.transactions: dict[str, tuple[Environment, dict[str, Any]]] = {}
        self._counter = 0

    def _token(self, payload: dict[str, Any]) -> str:
        self._counter += 1
        return f"{_b64url({'alg': 'ES256'})}.{_b64url(payload)}.sig{self._counter}"

    def sign_notification(
        self, payload: dict[str, Any], environment: Environment = Environment.SANDBOX
    ) -> str:
        token = self._token(payload)
        self.notifications[token] = (environment, payload)
        return token

    def sign_transaction(
        self, transaction: dict[str, Any], environment: Environment = Environment.SANDBOX
    ) -> str:
        token = self._token(transaction)
        self.transactions[token] = (environment, transaction)
        return token


class FakeVerifier:
    """Stands in for SignedDataVerifier; accepts tokens its environment signed."""

    def __init__(
        self,
        signer: FakeAppleSigner,
        environment: Environment,
        bundle_id: str,
        app_apple_id: int | None,
    ) -> None:
        self.signer = signer
        self.environment = environment
        self.bundle_id = bundle_id
        self.app_apple_id = app_apple_id
        self.notification_calls = 0

    def verify_and_decode_notification(self, signed_payload: str) -> dict[str, Any]:
        self.notification_calls += 1
        entry = self.signer.notifications.get(signed_payload)
        if entry is None or entry[0] != self.environment:
            raise VerificationException(VerificationStatus.VERIFICATION_FAILURE)
        return entry[1]

    def verify_and_decode_signed_transaction(self, signed_transaction: str) -> dict[str, Any]:
        entry = self.signer.transactions.get(signed_transaction)
        if entry is None or entry[0] != self.environment:
            raise VerificationException(VerificationStatus.VERIFICATION_FAILURE)
        return entry[1]


class RecordingVerifierFactory:
    """VerifierFactory that records every verifier it builds."""

    def __init__(self, signer: FakeAppleSigner) -> None:
        self.signer = signer
        self.created: list[FakeVerifier] = []

    def __call__(
        self,
        root_certificates: list[bytes],
        enable_online_checks: bool,
        environment: Environment,
        bundle_id: str,
        app_apple_id: int | None,
    ) -> FakeVerifier:
        verifier = FakeVerifier(self.signer, environment, bundle_id, app_apple_id)
        self.created.append(verifier)
        return verifier


# ============================================================================
# Push Channel Fakes
# ============================================================================


class RecordingPushChannel:
    """PushChannel that records messages, optionally failing."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, PushTarget]] = []

    async def send(self, title: str, message: str, target: PushTarget) -> None:
        if self.fail:
            raise PushDeliveryError("Pushover API request failed (500)", status_code=500)
        self.sent.append((title, message, target))


# ============================================================================
# Payload Builders
# ============================================================================


def make_transaction(**overrides: Any) -> dict[str, Any]:
    """Decoded JWSTransaction fields as Apple sends them."""
    transaction: dict[str, Any] = {
        "productId": "pro_monthly",
        "transactionId": "1000001234567890",
        "originalTransactionId": "1000001234500000",
        "bundleId": BUNDLE_ID,
        "purchaseDate": 1_700_000_000_000,
        "originalPurchaseDate": 1_700_000_000_000,
        "price": 29990,
        "currency": "EUR",
        "transactionReason": "PURCHASE",
    }
    transaction.update(overrides)
    return transaction


def make_notification(
    notification_type: str = "SUBSCRIBED",
    notification_uuid: str = "uuid-1",
    signed_transaction_info: str | None = None,
    bundle_id: str | None = BUNDLE_ID,
    environment: str = "Sandbox",
    subtype: str | None = None,
) -> dict[str, Any]:
    """Decoded ResponseBodyV2 payload."""
    data: dict[str, Any] = {"environment": environment, "appAppleId": APP_APPLE_ID}
    if bundle_id is not None:
        data["bundleId"] = bundle_id
    if signed_transaction_info is not None:
        data["signedTransactionInfo"] = signed_transaction_info

    payload: dict[str, Any] = {
        "notificationType": notification_type,
        "notificationUUID": notification_uuid,
        "version": "2.0",
        "signedDate": 1_700_000_000_000,
        "data": data,
    }
    if subtype is not None:
        payload["subtype"] = subtype
    return payload


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock)


@pytest.fixture
def signer() -> FakeAppleSigner:
    return FakeAppleSigner()


@pytest.fixture
def verifier_factory(signer: FakeAppleSigner) -> RecordingVerifierFactory:
    return RecordingVerifierFactory(signer)


@pytest.fixture
def verifier_cache(verifier_factory: RecordingVerifierFactory) -> VerifierCache:
    return VerifierCache(factory=verifier_factory)


@pytest.fixture
def resolver(verifier_cache: VerifierCache) -> VerifierResolver:
    return VerifierResolver(
        cache=verifier_cache,
        root_certificates=ROOT_CERTIFICATES,
        root_ca_dir="certs/apple",
    )


@pytest.fixture
def push_target() -> PushTarget:
    return PushTarget(user_key="pushover-user-key")


@pytest.fixture
def tenant(push_target: PushTarget) -> TenantConfig:
    """Tenant pinned to BUNDLE_ID."""
    return TenantConfig(app_apple_id=APP_APPLE_ID, bundle_id=BUNDLE_ID, push_target=push_target)


@pytest.fixture
def push_channel() -> RecordingPushChannel:
    return RecordingPushChannel()


@pytest.fixture
def pipeline_factory(
    resolver: VerifierResolver,
    kv_store: InMemoryKeyValueStore,
    push_channel: RecordingPushChannel,
    tenant: TenantConfig,
) -> Callable[..., NotificationPipeline]:
    """Build a pipeline over the fakes, with any collaborator overridden."""

    def _create(**overrides: Any) -> NotificationPipeline:
        store = overrides.pop("store", kv_store)
        collaborators: dict[str, Any] = {
            "decoder": NotificationDecoder(resolver),
            "dedup_ledger": DedupLedger(store),
            "lifecycle_store": SubscriptionStateStore(store),
            "push_channel": push_channel,
            "tenants": (tenant,),
        }
        collaborators.update(overrides)
        return NotificationPipeline(**collaborators)

    return _create


@pytest.fixture
def settings() -> Settings:
    """Valid single-app settings, independent of the process environment."""
    return Settings(
        _env_file=None,
        webhook_secret=WEBHOOK_SECRET,
        pushover_app_token="pushover-app-token",
        pushover_user_key="pushover-user-key",
        apple_bundle_id=BUNDLE_ID,
        apple_app_id=str(APP_APPLE_ID),
        redis_url="redis://localhost:6379/0",
    )


@pytest.fixture
def clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class StubContainer:
    """NotifierContainer stand-in returning prepared collaborators."""

    def __init__(self, settings: Any = None, pipeline: Any = None, error: Exception | None = None):
        self._settings = settings
        self._pipeline = pipeline
        self._error = error
        self.pipeline_calls = 0

    def settings(self) -> Any:
        if self._error is not None and self._settings is None:
            raise self._error
        return self._settings

    def pipeline(self) -> Any:
        self.pipeline_calls += 1
        if self._error is not None:
            raise self._error
        return self._pipeline


@pytest.fixture
def app() -> Iterator[FastAPI]:
    """The FastAPI app with dependency overrides cleared after each test."""
    from appstore_notifier.main import app as fastapi_app

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client_factory(app: FastAPI) -> Callable[[StubContainer], TestClient]:
    """TestClient wired to a given container."""

    def _create(container: StubContainer) -> TestClient:
        app.dependency_overrides[get_container] = lambda: container
        return TestClient(app)

    return _create
