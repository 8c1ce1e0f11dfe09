"""
FastAPI Dependencies - lazily wired notifier components.

Nothing here is built at import time. The first webhook delivery loads
settings and trust anchors; a failure surfaces as ConfigurationError on
every request until the deployment is fixed.
"""

from structlog import get_logger

from appstore_notifier.config import Settings, get_settings
from appstore_notifier.services.dedup import DedupLedger
from appstore_notifier.services.kv_store import RedisKeyValueStore
from appstore_notifier.services.notification_decoder import NotificationDecoder
from appstore_notifier.services.pipeline import NotificationPipeline
from appstore_notifier.services.pushover import PushoverClient
from appstore_notifier.services.subscription_state import SubscriptionStateStore
from appstore_notifier.services.trust_anchors import load_root_certificates
from appstore_notifier.services.verifier_resolver import VerifierCache, VerifierResolver

logger = get_logger(__name__)


class NotifierContainer:
    """Owns the process-lifetime pipeline and its clients."""

    def __init__(self, verifier_cache: VerifierCache | None = None) -> None:
        self._verifier_cache = verifier_cache or VerifierCache()
        self._store: RedisKeyValueStore | None = None
        self._pipeline: NotificationPipeline | None = None

    def settings(self) -> Settings:
        """
        Raises:
            ConfigurationError: If the environment is incomplete or invalid
        """
        return get_settings()

    def pipeline(self) -> NotificationPipeline:
        """
        Build the pipeline on first use.

        Raises:
            ConfigurationError: If settings, tenants or trust anchors are invalid
        """
        if self._pipeline is not None:
            return self._pipeline

        settings = self.settings()
        tenants = settings.tenants()
        root_certificates = load_root_certificates(settings.apple_root_ca_dir)

        resolver = VerifierResolver(
            cache=self._verifier_cache,
            root_certificates=root_certificates,
            root_ca_dir=settings.apple_root_ca_dir,
            enable_online_checks=settings.apple_enable_online_checks,
        )
        store = RedisKeyValueStore.from_url(settings.redis_url)

        self._store = store
        self._pipeline = NotificationPipeline(
            decoder=NotificationDecoder(resolver),
            dedup_ledger=DedupLedger(store, ttl_seconds=settings.dedupe_ttl_seconds),
            lifecycle_store=SubscriptionStateStore(
                store, ttl_seconds=settings.subscription_state_ttl_seconds
            ),
            push_channel=PushoverClient(
                app_token=settings.pushover_app_token,
                api_url=settings.pushover_api_url,
            ),
            tenants=tenants,
        )
        logger.info(
            "notification_pipeline_ready",
            tenant_count=len(tenants),
            online_checks=settings.apple_enable_online_checks,
        )
        return self._pipeline

    async def close(self) -> None:
        """Close the key-value store connection pool if one was opened."""
        if self._store is not None:
            await self._store.close()
            self._store = None
        self._pipeline = None


container = NotifierContainer()


def get_container() -> NotifierContainer:
    """FastAPI dependency; override in tests via app.dependency_overrides."""
    return container
