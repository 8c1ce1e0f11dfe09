"""
Dedup Ledger - at-most-once gating per notification UUID.

A ledger key exists iff that UUID already triggered a push attempt. Keys
expire after the retention window and are never deleted early.
"""

from structlog import get_logger

from appstore_notifier.config import DEDUPE_TTL_SECONDS
from appstore_notifier.exceptions import DedupStoreError
from appstore_notifier.services.kv_store import KeyValueStore

logger = get_logger(__name__)

DEDUPE_KEY_PREFIX = "appstore:notification:"
DEDUPE_SENTINEL = "1"


def dedupe_key(notification_uuid: str) -> str:
    """Ledger key for a notification UUID."""
    return f"{DEDUPE_KEY_PREFIX}{notification_uuid}"


class DedupLedger:
    """Idempotency check-and-set over a shared key-value store."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEDUPE_TTL_SECONDS) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"Dedup TTL must be positive: {ttl_seconds}")
        self._store = store
        self._ttl_seconds = ttl_seconds

    async def mark_if_new(self, notification_uuid: str) -> bool:
        """
        Record a notification UUID.

        Returns:
            True if this call recorded it, False if it was already present

        Raises:
            DedupStoreError: If the store fails. Never reported as "new".
        """
        try:
            is_new = await self._store.set_if_absent(
                dedupe_key(notification_uuid), DEDUPE_SENTINEL, self._ttl_seconds
            )
        except Exception as exc:
            logger.error(
                "dedup_ledger_unavailable",
                notification_uuid=notification_uuid,
                error=str(exc),
            )
            raise DedupStoreError(notification_uuid) from exc

        if not is_new:
            logger.info("notification_already_seen", notification_uuid=notification_uuid)
        return is_new
