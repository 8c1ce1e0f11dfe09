"""
Lifecycle State Store - per-subscription history and lifecycle inference.

The read-modify-write below is not serialized. Two concurrent events for the
same original transaction id can interleave and the last write wins, which
may under-count notification_count / did_renew_count.
"""

import time
from collections.abc import Callable

from structlog import get_logger

from appstore_notifier.config import SUBSCRIPTION_STATE_TTL_SECONDS
from appstore_notifier.exceptions import SubscriptionStateError
from appstore_notifier.models.domain import DecodedTransactionInfo, LifecycleHint
from appstore_notifier.models.subscription import SubscriptionState, parse_subscription_state
from appstore_notifier.services.kv_store import KeyValueStore

logger = get_logger(__name__)

SUBSCRIPTION_KEY_PREFIX = "appstore:subscription:"
SUBSCRIBED = "SUBSCRIBED"
DID_RENEW = "DID_RENEW"

ONE_DAY_MS = 24 * 60 * 60 * 1000
TRIAL_TO_PAID_MIN_DAYS = 5
TRIAL_TO_PAID_MAX_DAYS = 14


def subscription_state_key(original_transaction_id: str) -> str:
    """Store key for a subscription."""
    return f"{SUBSCRIPTION_KEY_PREFIX}{original_transaction_id}"


def _now_ms() -> int:
    return int(time.time() * 1000)


def has_free_trial(transaction_info: DecodedTransactionInfo | None) -> bool:
    return transaction_info is not None and transaction_info.has_free_trial()


def is_likely_first_paid_after_trial_by_dates(transaction_info: DecodedTransactionInfo | None) -> bool:
    """
    Date heuristic for trial-to-paid conversions.

    Trials run one or two weeks, so a first charge 5-14 days after the
    original purchase is most likely the end of a trial.
    """
    if transaction_info is None:
        return False

    purchase_date = transaction_info.purchase_date
    original_purchase_date = transaction_info.original_purchase_date
    if purchase_date is None or original_purchase_date is None:
        return False

    delta_ms = purchase_date - original_purchase_date
    if delta_ms <= 0:
        return False

    delta_days = delta_ms / ONE_DAY_MS
    return TRIAL_TO_PAID_MIN_DAYS <= delta_days <= TRIAL_TO_PAID_MAX_DAYS


def determine_lifecycle_hint(
    notification_type: str,
    transaction_info: DecodedTransactionInfo | None,
    previous_state: SubscriptionState | None,
) -> LifecycleHint | None:
    """Infer the lifecycle stage from the event and the pre-write snapshot."""
    if notification_type == SUBSCRIBED and has_free_trial(transaction_info):
        return LifecycleHint.TRIAL_START

    if notification_type != DID_RENEW:
        return None

    did_renew_count = previous_state.did_renew_count if previous_state else 0
    previous_event_was_trial = (
        previous_state is not None and previous_state.saw_free_trial and did_renew_count == 0
    )

    if previous_event_was_trial or is_likely_first_paid_after_trial_by_dates(transaction_info):
        return LifecycleHint.FIRST_PAID_AFTER_TRIAL

    return LifecycleHint.RENEWAL


def merge_subscription_state(
    previous_state: SubscriptionState | None,
    notification_type: str,
    transaction_info: DecodedTransactionInfo | None,
    lifecycle_hint: LifecycleHint | None,
    now_ms: int,
) -> SubscriptionState:
    """First values are kept, last values overwrite, counters accumulate."""
    purchase_date = transaction_info.purchase_date if transaction_info else None
    original_purchase_date = transaction_info.original_purchase_date if transaction_info else None

    if previous_state is None:
        return SubscriptionState(
            saw_free_trial=(
                has_free_trial(transaction_info)
                or lifecycle_hint == LifecycleHint.FIRST_PAID_AFTER_TRIAL
            ),
            did_renew_count=1 if notification_type == DID_RENEW else 0,
            notification_count=1,
            first_seen_at=now_ms,
            updated_at=now_ms,
            first_notification_type=notification_type,
            last_notification_type=notification_type,
            original_purchase_date=original_purchase_date,
            first_purchase_date=purchase_date,
            last_purchase_date=purchase_date,
        )

    return SubscriptionState(
        saw_free_trial=(
            previous_state.saw_free_trial
            or has_free_trial(transaction_info)
            or lifecycle_hint == LifecycleHint.FIRST_PAID_AFTER_TRIAL
        ),
        did_renew_count=previous_state.did_renew_count + (1 if notification_type == DID_RENEW else 0),
        notification_count=previous_state.notification_count + 1,
        first_seen_at=previous_state.first_seen_at,
        updated_at=now_ms,
        first_notification_type=previous_state.first_notification_type,
        last_notification_type=notification_type,
        original_purchase_date=(
            original_purchase_date
            if original_purchase_date is not None
            else previous_state.original_purchase_date
        ),
        first_purchase_date=(
            previous_state.first_purchase_date
            if previous_state.first_purchase_date is not None
            else purchase_date
        ),
        last_purchase_date=(
            purchase_date if purchase_date is not None else previous_state.last_purchase_date
        ),
    )


class SubscriptionStateStore:
    """Reads, merges and writes SubscriptionState records."""

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = SUBSCRIPTION_STATE_TTL_SECONDS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    async def load(self, original_transaction_id: str) -> SubscriptionState | None:
        """Stored state, or None when absent or unreadable as a full record."""
        try:
            raw = await self._store.get(subscription_state_key(original_transaction_id))
        except Exception as exc:
            raise SubscriptionStateError(original_transaction_id) from exc
        return parse_subscription_state(raw)

    async def determine_lifecycle_hint(
        self,
        notification_type: str,
        transaction_info: DecodedTransactionInfo | None,
    ) -> LifecycleHint | None:
        """
        Infer the lifecycle hint and persist the merged state.

        Returns:
            Hint computed from the state as it was before this event, or None
            when the transaction has no original transaction id

        Raises:
            SubscriptionStateError: If the store cannot be read or written
        """
        original_transaction_id = (
            transaction_info.original_transaction_id if transaction_info else None
        )
        if not original_transaction_id:
            return None

        previous_state = await self.load(original_transaction_id)
        lifecycle_hint = determine_lifecycle_hint(notification_type, transaction_info, previous_state)

        next_state = merge_subscription_state(
            previous_state, notification_type, transaction_info, lifecycle_hint, self._clock()
        )
        try:
            await self._store.set(
                subscription_state_key(original_transaction_id),
                next_state.to_json(),
                self._ttl_seconds,
            )
        except Exception as exc:
            raise SubscriptionStateError(original_transaction_id) from exc

        logger.info(
            "subscription_state_updated",
            original_transaction_id=original_transaction_id,
            notification_type=notification_type,
            lifecycle_hint=lifecycle_hint.value if lifecycle_hint else None,
            did_renew_count=next_state.did_renew_count,
            notification_count=next_state.notification_count,
        )
        return lifecycle_hint
