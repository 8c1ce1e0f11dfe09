"""
Exception Classes - Strongly typed exception hierarchy.

Four kinds of failure: configuration, input, verification and infrastructure.
Only infrastructure errors are worth retrying by the upstream sender.
"""


class NotifierError(Exception):
    """Base exception for all notifier errors."""

    pass


class ConfigurationError(NotifierError):
    """Raised when tenant setup, trust anchors or settings are missing or invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Configuration error: {message}")


class InvalidPayloadError(NotifierError):
    """Raised when an envelope is malformed or lacks a required field."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(f"Invalid payload: {message}")


class NotificationVerificationError(NotifierError):
    """Raised when no configured tenant verifies the signed envelope."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        self.message = message
        self.last_error = last_error
        detail = f" (last error: {last_error})" if last_error is not None else ""
        super().__init__(f"Verification failed: {message}{detail}")


class InfrastructureError(NotifierError):
    """Raised when a remote dependency is unreachable or erroring."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Infrastructure error: {message}")


class KeyValueStoreError(InfrastructureError):
    """Raised when a key-value store command fails."""

    def __init__(self, operation: str, key: str) -> None:
        self.operation = operation
        self.key = key
        super().__init__(f"key-value store {operation} failed for {key}")


class DedupStoreError(InfrastructureError):
    """Raised when the dedup ledger cannot record a notification id."""

    def __init__(self, notification_uuid: str) -> None:
        self.notification_uuid = notification_uuid
        super().__init__(f"dedup ledger unavailable for notification {notification_uuid}")


class SubscriptionStateError(InfrastructureError):
    """Raised when subscription lifecycle state cannot be read or written."""

    def __init__(self, original_transaction_id: str) -> None:
        self.original_transaction_id = original_transaction_id
        super().__init__(f"subscription state unavailable for {original_transaction_id}")


class PushDeliveryError(InfrastructureError):
    """Raised when the push channel rejects or fails to accept a message."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(f"push delivery failed: {message}")
