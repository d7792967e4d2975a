"""
Domain exceptions for MailSync.

Every error raised by the scheduler, the token lifecycle manager and the sync
orchestrator derives from MailSyncException so callers can handle them
uniformly and serialize them with to_dict().
"""

from typing import Any


class MailSyncException(Exception):
    """
    Base exception for all MailSync errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error code
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for status responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Quota scheduler
# ---------------------------------------------------------------------------


class SchedulerError(MailSyncException):
    """Base class for quota scheduler failures."""


class QuotaExceededError(SchedulerError):
    """Raised when a rate-limited operation exhausted its retries."""

    def __init__(self, identity: str, retries: int, reason: str | None = None):
        message = f"Quota exceeded for {identity} after {retries} retries"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message, "QUOTA_EXCEEDED", {"identity": identity, "retries": retries}
        )


class QueueFullError(SchedulerError):
    """Raised when a submission arrives at a full queue."""

    def __init__(self, identity: str, max_size: int):
        super().__init__(
            f"Request queue full for {identity} (max {max_size})",
            "QUEUE_FULL",
            {"identity": identity, "max_size": max_size},
        )


class OperationCancelledError(SchedulerError):
    """Raised for pending operations dropped by clear_queue() and for work sent to a closed scheduler."""

    def __init__(self, identity: str):
        super().__init__(
            f"Queue cleared for {identity}", "OPERATION_CANCELLED", {"identity": identity}
        )


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TokenError(MailSyncException):
    """Base class for credential failures."""

    requires_reauthorization = False

    def __init__(self, account_id: str, message: str, error_code: str | None = None):
        super().__init__(message, error_code, {"account_id": account_id})
        self.account_id = account_id


class TokenExpiredError(TokenError):
    """Raised when the token expired and no refresh token is available."""

    requires_reauthorization = True

    def __init__(
        self,
        account_id: str,
        message: str = "Token refresh failed: No refresh token available. Please re-authenticate.",
    ):
        super().__init__(account_id, message, "TOKEN_EXPIRED")


class TokenRevokedError(TokenError):
    """Raised when the provider rejects the grant as invalid or revoked."""

    requires_reauthorization = True

    def __init__(self, account_id: str, reason: str):
        super().__init__(
            account_id,
            f"Token refresh failed: access was revoked ({reason}). Please re-authenticate.",
            "TOKEN_REVOKED",
        )


class TokenRefreshError(TokenError):
    """Raised for any other refresh failure."""

    def __init__(self, account_id: str, reason: str):
        super().__init__(account_id, f"Token refresh failed: {reason}", "TOKEN_REFRESH_FAILED")


class TransientNetworkError(MailSyncException):
    """Raised when a remote call failed for a reason worth retrying later."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "TRANSIENT_NETWORK", details)


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class ItemParseError(MailSyncException):
    """Raised when a fetched message payload cannot be parsed."""

    def __init__(self, external_id: str, reason: str):
        super().__init__(
            f"Failed to parse message {external_id}: {reason}",
            "ITEM_PARSE_ERROR",
            {"external_id": external_id},
        )
        self.external_id = external_id


class StorageConflictError(MailSyncException):
    """Raised when a write collides with the (account_id, external_id) key."""

    def __init__(self, account_id: str, external_id: str):
        super().__init__(
            f"Message {external_id} already stored for account {account_id}",
            "STORAGE_CONFLICT",
            {"account_id": account_id, "external_id": external_id},
        )


class AccountNotFoundError(MailSyncException):
    """Raised when a connected account does not exist."""

    def __init__(self, account_id: str):
        super().__init__(
            f"Account not found: {account_id}", "ACCOUNT_NOT_FOUND", {"account_id": account_id}
        )


class UnsupportedProviderError(MailSyncException):
    """Raised when no sync provider is registered for an account's provider kind."""

    def __init__(self, provider_type: str):
        super().__init__(
            f"Unsupported provider: {provider_type}",
            "UNSUPPORTED_PROVIDER",
            {"provider_type": provider_type},
        )


class SyncAlreadyRunningError(MailSyncException):
    """Raised when a sync is requested for an account that is already syncing."""

    def __init__(self, account_id: str):
        super().__init__(
            f"Sync already in progress for account {account_id}",
            "SYNC_ALREADY_RUNNING",
            {"account_id": account_id},
        )


class AccountPausedError(MailSyncException):
    """Raised when a sync is requested for a paused account."""

    def __init__(self, account_id: str):
        super().__init__(
            f"Sync is paused for account {account_id}",
            "ACCOUNT_PAUSED",
            {"account_id": account_id},
        )


class SyncRunNotFoundError(MailSyncException):
    """Raised when a sync run does not exist."""

    def __init__(self, run_id: str):
        super().__init__(f"Sync run not found: {run_id}", "SYNC_RUN_NOT_FOUND", {"run_id": run_id})


class ProviderUnauthorizedError(MailSyncException):
    """Raised when the provider rejects the access token mid-run."""

    def __init__(self, account_id: str, reason: str):
        super().__init__(
            f"Provider rejected the access token: {reason}",
            "PROVIDER_UNAUTHORIZED",
            {"account_id": account_id},
        )


class SyncFailedError(MailSyncException):
    """Raised when a sync run fails outside the per-item loop.

    ``result`` carries the partial counts gathered before the failure.
    """

    def __init__(self, account_id: str, reason: str, result: Any = None):
        super().__init__(
            f"Sync failed for account {account_id}: {reason}",
            "SYNC_FAILED",
            {"account_id": account_id},
        )
        self.account_id = account_id
        self.result = result
