"""Domain enumerations for MailSync."""

from enum import Enum


class ProviderType(str, Enum):
    """Remote mailbox provider kinds"""

    GMAIL = "gmail"
    OUTLOOK = "outlook"

    @classmethod
    def values(cls) -> list[str]:
        """Get all valid values"""
        return [provider.value for provider in cls]


class AccountSyncStatus(str, Enum):
    """Connected account sync status

    IDLE means never synced, ACTIVE means the last sync succeeded.
    """

    IDLE = "idle"
    ACTIVE = "active"
    SYNCING = "syncing"
    ERROR = "error"
    PAUSED = "paused"

    @classmethod
    def values(cls) -> list[str]:
        """Get all valid values"""
        return [status.value for status in cls]


class ConnectionHealth(str, Enum):
    """Coarse account-level health signal"""

    HEALTHY = "healthy"
    ERROR = "error"

    @classmethod
    def values(cls) -> list[str]:
        """Get all valid values"""
        return [health.value for health in cls]


class TokenState(str, Enum):
    """Persisted credential lifecycle state

    "needs refresh" is derived from the expiry and never stored.
    """

    VALID = "valid"
    REFRESHED = "refreshed"
    REFRESH_FAILED = "refresh_failed"
    REVOKED = "revoked"

    @classmethod
    def values(cls) -> list[str]:
        """Get all valid values"""
        return [state.value for state in cls]


class SyncKind(str, Enum):
    """Sync run kind"""

    INITIAL = "initial"
    INCREMENTAL = "incremental"

    @classmethod
    def values(cls) -> list[str]:
        """Get all valid values"""
        return [kind.value for kind in cls]


class SyncRunStatus(str, Enum):
    """Sync run state machine: pending -> running -> success | failed | cancelled"""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def values(cls) -> list[str]:
        """Get all valid values"""
        return [status.value for status in cls]

    @classmethod
    def terminal(cls) -> set["SyncRunStatus"]:
        return {cls.SUCCESS, cls.FAILED, cls.CANCELLED}

    def is_terminal(self) -> bool:
        return self in self.terminal()


class SyncOutcome(str, Enum):
    """Terminal outcome reported to pollers"""

    SUCCESS = "success"
    FAILED = "failed"
    IN_PROGRESS = "in-progress"

    @classmethod
    def from_status(cls, status: SyncRunStatus) -> "SyncOutcome":
        if status == SyncRunStatus.SUCCESS:
            return cls.SUCCESS
        if status in (SyncRunStatus.FAILED, SyncRunStatus.CANCELLED):
            return cls.FAILED
        return cls.IN_PROGRESS


class EndpointState(str, Enum):
    """Which endpoint a client with a fallback is currently using"""

    PRIMARY = "primary"
    FALLBACK = "primary_failed_using_fallback"
