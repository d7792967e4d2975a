"""OAuth credential value objects."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from mailsync.shared.utils.datetime import ensure_utc, from_timestamp_utc

@dataclass(frozen=True)
class Credential:
    """
    Access/refresh token pair for one connected account.

    Only ever persisted encrypted; decrypted values live in memory for the
    duration of a single call.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Credential access_token cannot be empty")
        object.__setattr__(self, "expires_at", ensure_utc(self.expires_at))

    def __repr__(self) -> str:
        return (
            f"Credential(has_refresh_token={self.refresh_token is not None}, "
            f"expires_at={self.expires_at})"
        )

    def needs_refresh(
        self, now: datetime, margin: timedelta, refresh_when_unknown: bool = False
    ) -> bool:
        """True when expiry is known and falls inside the safety margin."""
        if self.expires_at is None:
            return refresh_when_unknown
        return self.expires_at - now < margin

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "token_type": self.token_type,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        expires_at = data.get("expires_at")
        if isinstance(expires_at, (int, float)):
            expires_at = from_timestamp_utc(expires_at)
        elif isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
        )

@dataclass(frozen=True)
class TokenInfo:
    """Token status without the token itself"""

    account_id: str
    has_refresh_token: bool
    expires_at: datetime | None
    state: str
    needs_refresh: bool

@dataclass(frozen=True)
class UnhealthyAccount:
    """An account whose credential could not be validated"""

    account_id: str
    email_address: str
    provider_type: str
    error: str

@dataclass
class RefreshSummary:
    """Outcome of refreshing every account of a user"""

    successful: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
