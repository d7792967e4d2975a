"""Primary/fallback endpoint selection as explicit state."""

from mailsync.domain.enums import EndpointState
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class EndpointSelector:
    """
    Tracks which of two endpoints a client should call.

    A failure on the primary moves the selector to the fallback
    (``primary_failed_using_fallback``); a failure on the fallback is terminal
    for that call. ``reset()`` returns to the primary, e.g. after a health check.
    """

    def __init__(self, primary: str, fallback: str | None = None):
        self.primary = primary
        self.fallback = fallback
        self.state = EndpointState.PRIMARY
        self.failure_count = 0

    @property
    def current(self) -> str:
        if self.state == EndpointState.FALLBACK and self.fallback:
            return self.fallback
        return self.primary

    def record_failure(self, error: Exception) -> bool:
        """Record a failed call; True if the caller should retry on the new endpoint"""
        self.failure_count += 1
        if self.state == EndpointState.PRIMARY and self.fallback:
            self.state = EndpointState.FALLBACK
            logger.warning(
                "Primary endpoint %s failed (%s), switching to fallback %s",
                self.primary,
                error,
                self.fallback,
            )
            return True
        return False

    def record_success(self) -> None:
        self.failure_count = 0

    def reset(self) -> None:
        if self.state != EndpointState.PRIMARY:
            logger.info("Returning to primary endpoint %s", self.primary)
        self.state = EndpointState.PRIMARY
        self.failure_count = 0
