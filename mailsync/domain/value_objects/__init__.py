"""Domain value objects."""

from mailsync.domain.value_objects.credential import (Credential,
                                                      RefreshSummary,
                                                      TokenInfo,
                                                      UnhealthyAccount)

__all__ = [
    "Credential",
    "TokenInfo",
    "UnhealthyAccount",
    "RefreshSummary",
]
