"""
Application layer interfaces (ports).

These protocols define the contracts between the application layer
and the infrastructure layer.
"""

from mailsync.application.interfaces.providers import (IMailProvider,
                                                       IMailProviderFactory,
                                                       IMessageParser,
                                                       ITokenEndpoint,
                                                       MessageIdPage)
from mailsync.application.interfaces.storage import (IMessageStore,
                                                     MessageStoredHook)

__all__ = [
    "IMailProvider",
    "IMailProviderFactory",
    "IMessageParser",
    "ITokenEndpoint",
    "MessageIdPage",
    "IMessageStore",
    "MessageStoredHook",
]
