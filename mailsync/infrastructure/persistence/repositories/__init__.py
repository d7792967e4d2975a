""" Repository module for the persistence layer. """

from mailsync.infrastructure.persistence.repositories.account_repo import \
    ConnectedAccountRepository
from mailsync.infrastructure.persistence.repositories.base import \
    BaseRepository
from mailsync.infrastructure.persistence.repositories.message_repo import \
    MessageRepository
from mailsync.infrastructure.persistence.repositories.sync_run_repo import \
    SyncRunRepository

__all__ = [
    "BaseRepository",
    "ConnectedAccountRepository",
    "MessageRepository",
    "SyncRunRepository",
]
