from mailsync.infrastructure.persistence.models.connected_account import \
    ConnectedAccount
from mailsync.infrastructure.persistence.models.message import Message
from mailsync.infrastructure.persistence.models.sync_run import SyncRun

__all__ = ["ConnectedAccount", "Message", "SyncRun"]
