"""Application services"""

from mailsync.application.services.progress_tracker import ProgressTracker
from mailsync.application.services.quota_scheduler import (QuotaScheduler,
                                                           SchedulerStats)
from mailsync.application.services.scheduler_registry import \
    SchedulerRegistry
from mailsync.application.services.sync_dispatcher import SyncDispatcher
from mailsync.application.services.sync_orchestrator import SyncOrchestrator
from mailsync.application.services.token_manager import \
    TokenLifecycleManager

__all__ = [
    "ProgressTracker",
    "QuotaScheduler",
    "SchedulerStats",
    "SchedulerRegistry",
    "SyncDispatcher",
    "SyncOrchestrator",
    "TokenLifecycleManager",
]
