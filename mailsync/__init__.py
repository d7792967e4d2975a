"""MailSync: quota-aware incremental mailbox ingestion."""

__version__ = "1.0.0"
