"""Data models for the financial document sync."""

from .email import EmailAttachment, EmailMessage, SavedEmail, SearchPage
from .document import Classification, DocType, DriveFile, FailedDocument, ProcessedDocument
from .supplier import Supplier
from .sync import DailyReport, DateRange, ProgressStage, SyncProgress, SyncReport, SyncStatus

__all__ = [
    "EmailAttachment",
    "EmailMessage",
    "SavedEmail",
    "SearchPage",
    "Classification",
    "DocType",
    "DriveFile",
    "FailedDocument",
    "ProcessedDocument",
    "Supplier",
    "DailyReport",
    "DateRange",
    "ProgressStage",
    "SyncProgress",
    "SyncReport",
    "SyncStatus",
]
