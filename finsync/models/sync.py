"""Sync run models: date ranges, progress events and reports."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .document import DocType, FailedDocument, ProcessedDocument


class DateRange(BaseModel):
    """Inclusive date range."""

    start: date
    end: date

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("end date must not be before start date")
        return self


class ProgressStage(str, Enum):
    """Stages reported to progress listeners."""

    SEARCHING = "searching"
    DOWNLOADING = "downloading"
    CLASSIFYING = "classifying"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"


class SyncProgress(BaseModel):
    """Progress event emitted during a sync run."""

    stage: ProgressStage
    message: str
    current: int = 0
    total: int = 0
    emails_found: Optional[int] = None
    attachments_processed: Optional[int] = None
    documents_uploaded: Optional[int] = None


class SyncStatus(str, Enum):
    """Outcome of a sync run."""

    COMPLETED = "completed"
    PARTIAL = "partial"  # some attachments failed
    NO_MATCHES = "no_matches"  # nothing matched the query
    UP_TO_DATE = "up_to_date"  # matches exist but were all processed before


class DailyReport(BaseModel):
    """Per-day document counts."""

    date: date
    invoices_count: int = 0
    statements_count: int = 0
    other_count: int = 0
    total_processed: int = 0

    @classmethod
    def from_documents(cls, day: date, documents: list[ProcessedDocument]) -> "DailyReport":
        return cls(
            date=day,
            invoices_count=sum(1 for d in documents if d.doc_type == DocType.INVOICE),
            statements_count=sum(1 for d in documents if d.doc_type == DocType.BANK_STATEMENT),
            other_count=sum(
                1 for d in documents if d.doc_type in (DocType.RECEIPT, DocType.TAX_LETTER)
            ),
            total_processed=len(documents),
        )


class SyncReport(BaseModel):
    """Result of one sync run."""

    status: SyncStatus
    message: str
    items_matched: int = 0  # before the ledger filter
    items_found: int = 0  # after the ledger filter
    attachments_found: int = 0
    documents_uploaded: int = 0
    documents_failed: int = 0
    documents: list[ProcessedDocument] = Field(default_factory=list)
    failures: list[FailedDocument] = Field(default_factory=list)
    daily_report: Optional[DailyReport] = None
    started_at: datetime
    finished_at: datetime

    @property
    def is_noop(self) -> bool:
        return self.status in (SyncStatus.NO_MATCHES, SyncStatus.UP_TO_DATE)
