"""Sync worker: mailbox search to classified documents in Drive."""

import asyncio
import calendar
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Optional

import structlog

from finsync.config.settings import ClassifierConfig, DriveConfig, SyncConfig, settings
from finsync.models.document import DocType, FailedDocument, ProcessedDocument
from finsync.models.email import EmailAttachment, EmailMessage, SavedEmail
from finsync.models.supplier import Supplier
from finsync.models.sync import (
    DailyReport,
    DateRange,
    ProgressStage,
    SyncProgress,
    SyncReport,
    SyncStatus,
)
from finsync.services.classifier_service import ClassifierClient, requires_review
from finsync.services.drive_service import DriveService
from finsync.services.email_service import EmailService
from finsync.services.folder_resolver import FolderPathResolver, sanitize_segment
from finsync.services.history_service import EmailHistoryStore
from finsync.services.ledger_service import ProcessedLedger
from finsync.utils.concurrency import ConcurrencyLimiter
from finsync.utils.errors import AuthExpiredError, ErrorType, classify_error
from finsync.utils.financial_year import get_financial_year
from finsync.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[SyncProgress], None]

SUPPLIER_BASE_QUERY = "category:primary has:attachment"
TIMED_OUT_REASON = "sync timed out"


@dataclass
class _RunState:
    """Counters shared by the attachment tasks of one run."""

    total: int
    started: int = 0
    auth_error: Optional[AuthExpiredError] = None
    failures: list[FailedDocument] = field(default_factory=list)


class SyncWorker:
    """
    Runs one sync at a time against injected collaborators.

    A run lists matching emails, skips those the ledger already knows, then
    processes every remaining attachment as an independent task under a
    concurrency limit. An email is committed to the ledger only when all of
    its attachments landed in Drive during the run; anything else is picked
    up again by the next run.
    """

    def __init__(
        self,
        email_service: EmailService,
        drive_service: DriveService,
        folder_resolver: FolderPathResolver,
        classifier: ClassifierClient,
        ledger: ProcessedLedger,
        history_store: EmailHistoryStore,
        config: Optional[SyncConfig] = None,
        drive_config: Optional[DriveConfig] = None,
        classifier_config: Optional[ClassifierConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
        default_query: Optional[str] = None,
    ) -> None:
        self.email_service = email_service
        self.drive_service = drive_service
        self.folder_resolver = folder_resolver
        self.classifier = classifier
        self.ledger = ledger
        self.history_store = history_store
        self.config = config or settings.sync
        self.drive_config = drive_config or settings.drive
        self.classifier_config = classifier_config or settings.classifier
        self.on_progress = on_progress
        self.default_query = default_query or settings.gmail.search_query

    @staticmethod
    def build_query(query: str, date_range: Optional[DateRange] = None) -> str:
        """
        Append Gmail date bounds to ``query``.

        Gmail's ``before:`` is exclusive, so the upper bound is the day after
        ``date_range.end``.
        """
        if date_range is None:
            return query
        before = date_range.end + timedelta(days=1)
        return f"{query} after:{date_range.start:%Y/%m/%d} before:{before:%Y/%m/%d}".strip()

    def folder_path_for(self, vendor: str, email_date: datetime) -> str:
        """``<root>/<vendor>/<Month YYYY>`` for the email's date."""
        month = f"{calendar.month_name[email_date.month]} {email_date.year}"
        return f"{self.drive_config.root_folder_name}/{sanitize_segment(vendor)}/{month}"

    async def run_sync(self, query: Optional[str] = None, date_range: Optional[DateRange] = None) -> SyncReport:
        """
        Sync every email matching ``query`` (default ``GMAIL_SEARCH_QUERY``).

        Raises:
            Exception: Mailbox listing or ledger lookup failed; nothing was processed
            AuthExpiredError: The token expired mid-run (after results were committed)
        """
        return await self._run(self.build_query(query or self.default_query, date_range))

    async def run_supplier_sync(self, supplier: Supplier, date_range: DateRange) -> SyncReport:
        """Sync one supplier's emails into ``<root>/<supplier name>/...``."""
        query = SUPPLIER_BASE_QUERY
        if supplier.search_domain:
            query += f" from:{supplier.search_domain}"
        return await self._run(
            self.build_query(query, date_range),
            vendor_override=supplier.name,
            supplier_id=supplier.id,
            label=supplier.name,
        )

    async def _run(
        self,
        query: str,
        vendor_override: Optional[str] = None,
        supplier_id: Optional[str] = None,
        label: Optional[str] = None,
    ) -> SyncReport:
        sync_id = uuid.uuid4().hex[:12]
        started_at = datetime.now()

        with structlog.contextvars.bound_contextvars(sync_id=sync_id):
            logger.info("Sync started", query=query, supplier_id=supplier_id)
            self._emit(ProgressStage.SEARCHING, f"Searching Gmail for {label or 'financial'} emails...")

            try:
                listed = await self.email_service.search_with_attachments(query, self.config.max_items)
                candidates = [m for m in listed if m.has_attachment]
                unprocessed = set(await self.ledger.filter_unprocessed([m.message_id for m in candidates]))
            except Exception as e:
                logger.error("Sync failed while listing emails", query=query, error=str(e))
                self._emit(ProgressStage.ERROR, str(e) or "Mailbox search failed")
                raise

            pending = [m for m in candidates if m.message_id in unprocessed]

            if not candidates:
                logger.info("No emails with document attachments matched", listed=len(listed))
                await self._save_history(listed, supplier_id)
                return self._noop_report(
                    SyncStatus.NO_MATCHES,
                    f"No emails with attachments found for {label}" if label else "No emails with attachments found",
                    listed,
                    matched=0,
                    started_at=started_at,
                )

            if not pending:
                logger.info("All matching emails already processed", matched=len(candidates))
                await self._save_history(listed, supplier_id)
                return self._noop_report(
                    SyncStatus.UP_TO_DATE,
                    f"Already up to date: all {len(candidates)} matching emails were processed before",
                    listed,
                    matched=len(candidates),
                    started_at=started_at,
                )

            jobs = [(message, attachment) for message in pending for attachment in message.attachments]
            state = _RunState(total=len(jobs))
            self._emit(
                ProgressStage.DOWNLOADING,
                f"Found {len(jobs)} attachments in {len(pending)} emails",
                total=len(jobs),
                emails_found=len(listed),
            )
            logger.info(
                "Processing attachments",
                matched=len(candidates),
                emails=len(pending),
                skipped_processed=len(candidates) - len(pending),
                attachments=len(jobs),
                concurrency=self.config.concurrency,
            )

            documents = await self._process_all(jobs, state, vendor_override)
            failures = state.failures

            # Only emails with every attachment archived count as done
            failed_ids = {f.message_id for f in failures}
            done_ids = [m.message_id for m in pending if m.message_id not in failed_ids]
            try:
                await self.ledger.mark_many_processed(done_ids)
            except Exception as e:
                logger.error("Failed to update processed ledger", message_ids=done_ids, error=str(e))

            await self._save_history(listed, supplier_id)

            status = SyncStatus.PARTIAL if failures else SyncStatus.COMPLETED
            message = f"Processed {len(documents)} documents"
            if label:
                message += f" for {label}"
            if failures:
                message += f", {len(failures)} failed"

            finished_at = datetime.now()
            report = SyncReport(
                status=status,
                message=message,
                items_matched=len(candidates),
                items_found=len(pending),
                attachments_found=len(jobs),
                documents_uploaded=len(documents),
                documents_failed=len(failures),
                documents=documents,
                failures=failures,
                daily_report=DailyReport.from_documents(started_at.date(), documents),
                started_at=started_at,
                finished_at=finished_at,
            )

            self._emit(
                ProgressStage.COMPLETE,
                message,
                current=len(jobs),
                total=len(jobs),
                emails_found=len(listed),
                attachments_processed=len(jobs),
                documents_uploaded=len(documents),
            )
            logger.info(
                "Sync finished",
                status=status.value,
                emails=len(pending),
                uploaded=len(documents),
                failed=len(failures),
                committed=len(done_ids),
                duration_seconds=round((finished_at - started_at).total_seconds(), 2),
            )

            if state.auth_error is not None:
                raise state.auth_error
            return report

    async def _process_all(
        self,
        jobs: list[tuple[EmailMessage, EmailAttachment]],
        state: _RunState,
        vendor_override: Optional[str],
    ) -> list[ProcessedDocument]:
        limit = ConcurrencyLimiter(self.config.concurrency)
        tasks = [
            asyncio.ensure_future(limit(partial(self._process_attachment, message, attachment, state, vendor_override)))
            for message, attachment in jobs
        ]

        timeout = self.config.timeout_seconds or None
        _, not_done = await asyncio.wait(tasks, timeout=timeout)
        if not_done:
            logger.error(
                "Sync timed out, cancelling unfinished attachments",
                unfinished=len(not_done),
                timeout_seconds=timeout,
            )
            for task in not_done:
                task.cancel()
            await asyncio.gather(*not_done, return_exceptions=True)

        documents: list[ProcessedDocument] = []
        for task, (message, attachment) in zip(tasks, jobs):
            if task.cancelled():
                state.failures.append(
                    self._failure(message, attachment, TIMED_OUT_REASON, ErrorType.TIMEOUT)
                )
            elif task.result() is not None:
                documents.append(task.result())
        return documents

    async def _process_attachment(
        self,
        message: EmailMessage,
        attachment: EmailAttachment,
        state: _RunState,
        vendor_override: Optional[str],
    ) -> Optional[ProcessedDocument]:
        """Download, classify, file and upload one attachment. Failures are recorded, never raised."""
        state.started += 1
        current = state.started
        filename = attachment.filename
        step = "download"

        try:
            self._emit(ProgressStage.DOWNLOADING, f"Downloading: {filename}", current, state.total)
            content = await self.email_service.download_attachment(message.message_id, attachment.attachment_id)

            step = "classification"
            self._emit(ProgressStage.CLASSIFYING, f"Classifying: {filename}", current, state.total)
            classification = await self.classifier.classify(message.subject, message.snippet, filename)
            if classification is None and attachment.mime_type.startswith("image/"):
                classification = await self.classifier.classify_image(content, attachment.mime_type)

            doc_type = classification.doc_type if classification else DocType.OTHER
            vendor = (
                vendor_override
                or (classification.vendor_name if classification else "")
                or message.sender_name
                or "Unknown"
            )
            folder_path = self.folder_path_for(vendor, message.received_at)

            step = "upload"
            self._emit(ProgressStage.UPLOADING, f"Uploading: {filename}", current, state.total)
            folder_id = await self.folder_resolver.ensure_folder(folder_path)

            drive_file = await self.drive_service.find_file(filename, folder_id)
            already_existed = drive_file is not None
            if drive_file is None:
                drive_file = await self.drive_service.upload_file(
                    filename,
                    content,
                    folder_id,
                    attachment.mime_type or self.drive_config.default_mime_type,
                )
            else:
                logger.info(
                    "Document already in Drive, skipping upload",
                    message_id=message.message_id,
                    filename=filename,
                    file_id=drive_file.id,
                )

        except Exception as e:
            if isinstance(e, AuthExpiredError) and state.auth_error is None:
                state.auth_error = e
            error_type = classify_error(e, context=step)
            logger.warning(
                "Failed to process attachment",
                message_id=message.message_id,
                filename=filename,
                step=step,
                error_type=error_type.value,
                error=str(e),
            )
            state.failures.append(self._failure(message, attachment, str(e) or type(e).__name__, error_type))
            return None

        return ProcessedDocument(
            message_id=message.message_id,
            attachment_name=filename,
            doc_type=doc_type,
            vendor_name=vendor,
            classification=classification,
            folder_path=folder_path,
            drive_path=f"{folder_path}/{filename}",
            drive_file_id=drive_file.id,
            amount=classification.amount if classification else None,
            currency=classification.currency if classification else None,
            requires_review=requires_review(classification, self.classifier_config.confidence_threshold),
            already_existed=already_existed,
            email_date=message.received_at,
            processed_at=datetime.now(),
        )

    @staticmethod
    def _failure(
        message: EmailMessage, attachment: EmailAttachment, reason: str, error_type: ErrorType
    ) -> FailedDocument:
        return FailedDocument(
            message_id=message.message_id,
            filename=attachment.filename,
            reason=reason,
            error_type=error_type,
            sender=message.sender_email or message.sender_name,
            email_date=message.received_at,
            failed_at=datetime.now(),
        )

    async def _save_history(self, messages: list[EmailMessage], supplier_id: Optional[str]) -> None:
        if not messages:
            return
        saved_at = datetime.now()
        records = [
            SavedEmail.from_message(m, get_financial_year(m.received_at), saved_at, supplier_id)
            for m in messages
        ]
        try:
            await self.history_store.save_emails(records)
        except Exception as e:
            logger.error("Failed to save email history", count=len(records), error=str(e))

    def _noop_report(
        self,
        status: SyncStatus,
        message: str,
        listed: list[EmailMessage],
        matched: int,
        started_at: datetime,
    ) -> SyncReport:
        self._emit(
            ProgressStage.COMPLETE,
            message,
            emails_found=len(listed),
            attachments_processed=0,
            documents_uploaded=0,
        )
        return SyncReport(
            status=status,
            message=message,
            items_matched=matched,
            items_found=0,
            started_at=started_at,
            finished_at=datetime.now(),
        )

    def _emit(
        self,
        stage: ProgressStage,
        message: str,
        current: int = 0,
        total: int = 0,
        **counters: int,
    ) -> None:
        if self.on_progress is None:
            return
        event = SyncProgress(stage=stage, message=message, current=current, total=total, **counters)
        try:
            self.on_progress(event)
        except Exception as e:
            logger.warning("Progress listener raised", stage=stage.value, error=str(e))
