"""Entry point: run one financial document sync."""

import asyncio
from datetime import date, timedelta

from finsync.config.settings import settings
from finsync.models.sync import DateRange, SyncProgress
from finsync.services.classifier_service import build_classifier
from finsync.services.drive_service import DriveService
from finsync.services.email_service import EmailService
from finsync.services.folder_resolver import FolderPathResolver
from finsync.services.history_service import EmailHistoryStore
from finsync.services.ledger_service import ProcessedLedger
from finsync.utils.google_auth import load_credentials
from finsync.utils.logging import configure_logging, get_logger
from finsync.workers.sync_worker import SyncWorker

configure_logging()
logger = get_logger(__name__)


def log_progress(event: SyncProgress) -> None:
    logger.debug(
        "Sync progress",
        stage=event.stage.value,
        message=event.message,
        current=event.current,
        total=event.total,
    )


def on_auth_expired() -> None:
    logger.error(
        "Google session expired, sign in again to regenerate the token",
        token_path=str(settings.gmail.token_path),
    )


def create_sync_worker() -> SyncWorker:
    """Build every collaborator once and wire them into a SyncWorker."""
    credentials = load_credentials(settings.gmail)
    drive_service = DriveService(on_auth_expired=on_auth_expired, credentials=credentials)
    return SyncWorker(
        email_service=EmailService(on_auth_expired=on_auth_expired, credentials=credentials),
        drive_service=drive_service,
        folder_resolver=FolderPathResolver(drive_service, root_id=settings.drive.root_folder_id),
        classifier=build_classifier(settings.classifier),
        ledger=ProcessedLedger(settings.redis),
        history_store=EmailHistoryStore(settings.redis),
        on_progress=log_progress,
    )


async def main() -> None:
    logger.info("Starting financial document sync", env=settings.app.env)

    worker = create_sync_worker()
    await worker.ledger.init()
    await worker.history_store.connect()

    date_range = None
    if settings.sync.lookback_days:
        today = date.today()
        date_range = DateRange(start=today - timedelta(days=settings.sync.lookback_days), end=today)

    try:
        report = await worker.run_sync(date_range=date_range)
        logger.info(
            "Sync report",
            status=report.status.value,
            message=report.message,
            items_found=report.items_found,
            documents_uploaded=report.documents_uploaded,
            documents_failed=report.documents_failed,
            requires_review=sum(1 for d in report.documents if d.requires_review),
        )
        for failure in report.failures:
            logger.warning(
                "Attachment not archived",
                message_id=failure.message_id,
                filename=failure.filename,
                error_type=failure.error_type.value,
                reason=failure.reason,
            )
    finally:
        await worker.ledger.close()
        await worker.history_store.close()


if __name__ == "__main__":
    asyncio.run(main())
