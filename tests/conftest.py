"""Pytest configuration and fixtures for all tests."""

import asyncio
import os
from datetime import datetime
from typing import Optional

import pytest

# Set test environment variables before importing settings
os.environ["APP_ENV"] = "testing"
os.environ["LOG_FORMAT"] = "console"
os.environ["GMAIL_CREDENTIALS_PATH"] = "/tmp/test_gmail_creds.json"
os.environ["GMAIL_TOKEN_PATH"] = "/tmp/test_gmail_token.json"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["CLASSIFIER_MODE"] = "proxy"
os.environ["CLASSIFIER_PROXY_URL"] = "https://proxy.test/api/classify"

import httplib2  # noqa: E402
from googleapiclient.errors import HttpError  # noqa: E402

from finsync.models.document import Classification, DriveFile  # noqa: E402
from finsync.models.email import EmailAttachment, EmailMessage  # noqa: E402
from finsync.utils.retry import RetryPolicy  # noqa: E402


def make_http_error(status: int, reason: str = "error") -> HttpError:
    """Build a googleapiclient HttpError with the given status."""
    return HttpError(httplib2.Response({"status": status}), reason.encode())


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis the stores use."""

    def __init__(self) -> None:
        self.sets: dict[str, set[str]] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.closed = False
        self.write_calls = 0
        self.pipeline_executions = 0

    async def sismember(self, key, member):
        return int(member in self.sets.get(key, set()))

    async def smismember(self, key, members):
        current = self.sets.get(key, set())
        return [int(m in current) for m in members]

    async def sadd(self, key, *members):
        self.write_calls += 1
        current = self.sets.setdefault(key, set())
        added = len(set(members) - current)
        current.update(members)
        return added

    async def srem(self, key, *members):
        current = self.sets.get(key, set())
        removed = len(current & set(members))
        current.difference_update(members)
        return removed

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def scard(self, key):
        return len(self.sets.get(key, set()))

    async def hsetnx(self, key, field, value):
        self.write_calls += 1
        current = self.hashes.setdefault(key, {})
        if field in current:
            return 0
        current[field] = value
        return 1

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def hmget(self, key, fields):
        current = self.hashes.get(key, {})
        return [current.get(f) for f in fields]

    async def hdel(self, key, *fields):
        current = self.hashes.get(key, {})
        removed = sum(1 for f in fields if current.pop(f, None) is not None)
        return removed

    async def hlen(self, key):
        return len(self.hashes.get(key, {}))

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.sets.pop(key, None) is not None)
            removed += int(self.hashes.pop(key, None) is not None)
        return removed

    async def close(self):
        self.closed = True

    def pipeline(self, transaction: bool = True):
        return FakePipeline(self)


class FakePipeline:
    """Queues commands and runs them in order on ``execute()``."""

    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.commands: list = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self

        return queue

    async def execute(self):
        self.redis.pipeline_executions += 1
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands = []
        return results


class FakeMailbox:
    """Mailbox collaborator holding messages and attachment bytes in memory."""

    def __init__(self) -> None:
        self.messages: list[EmailMessage] = []
        self.content: dict[tuple[str, str], bytes] = {}
        self.download_errors: dict[tuple[str, str], Exception] = {}
        self.download_delay: float = 0.0
        self.list_error: Optional[Exception] = None
        self.queries: list[str] = []
        self.downloads: list[tuple[str, str]] = []

    def add_message(
        self,
        message_id: str,
        filenames: list[str],
        sender_name: str = "Acme Billing",
        received_at: datetime = datetime(2026, 3, 15, 9, 30),
        subject: str = "Your invoice",
    ) -> EmailMessage:
        attachments = tuple(
            EmailAttachment(
                attachment_id=f"{message_id}-att-{i}",
                filename=name,
                mime_type="application/pdf",
                size_bytes=50_000,
            )
            for i, name in enumerate(filenames)
        )
        message = EmailMessage(
            message_id=message_id,
            sender_name=sender_name,
            sender_email="billing@acme.example",
            subject=subject,
            snippet="Please find attached",
            received_at=received_at,
            attachments=attachments,
        )
        for attachment in attachments:
            self.content[(message_id, attachment.attachment_id)] = f"{message_id}:{attachment.filename}".encode()
        self.messages.append(message)
        return message

    def fail_download(self, message_id: str, filename: str, error: Exception) -> None:
        message = next(m for m in self.messages if m.message_id == message_id)
        attachment = next(a for a in message.attachments if a.filename == filename)
        self.download_errors[(message_id, attachment.attachment_id)] = error

    async def search_with_attachments(self, query: str, max_results: int = 500) -> list[EmailMessage]:
        self.queries.append(query)
        if self.list_error is not None:
            raise self.list_error
        return list(self.messages[:max_results])

    async def download_attachment(self, message_id: str, attachment_id: str) -> bytes:
        self.downloads.append((message_id, attachment_id))
        if self.download_delay:
            await asyncio.sleep(self.download_delay)
        error = self.download_errors.get((message_id, attachment_id))
        if error is not None:
            raise error
        return self.content[(message_id, attachment_id)]


class FakeDrive:
    """Destination store collaborator with call counters."""

    def __init__(self) -> None:
        self.folders: dict[tuple[str, str], str] = {}
        self.files: dict[tuple[str, str], DriveFile] = {}
        self.upload_errors: dict[str, Exception] = {}
        self.find_folder_calls = 0
        self.create_folder_calls = 0
        self.created_folders: list[tuple[str, str]] = []
        self.uploads: list[tuple[str, str]] = []
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}_{self._next_id}"

    async def find_folder(self, parent_id: str, name: str) -> Optional[str]:
        self.find_folder_calls += 1
        # Yield so concurrent resolutions interleave like real API calls
        await asyncio.sleep(0.01)
        return self.folders.get((parent_id, name))

    async def create_folder(self, parent_id: str, name: str) -> str:
        self.create_folder_calls += 1
        self.created_folders.append((parent_id, name))
        await asyncio.sleep(0.01)
        folder_id = self._new_id("folder")
        self.folders[(parent_id, name)] = folder_id
        return folder_id

    async def find_file(self, name: str, folder_id: str) -> Optional[DriveFile]:
        await asyncio.sleep(0)
        return self.files.get((folder_id, name))

    async def upload_file(
        self, name: str, content: bytes, folder_id: str, mime_type: Optional[str] = None
    ) -> DriveFile:
        await asyncio.sleep(0)
        error = self.upload_errors.get(name)
        if error is not None:
            raise error
        self.uploads.append((folder_id, name))
        file = DriveFile(id=self._new_id("file"), name=name, mimeType=mime_type)
        self.files[(folder_id, name)] = file
        return file


class FakeClassifier:
    """Classifier collaborator returning canned results per filename."""

    def __init__(self, default: Optional[Classification] = None) -> None:
        self.results: dict[str, Optional[Classification]] = {}
        self.default = default
        self.calls: list[tuple[str, str, Optional[str]]] = []
        self.image_calls: list[str] = []

    async def classify(self, subject: str, snippet: str, filename: Optional[str] = None) -> Optional[Classification]:
        self.calls.append((subject, snippet, filename))
        return self.results.get(filename or "", self.default)

    async def classify_image(self, content: bytes, mime_type: str) -> Optional[Classification]:
        self.image_calls.append(mime_type)
        return None


@pytest.fixture
def fake_redis():
    """Fresh in-memory Redis."""
    return FakeRedis()


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def classifier():
    return FakeClassifier(
        default=Classification(type="INVOICE", vendorName="Acme", amount="120.50", currency="ZAR", confidence=92)
    )


@pytest.fixture
def fast_retry():
    """Retry policy without real delays."""
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0, jitter_max=0)


@pytest.fixture
def http_error():
    """Factory for googleapiclient HttpErrors: ``http_error(503)``."""
    return make_http_error
