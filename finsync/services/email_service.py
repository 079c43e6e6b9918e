"""Gmail API integration for searching financial emails and downloading attachments."""

import asyncio
import base64
import re
from datetime import datetime
from typing import Any, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from finsync.config.settings import GmailConfig, settings
from finsync.models.email import EmailAttachment, EmailMessage, SearchPage
from finsync.utils.attachment_filter import is_document_attachment
from finsync.utils.concurrency import ConcurrencyLimiter
from finsync.utils.errors import AuthExpiredError
from finsync.utils.google_api import AuthExpiredCallback, RequestExecutor, authorized_http_factory
from finsync.utils.google_auth import load_credentials
from finsync.utils.logging import get_logger
from finsync.utils.retry import RetryPolicy

logger = get_logger(__name__)

# Gmail API max per page
MAX_PAGE_SIZE = 100

_SENDER_PATTERN = re.compile(r"^(.+?)\s*<(.+?)>$")


def parse_sender(from_header: str) -> tuple[str, str]:
    """Split ``"Acme Billing" <billing@acme.com>`` into name and address."""
    match = _SENDER_PATTERN.match(from_header.strip())
    if not match:
        return from_header, from_header
    name = match.group(1).strip().replace('"', "") or from_header
    return name, match.group(2).strip()


def _header(headers: list[dict[str, str]], name: str) -> str:
    lowered = name.lower()
    for header in headers:
        if header.get("name", "").lower() == lowered:
            return header.get("value", "")
    return ""


class EmailService:
    """Gmail mailbox client."""

    def __init__(
        self,
        config: Optional[GmailConfig] = None,
        service: Any = None,
        retry: Optional[RetryPolicy] = None,
        on_auth_expired: Optional[AuthExpiredCallback] = None,
        credentials: Optional[Credentials] = None,
    ) -> None:
        """
        Initialize Gmail API client.

        Args:
            config: Gmail settings (defaults to ``settings.gmail``)
            service: Prebuilt Gmail v1 resource; built from the stored token when omitted
            retry: Backoff policy for every API call
            on_auth_expired: Called once per request rejected with 401
            credentials: OAuth credentials; each request then gets its own transport
        """
        self.config = config or settings.gmail
        if service is None:
            credentials = credentials or load_credentials(self.config)
            service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        self.service = service
        self.executor = RequestExecutor(
            retry or RetryPolicy.from_config(settings.retry),
            http_factory=authorized_http_factory(credentials) if credentials else None,
            on_auth_expired=on_auth_expired,
        )
        logger.info("Gmail service initialized")

    async def _execute(self, build_request, operation: str) -> Any:
        return await self.executor.execute(build_request, operation)

    async def search(
        self, query: str, max_results: int = MAX_PAGE_SIZE, page_token: Optional[str] = None
    ) -> SearchPage:
        """
        Fetch one page of messages matching ``query``.

        Message ids are listed first, then each message is fetched in full
        with at most ``fetch_concurrency`` requests in flight. A message that
        cannot be fetched is logged and left out of the page.

        Raises:
            AuthExpiredError: The token was rejected
        """
        page_size = max(1, min(max_results, MAX_PAGE_SIZE, self.config.page_size))

        def list_request():
            kwargs: dict[str, Any] = {"userId": "me", "q": query, "maxResults": page_size}
            if page_token:
                kwargs["pageToken"] = page_token
            return self.service.users().messages().list(**kwargs)

        response = await self._execute(list_request, "gmail.messages.list")
        refs = response.get("messages", [])
        next_token = response.get("nextPageToken")

        if not refs:
            return SearchPage(items=[], next_page_token=next_token)

        limit = ConcurrencyLimiter(self.config.fetch_concurrency)

        async def fetch(message_id: str) -> Optional[EmailMessage]:
            try:
                return await limit(lambda: self.fetch_full(message_id))
            except AuthExpiredError:
                raise
            except Exception as e:
                logger.warning("Failed to fetch message", message_id=message_id, error=str(e))
                return None

        fetched = await asyncio.gather(*(fetch(ref["id"]) for ref in refs))
        messages = [message for message in fetched if message is not None]

        logger.info(
            "Searched mailbox",
            listed=len(refs),
            fetched=len(messages),
            has_next_page=next_token is not None,
        )
        return SearchPage(items=messages, next_page_token=next_token)

    async def search_with_attachments(self, query: str, max_results: int = 500) -> list[EmailMessage]:
        """
        Collect up to ``max_results`` messages across pages.

        Stops at ``max_results``, after ``max_pages`` pages, or when the
        mailbox has no further pages.
        """
        messages: list[EmailMessage] = []
        page_token: Optional[str] = None
        pages = 0

        while True:
            page = await self.search(query, max_results - len(messages), page_token)
            messages.extend(page.items)
            pages += 1
            page_token = page.next_page_token

            if not page_token or len(messages) >= max_results or pages >= self.config.max_pages:
                break

        logger.info("Mailbox search complete", query=query, messages=len(messages), pages=pages)
        return messages[:max_results]

    async def fetch_full(self, message_id: str) -> EmailMessage:
        """Fetch one message with headers and document attachment metadata."""
        raw = await self._execute(
            lambda: self.service.users().messages().get(userId="me", id=message_id, format="full"),
            "gmail.messages.get",
        )
        return self.parse_message(raw)

    def parse_message(self, raw: dict[str, Any]) -> EmailMessage:
        """Convert a ``format=full`` message resource into an EmailMessage."""
        payload = raw.get("payload", {})
        headers = payload.get("headers", [])
        sender_name, sender_email = parse_sender(_header(headers, "From"))

        attachments: list[EmailAttachment] = []
        self._extract_attachments(payload.get("parts", []), attachments)

        return EmailMessage(
            message_id=raw["id"],
            sender_name=sender_name,
            sender_email=sender_email,
            subject=_header(headers, "Subject"),
            snippet=raw.get("snippet", ""),
            received_at=datetime.fromtimestamp(int(raw["internalDate"]) / 1000),
            attachments=tuple(attachments),
        )

    def _extract_attachments(self, parts: list[dict[str, Any]], found: list[EmailAttachment]) -> None:
        for part in parts:
            body = part.get("body", {})
            filename = part.get("filename", "")
            if filename and body.get("attachmentId"):
                disposition = _header(part.get("headers", []), "Content-Disposition")
                if is_document_attachment(
                    filename,
                    mime_type=part.get("mimeType"),
                    size_bytes=body.get("size"),
                    inline="inline" in disposition.lower(),
                    min_size_bytes=self.config.min_attachment_bytes,
                ):
                    found.append(
                        EmailAttachment(
                            attachment_id=body["attachmentId"],
                            filename=filename,
                            mime_type=part.get("mimeType") or "application/octet-stream",
                            size_bytes=body.get("size"),
                        )
                    )
                else:
                    logger.debug("Skipping non-document attachment", filename=filename)

            # Nested multipart bodies
            if part.get("parts"):
                self._extract_attachments(part["parts"], found)

    async def download_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """
        Download attachment bytes.

        Args:
            message_id: Gmail message ID
            attachment_id: Attachment ID from the message payload

        Returns:
            Decoded attachment content
        """
        attachment = await self._execute(
            lambda: self.service.users()
            .messages()
            .attachments()
            .get(userId="me", messageId=message_id, id=attachment_id),
            "gmail.attachments.get",
        )

        data = attachment.get("data", "")
        # Gmail strips base64url padding
        content = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
        logger.debug("Attachment downloaded", message_id=message_id, size_bytes=len(content))
        return content
