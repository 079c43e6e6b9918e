"""Email metadata models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EmailAttachment(BaseModel):
    """Email attachment details."""

    model_config = ConfigDict(frozen=True)

    attachment_id: str
    filename: str
    mime_type: str = "application/octet-stream"
    size_bytes: Optional[int] = None


class EmailMessage(BaseModel):
    """A Gmail message with its document attachments (no attachment bytes)."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    sender_name: str = ""
    sender_email: str = ""
    subject: str = ""
    snippet: str = ""
    received_at: datetime
    attachments: tuple[EmailAttachment, ...] = ()

    @property
    def has_attachment(self) -> bool:
        return len(self.attachments) > 0


class SearchPage(BaseModel):
    """One page of mailbox search results."""

    items: list[EmailMessage] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class SavedEmail(BaseModel):
    """Email history record kept for later lookup."""

    message_id: str
    sender_name: str
    sender_email: str
    subject: str
    snippet: str
    received_at: datetime
    has_attachment: bool
    attachment_names: list[str] = Field(default_factory=list)
    supplier_id: Optional[str] = None
    financial_year: str
    saved_at: datetime

    @classmethod
    def from_message(
        cls,
        message: EmailMessage,
        financial_year: str,
        saved_at: datetime,
        supplier_id: Optional[str] = None,
    ) -> "SavedEmail":
        return cls(
            message_id=message.message_id,
            sender_name=message.sender_name,
            sender_email=message.sender_email,
            subject=message.subject,
            snippet=message.snippet,
            received_at=message.received_at,
            has_attachment=message.has_attachment,
            attachment_names=[a.filename for a in message.attachments],
            supplier_id=supplier_id,
            financial_year=financial_year,
            saved_at=saved_at,
        )
