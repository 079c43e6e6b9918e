"""Classification and archived document models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from finsync.utils.errors import ErrorType


class DocType(str, Enum):
    """Financial document types."""

    INVOICE = "INVOICE"
    BANK_STATEMENT = "BANK_STATEMENT"
    RECEIPT = "RECEIPT"
    TAX_LETTER = "TAX_LETTER"
    OTHER = "OTHER"


class Classification(BaseModel):
    """
    Structured model output for one attachment.

    Accepts the classifier's camelCase wire format (``type``, ``vendorName``)
    as well as field names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    doc_type: DocType = Field(default=DocType.OTHER, alias="type")
    vendor_name: str = Field(default="", alias="vendorName")
    amount: Optional[str] = None
    currency: Optional[str] = None
    date: Optional[str] = None
    reasoning: Optional[str] = None
    confidence: Optional[float] = None

    @field_validator("doc_type", mode="before")
    @classmethod
    def coerce_doc_type(cls, v: Any) -> Any:
        """Unknown or missing types fall back to OTHER."""
        if isinstance(v, DocType):
            return v
        if isinstance(v, str) and v.strip().upper() in DocType.__members__:
            return DocType[v.strip().upper()]
        return DocType.OTHER

    @field_validator("vendor_name", mode="before")
    @classmethod
    def coerce_vendor(cls, v: Any) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Optional[str]:
        # Models sometimes return the amount as a number
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> Optional[float]:
        """Clamp to [0, 100]; unparseable values become None."""
        if v is None or v == "":
            return None
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        return min(100.0, max(0.0, value))


class DriveFile(BaseModel):
    """A file stored in Google Drive."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    web_view_link: Optional[str] = Field(default=None, alias="webViewLink")


class ProcessedDocument(BaseModel):
    """An attachment that is now stored in Drive."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    attachment_name: str
    doc_type: DocType
    vendor_name: str
    classification: Optional[Classification] = None
    folder_path: str
    drive_path: str
    drive_file_id: str
    amount: Optional[str] = None
    currency: Optional[str] = None
    requires_review: bool = False
    already_existed: bool = False
    email_date: datetime
    processed_at: datetime


class FailedDocument(BaseModel):
    """An attachment that could not be archived in this run."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    filename: str
    reason: str
    error_type: ErrorType = ErrorType.UNKNOWN
    sender: str = ""
    email_date: Optional[datetime] = None
    failed_at: datetime
