"""Heuristics that separate real documents from logos, pixels and signatures."""

from typing import Optional

# Extensions that are likely actual documents
DOCUMENT_EXTENSIONS = (
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".csv",
    ".txt", ".rtf", ".odt", ".ods", ".ppt", ".pptx",
    ".zip", ".rar", ".7z",
)

# Filename fragments typical of email signatures and newsletters
SKIP_NAME_PATTERNS = (
    "logo", "signature", "banner", "footer", "header",
    "icon", "avatar", "profile", "linkedin", "facebook",
    "twitter", "instagram", "youtube", "email-sig",
)

DEFAULT_MIN_SIZE_BYTES = 10 * 1024


def is_document_filename(filename: str) -> bool:
    """Whether the filename has a known document extension."""
    return filename.lower().endswith(DOCUMENT_EXTENSIONS)


def is_document_attachment(
    filename: str,
    mime_type: Optional[str] = None,
    size_bytes: Optional[int] = None,
    inline: bool = False,
    min_size_bytes: int = DEFAULT_MIN_SIZE_BYTES,
) -> bool:
    """
    Decide whether an attachment is worth archiving.

    Document extensions are always kept. Anything else is dropped when it is
    inline, smaller than ``min_size_bytes``, an image smaller than twice that
    (or of unknown size), or named like a logo/signature/social icon.
    """
    if not filename:
        return False

    name = filename.lower()
    if is_document_filename(name):
        return True

    size = size_bytes or 0
    is_image = (mime_type or "").lower().startswith("image/")
    too_small = 0 < size < min_size_bytes
    tiny_image = is_image and size < min_size_bytes * 2

    if inline or too_small or tiny_image:
        return False

    return not any(pattern in name for pattern in SKIP_NAME_PATTERNS)
