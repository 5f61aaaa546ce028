"""
Attachment rules for the registration form.

Every attachment must be a single PDF under a per-field size ceiling.
Violations are returned as messages, never raised, so a caller can report
all of them in one response.
"""
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

MB = 1024 * 1024

PDF_MIME_TYPE = "application/pdf"
PDF_EXTENSION = ".pdf"

ATTACHMENT_LIMITS = {
    "idCard": 2 * MB,
    "munCertificates": 2 * MB,
    "chairingResume": 3 * MB,
}
REQUIRED_ATTACHMENTS = ("idCard",)
OPTIONAL_ATTACHMENTS = ("munCertificates", "chairingResume")


@dataclass
class Attachment:
    """An uploaded file held in memory."""

    content: bytes
    filename: str
    content_type: Optional[str]
    size: int

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename or "")[1].lower()


def format_size(num_bytes: int) -> str:
    """Render a byte ceiling the way the form advertises it, e.g. ``2MB``."""
    if num_bytes % MB == 0:
        return f"{num_bytes // MB}MB"
    return f"{num_bytes / MB:.1f}MB"


def validate_attachment(files: Optional[Sequence[Attachment]], field_name: str) -> List[str]:
    """
    Check the files provided for one form field.

    Args:
        files: Files posted under ``field_name`` (empty or None when absent)
        field_name: Attachment field, e.g. ``idCard``

    Returns:
        List of violation messages, empty when the attachment is valid.
        An absent optional attachment is valid.
    """
    files = list(files or [])
    errors = []

    if not files:
        if field_name in REQUIRED_ATTACHMENTS:
            errors.append(f"{field_name} is required")
        return errors

    if len(files) > 1:
        errors.append(f"{field_name} must be a single file")

    for attachment in files:
        if attachment.content_type != PDF_MIME_TYPE:
            errors.append(f"{field_name} must be a PDF file")

        if attachment.extension != PDF_EXTENSION:
            errors.append(f"{field_name} must have a .pdf extension")

        max_size = ATTACHMENT_LIMITS.get(field_name)
        if max_size is not None and attachment.size > max_size:
            errors.append(f"{field_name} must be less than {format_size(max_size)}")

    return errors
