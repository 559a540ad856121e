"""
Ingestion routing for uploaded documents.

Images go to the model as-is; PDFs and plain text are converted to text
first. Anything else is rejected before a model call is spent on it.
"""
import io
import logging
import re
from dataclasses import dataclass

import pdfplumber
from PIL import Image

from .config import DEFAULT_MAX_DOCUMENT_CHARS, DEFAULT_MAX_UPLOAD_BYTES
from .errors import DocumentTooLargeError, UnreadableDocumentError, UnsupportedMediaError

logger = logging.getLogger(__name__)

IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}
TEXT_TYPES = {"application/pdf", "text/plain"}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass(frozen=True)
class TranscriptionPayload:
    """What the prompt assembler receives for one uploaded document."""
    media_type: str
    data: bytes = b""
    text: str = ""
    truncated: bool = False
    original_length: int = 0

    @property
    def is_image(self) -> bool:
        return self.media_type in IMAGE_TYPES


def normalize_media_type(media_type: str) -> str:
    """Lowercase, drop parameters, and fold image/jpg into image/jpeg."""
    base = (media_type or "").split(";", 1)[0].strip().lower()
    return "image/jpeg" if base == "image/jpg" else base


def _remove_control_chars(text: str) -> str:
    return _CONTROL_CHARS.sub("", text)


def extract_pdf_text(data: bytes) -> str:
    """Extract tables (as pipe-joined rows) and page text from a PDF."""
    parts = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            tables = page.extract_tables()
            for table in tables or []:
                for row in table:
                    cells = [str(cell).strip() for cell in row if cell]
                    if cells:
                        parts.append(" | ".join(cells))
                parts.append("")

            page_text = page.extract_text()
            if page_text:
                parts.append(page_text)
    return "\n".join(parts).strip()


def _verify_image(data: bytes, media_type: str) -> None:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
    except (OSError, SyntaxError, ValueError) as e:
        raise UnreadableDocumentError(
            f"Image could not be decoded ({media_type}): {e}",
            user_message="The uploaded image could not be read. Please upload a clear JPG, PNG or WebP photo.",
        ) from e


def ingest(
    data: bytes,
    media_type: str,
    max_chars: int = DEFAULT_MAX_DOCUMENT_CHARS,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> TranscriptionPayload:
    """
    Pick the transcription strategy for one uploaded document.

    Raises:
        UnsupportedMediaError: the media type is not ingestible.
        DocumentTooLargeError: the upload exceeds max_bytes.
        UnreadableDocumentError: an image that does not decode, or a
            text-bearing document with no extractable text.
    """
    kind = normalize_media_type(media_type)
    if kind not in IMAGE_TYPES and kind not in TEXT_TYPES:
        raise UnsupportedMediaError(f"Unsupported media type: {media_type!r}")
    if len(data) > max_bytes:
        raise DocumentTooLargeError(f"Upload is {len(data)} bytes, limit is {max_bytes}")

    if kind in IMAGE_TYPES:
        _verify_image(data, kind)
        logger.info(f"Image upload accepted ({kind}, {len(data)} bytes)")
        return TranscriptionPayload(media_type=kind, data=data)

    if kind == "application/pdf":
        try:
            text = extract_pdf_text(data)
        except Exception as e:
            raise UnreadableDocumentError(
                f"Failed to parse PDF: {e}",
                user_message="The PDF could not be opened. Please check the file or upload images of the pages instead.",
            ) from e
    else:
        text = data.decode("utf-8", errors="replace")

    text = _remove_control_chars(text).strip()
    if not text:
        raise UnreadableDocumentError(f"No extractable text in {kind} upload ({len(data)} bytes)")

    original_length = len(text)
    truncated = original_length > max_chars
    if truncated:
        text = text[:max_chars]
        logger.warning(f"Extracted text truncated from {original_length} to {max_chars} characters")

    logger.info(f"Extracted {len(text)} characters from {kind} upload")
    return TranscriptionPayload(
        media_type=kind,
        text=text,
        truncated=truncated,
        original_length=original_length,
    )
