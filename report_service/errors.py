"""
Error taxonomy for the report analysis pipeline.

Every error carries a user-facing message and an HTTP-style status code so
the transport layer can map failures without inspecting exception types.
Raw model output is never placed in a user message.
"""
from enum import Enum
from typing import Optional


PREVIEW_LIMIT = 200


class ReportServiceError(Exception):
    """Base class for all typed pipeline errors."""

    status_code: int = 500
    user_message: str = "Analysis failed, please retry."
    error_kind: str = "internal_error"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class ConfigurationError(ReportServiceError):
    """Missing or malformed configuration. Fatal at startup."""

    error_kind = "configuration_error"


class UnsupportedMediaError(ReportServiceError):
    status_code = 415
    error_kind = "unsupported_media"
    user_message = (
        "Unsupported file type. Please upload an image (JPG, PNG, WebP), "
        "a PDF or a plain text file."
    )


class DocumentTooLargeError(UnsupportedMediaError):
    status_code = 413
    error_kind = "document_too_large"
    user_message = "The uploaded file is too large. Maximum size is 10 MB."


class UnreadableDocumentError(ReportServiceError):
    status_code = 422
    error_kind = "unreadable_document"
    user_message = (
        "Could not read any text from this document. It may be a scanned "
        "PDF. Please convert the pages to images (JPG/PNG) and upload those "
        "instead."
    )


class ModelErrorKind(str, Enum):
    QUOTA = "quota"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    MALFORMED_REQUEST = "malformed_request"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_MODEL_ERROR_STATUS = {
    ModelErrorKind.QUOTA: 429,
    ModelErrorKind.PERMISSION: 502,
    ModelErrorKind.NOT_FOUND: 502,
    ModelErrorKind.MALFORMED_REQUEST: 502,
    ModelErrorKind.TIMEOUT: 504,
    ModelErrorKind.UNKNOWN: 502,
}

_MODEL_ERROR_MESSAGES = {
    ModelErrorKind.QUOTA: "The analysis service is busy (quota exceeded). Please try again later.",
    ModelErrorKind.PERMISSION: "The analysis service is temporarily unavailable. Please try again later.",
    ModelErrorKind.NOT_FOUND: "No analysis model is currently available. Please try again later.",
    ModelErrorKind.MALFORMED_REQUEST: "The analysis request was rejected. Please retry with a different file.",
    ModelErrorKind.TIMEOUT: "The analysis took too long. Please try again later.",
    ModelErrorKind.UNKNOWN: "The analysis service is temporarily unavailable. Please try again later.",
}


class ModelUnavailableError(ReportServiceError):
    """All model candidates were exhausted."""

    error_kind = "model_unavailable"

    def __init__(
        self,
        message: str,
        kind: ModelErrorKind = ModelErrorKind.UNKNOWN,
        last_error: Optional[BaseException] = None,
        attempted: Optional[list[str]] = None,
    ):
        super().__init__(message, user_message=_MODEL_ERROR_MESSAGES[kind])
        self.kind = kind
        self.last_error = last_error
        self.attempted = attempted or []
        self.status_code = _MODEL_ERROR_STATUS[kind]


class ResponseParseError(ReportServiceError):
    """The model replied but no JSON structure could be recovered."""

    status_code = 502
    error_kind = "response_parse_error"
    user_message = "Analysis failed, please retry."

    def __init__(self, message: str, raw_text: str = ""):
        self.preview = bounded_preview(raw_text)
        super().__init__(f"{message}. Response preview: {self.preview}")


class ValidationCoercionWarning(UserWarning):
    """A field was missing or mistyped and was replaced by a safe default."""

    def __init__(self, field: str, detail: str):
        super().__init__(f"{field}: {detail}")
        self.field = field
        self.detail = detail


def bounded_preview(text: str, limit: int = PREVIEW_LIMIT) -> str:
    """Return at most `limit` characters of text, marked when cut."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
