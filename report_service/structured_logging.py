"""
Structured logging for the MedReport AI Service.

JSON log lines with a per-request id so a single upload can be traced
through ingestion, retrieval, model calls and alerting.
"""
import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

NOISY_LOGGERS = ("httpx", "httpcore", "google_genai", "pdfminer", "PIL")


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context and return it."""
    if request_id is None:
        request_id = uuid.uuid4().hex[:12]
    request_id_var.set(request_id)
    return request_id


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object."""

    def __init__(self, service_name: str = "medreport"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        request_id = get_request_id()
        if request_id:
            payload["request_id"] = request_id
        data = getattr(record, "extra_data", None)
        if data:
            payload["data"] = data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class StructuredLogger:
    """Thin wrapper so call sites can attach keyword data to a message."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **data: Any) -> None:
        self.logger.log(level, message, extra={"extra_data": data} if data else {})

    def debug(self, message: str, **data: Any) -> None:
        self._log(logging.DEBUG, message, **data)

    def info(self, message: str, **data: Any) -> None:
        self._log(logging.INFO, message, **data)

    def warning(self, message: str, **data: Any) -> None:
        self._log(logging.WARNING, message, **data)

    def error(self, message: str, **data: Any) -> None:
        self._log(logging.ERROR, message, **data)

    def exception(self, message: str, **data: Any) -> None:
        self.logger.exception(message, extra={"extra_data": data})


def setup_logging(
    level: str | int = logging.INFO,
    service_name: str = "medreport",
    use_json: bool = True,
) -> None:
    """Replace root handlers with a single stderr handler."""
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if use_json:
        handler.setFormatter(JSONFormatter(service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_request(method: str, path: str, status_code: int, duration_ms: float,
                identity: Optional[str] = None) -> None:
    """Log one HTTP exchange at the transport boundary."""
    http_logger = StructuredLogger("http")
    data = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if identity:
        data["identity"] = identity
    if status_code >= 500:
        http_logger.error(f"{method} {path} {status_code}", **data)
    else:
        http_logger.info(f"{method} {path} {status_code}", **data)
