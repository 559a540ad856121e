"""
Audit trail for data access.

One JSON line per access, written through a dedicated logger with its own
file handler so audit lines never mix with application logs. Writing the
audit record must never fail the request it describes.
"""
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessRecord:
    identity: str
    action: str
    resource_kind: str
    resource_id: str
    success: bool
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        if data["error"] is None:
            del data["error"]
        if not data["metadata"]:
            del data["metadata"]
        return json.dumps(data, default=str)


class AuditLogger:
    """Append AccessRecords as JSON lines to an audit log file."""

    def __init__(self, log_file: Union[str, Path, None] = "logs/audit.log",
                 logger_name: str = "medreport_audit"):
        self.log_file = Path(log_file) if log_file else None
        self.logger = logging.getLogger(logger_name)
        self.logger.propagate = False
        self.logger.setLevel(logging.INFO)

        if self.log_file and not self.logger.handlers:
            try:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                handler = logging.FileHandler(self.log_file, encoding="utf-8")
            except OSError as e:
                logger.error(f"Audit log file {self.log_file} unavailable, audit records will be dropped: {e}")
            else:
                handler.setFormatter(logging.Formatter("%(message)s"))
                self.logger.addHandler(handler)

    def record(self, entry: AccessRecord) -> None:
        try:
            self.logger.info(entry.to_json())
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write audit record for {entry.resource_kind}/{entry.resource_id}: {e}")

    def log_access(self, identity: str, action: str, resource_kind: str, resource_id: str,
                   success: bool = True, error: Optional[str] = None, **metadata: Any) -> AccessRecord:
        entry = AccessRecord(
            identity=redact_identity(identity),
            action=action,
            resource_kind=resource_kind,
            resource_id=resource_id,
            success=success,
            error=error,
            metadata=metadata,
        )
        self.record(entry)
        return entry

    def close(self) -> None:
        for handler in self.logger.handlers[:]:
            handler.close()
            self.logger.removeHandler(handler)


def redact_identity(identity: Optional[str]) -> str:
    """Keep identity tokens short and single-line."""
    if not identity:
        return "anonymous"
    cleaned = re.sub(r"\s+", " ", identity).strip()
    return cleaned[:128] if cleaned else "anonymous"
