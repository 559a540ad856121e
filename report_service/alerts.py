"""
Deterministic clinical alerting.

Criticality is re-derived from a fixed threshold table and never taken
from the model's own per-test severity label. The same inputs always give
the same alerts (ids included); only the timestamp varies unless injected.
"""
import hashlib
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from .models import Alert, ExtractedTest, IdentifiedCondition, InteractionFinding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Threshold:
    label: str
    aliases: tuple[str, ...]
    critical: float
    high: float


# Checked in this order; the first rule whose alias appears in the test name applies.
THRESHOLDS: tuple[Threshold, ...] = (
    Threshold("hba1c", ("hba1c", "hemoglobin a1c", "haemoglobin a1c", "glycated hemoglobin",
                        "glycated haemoglobin", "glycosylated hemoglobin"), critical=10, high=8),
    Threshold("fbs", ("fbs", "fasting blood sugar", "fasting glucose"), critical=250, high=180),
    Threshold("blood_pressure", ("blood pressure", "bp"), critical=0, high=0),
    Threshold("ldl", ("ldl", "low-density lipoprotein"), critical=190, high=160),
    Threshold("creatinine", ("creatinine",), critical=2.5, high=1.8),
)

BP_SYSTOLIC = {"critical": 180, "high": 160}
BP_DIASTOLIC = {"critical": 120, "high": 100}

_BP_READING = re.compile(r"(\d+)\s*/\s*(\d+)")

INTERACTION_ALERT_SEVERITY = {
    "contraindicated": "critical",
    "severe": "high",
    "moderate": "medium",
    "mild": "low",
}


def alert_id(report_id: str, alert_type: str, subject: str, position: int) -> str:
    digest = hashlib.sha1(f"{report_id}|{alert_type}|{subject}|{position}".encode("utf-8")).hexdigest()
    return f"alert-{digest[:16]}"


def _format_number(value: float) -> str:
    return f"{value:g}"


def match_threshold(test_name: str) -> Optional[Threshold]:
    name = test_name.lower()
    for rule in THRESHOLDS:
        if any(alias in name for alias in rule.aliases):
            return rule
    return None


def _blood_pressure_severity(test: ExtractedTest) -> Optional[str]:
    reading = _BP_READING.search(test.unit) or _BP_READING.search(test.name)
    if not reading:
        return None
    systolic, diastolic = int(reading.group(1)), int(reading.group(2))
    if systolic >= BP_SYSTOLIC["critical"] or diastolic >= BP_DIASTOLIC["critical"]:
        return "critical"
    if systolic >= BP_SYSTOLIC["high"] or diastolic >= BP_DIASTOLIC["high"]:
        return "high"
    return None


def classify_test(test: ExtractedTest) -> Optional[str]:
    """Return "critical", "high" or None for one test. Critical is checked first."""
    rule = match_threshold(test.name)
    if rule is None:
        return None
    if rule.label == "blood_pressure":
        return _blood_pressure_severity(test)
    if test.value is None:
        return None
    if test.value >= rule.critical:
        return "critical"
    if test.value >= rule.high:
        return "high"
    return None


def _display_value(test: ExtractedTest) -> str:
    if test.value is None:
        return test.unit
    return f"{_format_number(test.value)} {test.unit}".strip()


def detect_critical_values(tests: Sequence[ExtractedTest], report_id: str,
                           timestamp: datetime) -> list[Alert]:
    alerts = []
    for position, test in enumerate(tests):
        severity = classify_test(test)
        if severity is None:
            continue
        shown = _display_value(test)
        degree = "critically" if severity == "critical" else "significantly"
        alerts.append(Alert(
            id=alert_id(report_id, "critical_value", test.name, position),
            type="critical_value",
            severity=severity,
            title=f"{'Critical' if severity == 'critical' else 'High'} {test.name} Value",
            message=(
                f"{test.name} is {shown}, which is {degree} elevated. "
                "Immediate attention may be required."
            ),
            subject_ref=test.name,
            test_value=shown,
            timestamp=timestamp,
        ))
    return alerts


def detect_condition_alerts(conditions: Sequence[IdentifiedCondition], report_id: str,
                            timestamp: datetime) -> list[Alert]:
    alerts = []
    for position, condition in enumerate(conditions):
        if condition.severity not in ("Critical", "High"):
            continue
        alerts.append(Alert(
            id=alert_id(report_id, "condition_warning", condition.condition_name, position),
            type="condition_warning",
            severity="critical" if condition.severity == "Critical" else "high",
            title=f"{condition.severity} Condition Detected",
            message=(
                f"{condition.condition_name} has been identified with "
                f"{condition.severity.lower()} severity. {condition.likelihood} likelihood."
            ),
            subject_ref=condition.condition_name,
            timestamp=timestamp,
        ))
    return alerts


def generate_alerts(
    tests: Sequence[ExtractedTest],
    conditions: Sequence[IdentifiedCondition],
    overall_severity: str,
    report_id: str = "",
    timestamp: Optional[datetime] = None,
) -> list[Alert]:
    """
    Build alerts for one analysis.

    Order: threshold alerts per test, then condition warnings, then the
    overall-status alert. An overall severity of Critical always adds its
    own alert, whether or not any test or condition crossed a threshold.
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    alerts = detect_critical_values(tests, report_id, timestamp)
    alerts.extend(detect_condition_alerts(conditions, report_id, timestamp))

    if overall_severity == "Critical":
        alerts.append(Alert(
            id=alert_id(report_id, "overall_status", "overall", 0),
            type="condition_warning",
            severity="critical",
            title="Critical Overall Health Status",
            message="The overall health assessment indicates a critical condition requiring immediate attention.",
            subject_ref="overall",
            timestamp=timestamp,
        ))

    if alerts:
        critical = sum(1 for a in alerts if a.severity == "critical")
        logger.info(f"Generated {len(alerts)} alerts ({critical} critical)")
    return alerts


def interaction_alerts(
    findings: Sequence[InteractionFinding],
    report_id: str = "",
    timestamp: Optional[datetime] = None,
) -> list[Alert]:
    """Turn interaction findings into medication_interaction alerts."""
    timestamp = timestamp or datetime.now(timezone.utc)
    alerts = []
    for position, finding in enumerate(findings):
        first, second = finding.medication_pair
        pair = f"{first} + {second}"
        alerts.append(Alert(
            id=alert_id(report_id, "medication_interaction", pair, position),
            type="medication_interaction",
            severity=INTERACTION_ALERT_SEVERITY[finding.severity],
            title=f"Drug Interaction: {first.title()} and {second.title()}",
            message=f"{finding.description}. {finding.recommendation}.",
            subject_ref=pair,
            timestamp=timestamp,
        ))
    return alerts


class AcknowledgementLedger:
    """
    Caller-owned side table of acknowledged alert ids.

    Alerts themselves are immutable; acknowledgement state lives here.
    """

    def __init__(self):
        self._acknowledged: dict[str, tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def acknowledge(self, alert_id: str, identity: str = "anonymous",
                    when: Optional[datetime] = None) -> datetime:
        when = when or datetime.now(timezone.utc)
        with self._lock:
            self._acknowledged.setdefault(alert_id, (identity, when))
            acknowledged_at = self._acknowledged[alert_id][1]
        logger.info(f"Alert {alert_id} acknowledged by {identity}")
        return acknowledged_at

    def is_acknowledged(self, alert_id: str) -> bool:
        return alert_id in self._acknowledged

    def acknowledged_by(self, alert_id: str) -> Optional[str]:
        entry = self._acknowledged.get(alert_id)
        return entry[0] if entry else None

    def pending(self, alerts: Iterable[Alert]) -> list[Alert]:
        return [alert for alert in alerts if alert.id not in self._acknowledged]
