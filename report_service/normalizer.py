"""
Response normalization: raw model text -> AnalysisResult.

Parsing lives in json_utils; this module owns the coercion stage. Every
field has an explicit default, so downstream code can rely on every field
being present and correctly typed even when the model omitted or mistyped
it. Each substitution is recorded as a ValidationCoercionWarning.

Both reply shapes are accepted: the nested one the analysis prompt asks
for (`extractedData` / `aiSummary`) and the flat camelCase shape that
AnalysisResult serializes to, so re-normalizing a serialized result is a
no-op.
"""
import logging
import math
import re
from typing import Any, Optional

from .errors import ValidationCoercionWarning
from .json_utils import extract_json
from .models import (
    AdditionalRecommendations,
    AnalysisResult,
    ExtractedTest,
    IdentifiedCondition,
    LifestyleRecommendations,
    NarrativeSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.85

# Per-field defaults applied when the model leaves a field out or sends the
# wrong type.
TEST_DEFAULTS = {
    "name": "Unnamed test",
    "unit": "",
    "referenceRange": "Not specified",
    "severity": "normal",
    "clinicalSignificance": "No specific clinical significance noted",
}
CONDITION_DEFAULTS = {
    "conditionName": "Unspecified condition",
    "likelihood": "Low",
    "explanation": "",
    "severity": "Low",
}
RESULT_DEFAULTS = {
    "overallSeverity": "Low",
    "confidence": DEFAULT_CONFIDENCE,
}

TEST_SEVERITIES = {"normal", "moderate", "high", "critical"}
LIKELIHOODS = {"low": "Low", "moderate": "Moderate", "high": "High", "very high": "Very High"}
CONDITION_SEVERITIES = {"low": "Low", "moderate": "Moderate", "high": "High", "critical": "Critical"}

LIFESTYLE_KEYS = ("diet", "exercise", "monitoring", "warningSigns")
ADDITIONAL_LIST_KEYS = ("specialistReferrals", "furtherTests")

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_READING = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)")


class CoercionLog:
    """Collects the substitutions made while coercing one payload."""

    def __init__(self, sink: Optional[list] = None):
        self.warnings: list[ValidationCoercionWarning] = sink if sink is not None else []

    def record(self, field: str, detail: str, loud: bool = True) -> None:
        warning = ValidationCoercionWarning(field, detail)
        self.warnings.append(warning)
        if loud:
            logger.warning(f"Coerced {field}: {detail}")
        else:
            logger.debug(f"Defaulted {field}: {detail}")

    # --- scalar helpers ---

    def text(self, value: Any, field: str, default: str = "") -> str:
        if value is None:
            self.record(field, f"missing, using {default!r}", loud=False)
            return default
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped and default:
                self.record(field, f"blank, using {default!r}", loud=False)
                return default
            return stripped
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        self.record(field, f"expected text, got {type(value).__name__}")
        return default

    def optional_text(self, value: Any, field: str) -> Optional[str]:
        if value is None:
            return None
        result = self.text(value, field)
        return result or None

    def choice(self, value: Any, field: str, allowed: dict[str, str], default: str) -> str:
        if value is None:
            self.record(field, f"missing, using {default!r}", loud=False)
            return default
        key = " ".join(str(value).replace("_", " ").replace("-", " ").split()).lower()
        if key in allowed:
            return allowed[key]
        self.record(field, f"unknown value {value!r}, using {default!r}")
        return default

    def string_list(self, value: Any, field: str) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            self.record(field, "expected a list, wrapped single string")
            return [value.strip()] if value.strip() else []
        if not isinstance(value, list):
            self.record(field, f"expected a list, got {type(value).__name__}")
            return []
        items = []
        for item in value:
            if isinstance(item, str):
                if item.strip():
                    items.append(item.strip())
            elif isinstance(item, dict):
                flattened = ", ".join(str(v) for v in item.values() if v not in (None, ""))
                if flattened:
                    items.append(flattened)
            elif item is not None:
                items.append(str(item))
        return items

    def object_list(self, value: Any, field: str) -> list[dict]:
        if value is None:
            return []
        if not isinstance(value, list):
            self.record(field, f"expected a list, got {type(value).__name__}")
            return []
        items = []
        for index, item in enumerate(value):
            if isinstance(item, dict):
                items.append(item)
            else:
                self.record(f"{field}[{index}]", f"expected an object, got {type(item).__name__}, dropped")
        return items


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _first_present(key: str, *sections: dict) -> Any:
    for section in sections:
        if key in section and section[key] is not None:
            return section[key]
    return None


def parse_numeric_value(raw: Any) -> tuple[Optional[float], Optional[str]]:
    """
    Pull a number out of a lab value.

    Returns (value, reading) where reading is a "systolic/diastolic" string
    when the value was given in that form, else None.
    """
    if raw is None or isinstance(raw, bool):
        return None, None
    if isinstance(raw, (int, float)):
        return _finite(raw), None
    if isinstance(raw, str):
        reading = _READING.match(raw)
        if reading:
            systolic = _finite(reading.group(1))
            if systolic is None:
                return None, None
            return systolic, f"{reading.group(1)}/{reading.group(2)}"
        number = _NUMBER.search(raw.replace(",", ""))
        if number:
            return _finite(number.group()), None
    return None, None


def _finite(raw: Any) -> Optional[float]:
    # JSON integers are unbounded; float() overflows past ~1e308
    try:
        value = float(raw)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def coerce_confidence(raw: Any, log: CoercionLog) -> float:
    if raw is None:
        log.record("confidence", f"missing, using {DEFAULT_CONFIDENCE}", loud=False)
        return DEFAULT_CONFIDENCE
    value, _ = parse_numeric_value(raw)
    if value is None:
        log.record("confidence", f"not a number ({raw!r}), using {DEFAULT_CONFIDENCE}")
        return DEFAULT_CONFIDENCE
    if 1.0 < value <= 100.0:
        value = value / 100.0
    clamped = min(max(value, 0.0), 1.0)
    if clamped != value:
        log.record("confidence", f"{raw!r} outside [0, 1], clamped to {clamped}")
    return clamped


def coerce_test(data: dict, index: int, log: CoercionLog) -> ExtractedTest:
    field = f"tests[{index}]"
    unit = log.text(data.get("unit"), f"{field}.unit", TEST_DEFAULTS["unit"])
    value, reading = parse_numeric_value(data.get("value"))
    if value is None and data.get("value") is not None:
        log.record(f"{field}.value", f"unparseable value {data.get('value')!r}, using None")
    if reading and "/" not in unit:
        unit = f"{reading} {unit}".strip()

    reference = data.get("referenceRange")
    if reference is None:
        reference = data.get("threshold")

    return ExtractedTest(
        name=log.text(data.get("name"), f"{field}.name", TEST_DEFAULTS["name"]),
        value=value,
        unit=unit,
        reference_range=log.text(reference, f"{field}.referenceRange", TEST_DEFAULTS["referenceRange"]),
        severity=log.choice(
            data.get("severity"), f"{field}.severity",
            {s: s for s in TEST_SEVERITIES}, TEST_DEFAULTS["severity"],
        ),
        clinical_significance=log.text(
            data.get("clinicalSignificance"), f"{field}.clinicalSignificance",
            TEST_DEFAULTS["clinicalSignificance"],
        ),
    )


def coerce_condition(data: dict, index: int, log: CoercionLog) -> IdentifiedCondition:
    field = f"identifiedConditions[{index}]"
    name = data.get("conditionName")
    if name is None:
        name = data.get("name")
    return IdentifiedCondition(
        condition_name=log.text(name, f"{field}.conditionName", CONDITION_DEFAULTS["conditionName"]),
        likelihood=log.choice(data.get("likelihood"), f"{field}.likelihood",
                              LIKELIHOODS, CONDITION_DEFAULTS["likelihood"]),
        explanation=log.text(data.get("explanation"), f"{field}.explanation",
                             CONDITION_DEFAULTS["explanation"]),
        severity=log.choice(data.get("severity"), f"{field}.severity",
                            CONDITION_SEVERITIES, CONDITION_DEFAULTS["severity"]),
    )


def format_medicine(entry: Any) -> Optional[str]:
    """Flatten an object-shaped medicine to `name (dosage) - indication`."""
    if isinstance(entry, str):
        return entry.strip() or None
    if not isinstance(entry, dict):
        return None
    name = str(entry.get("name") or "").strip()
    if not name:
        return None
    display = name
    if entry.get("dosage"):
        display += f" ({entry['dosage']})"
    if entry.get("indication"):
        display += f" - {entry['indication']}"
    return display


def coerce_medicines(raw: Any, log: CoercionLog) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        log.record("recommendedMedicines", f"expected a list, got {type(raw).__name__}")
        return []
    medicines = []
    for index, entry in enumerate(raw):
        display = format_medicine(entry)
        if display is None:
            log.record(f"recommendedMedicines[{index}]", "entry has no usable name, dropped")
            continue
        medicines.append(display)
    return medicines


def coerce_lifestyle(raw: Any, log: CoercionLog) -> LifestyleRecommendations:
    if raw is not None and not isinstance(raw, dict):
        log.record("lifestyleRecommendations", f"expected an object, got {type(raw).__name__}")
    data = _as_dict(raw)
    values = {key: log.string_list(data.get(key), f"lifestyleRecommendations.{key}") for key in LIFESTYLE_KEYS}
    return LifestyleRecommendations.model_validate(values)


def coerce_additional(raw: Any, log: CoercionLog) -> AdditionalRecommendations:
    if raw is not None and not isinstance(raw, dict):
        log.record("additionalRecommendations", f"expected an object, got {type(raw).__name__}")
    data = _as_dict(raw)
    values: dict[str, Any] = {
        key: log.string_list(data.get(key), f"additionalRecommendations.{key}") for key in ADDITIONAL_LIST_KEYS
    }
    follow_up = data.get("followUp")
    if isinstance(follow_up, list):
        follow_up = "; ".join(log.string_list(follow_up, "additionalRecommendations.followUp"))
    values["followUp"] = log.text(follow_up, "additionalRecommendations.followUp")
    return AdditionalRecommendations.model_validate(values)


def coerce_analysis(data: Any, warnings: Optional[list] = None) -> AnalysisResult:
    """
    Coerce a parsed model payload into a fully-populated AnalysisResult.

    Never raises for missing or mistyped fields; substitutions are appended
    to `warnings` (if given) as ValidationCoercionWarning instances.
    """
    log = CoercionLog(warnings)
    if not isinstance(data, dict):
        log.record("<root>", f"expected an object, got {type(data).__name__}")
        data = {}

    extracted = _as_dict(data.get("extractedData"))
    summary = _as_dict(data.get("aiSummary"))
    narrative = _as_dict(data.get("narrativeSummary"))

    tests = [
        coerce_test(item, i, log)
        for i, item in enumerate(log.object_list(_first_present("tests", extracted, data), "tests"))
    ]
    conditions = [
        coerce_condition(item, i, log)
        for i, item in enumerate(log.object_list(
            _first_present("identifiedConditions", extracted, data), "identifiedConditions"))
    ]

    severity_assessment = log.text(
        _first_present("severityAssessment", summary, narrative), "narrativeSummary.severityAssessment")
    disease_analysis = log.text(
        _first_present("diseaseAnalysis", summary, narrative), "narrativeSummary.diseaseAnalysis")
    if not disease_analysis:
        disease_analysis = severity_assessment

    result = AnalysisResult(
        tests=tests,
        overall_severity=log.choice(
            _first_present("overallSeverity", extracted, data), "overallSeverity",
            CONDITION_SEVERITIES, RESULT_DEFAULTS["overallSeverity"],
        ),
        identified_conditions=conditions,
        narrative_summary=NarrativeSummary(
            severity_assessment=severity_assessment,
            disease_analysis=disease_analysis,
            deviation_from_normal=log.text(
                _first_present("deviationFromNormal", summary, narrative),
                "narrativeSummary.deviationFromNormal"),
        ),
        recommended_medicines=coerce_medicines(_first_present("recommendedMedicines", summary, data), log),
        precautions=log.string_list(_first_present("precautions", summary, data), "precautions"),
        lifestyle_recommendations=coerce_lifestyle(
            _first_present("lifestyleRecommendations", summary, data), log),
        additional_recommendations=coerce_additional(
            _first_present("additionalRecommendations", summary, data), log),
        confidence=coerce_confidence(_first_present("confidence", data, summary), log),
    )

    if log.warnings:
        logger.info(f"Normalized analysis with {len(log.warnings)} coercions")
    return result


def normalize(raw_text: str, warnings: Optional[list] = None) -> AnalysisResult:
    """
    Recover and coerce an AnalysisResult from raw model text.

    Raises:
        ResponseParseError: no JSON object could be recovered.
    """
    return coerce_analysis(extract_json(raw_text), warnings)
