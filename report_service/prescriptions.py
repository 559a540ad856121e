"""
Prescription extraction: raw model text -> PrescriptionData.
"""
import logging
from typing import Any, Optional

from .json_utils import extract_json
from .models import Medication, PrescriptionData
from .normalizer import CoercionLog

logger = logging.getLogger(__name__)

UNKNOWN_MEDICATION = "Unknown Medication"
MEDICATION_TEXT_FIELDS = ("dosage", "frequency", "duration", "instructions", "quantity")
DETAIL_FIELDS = ("doctorName", "date", "patientName", "diagnosis", "additionalNotes")


def coerce_medication(data: Any, index: int, log: CoercionLog) -> Medication:
    field = f"medications[{index}]"
    if isinstance(data, str):
        return Medication(name=data.strip() or UNKNOWN_MEDICATION)
    values = {"name": log.text(data.get("name"), f"{field}.name", UNKNOWN_MEDICATION)}
    for key in MEDICATION_TEXT_FIELDS:
        values[key] = log.text(data.get(key), f"{field}.{key}")
    return Medication.model_validate(values)


def coerce_prescription(data: Any, warnings: Optional[list] = None) -> PrescriptionData:
    """Fill every medication field; unreadable entries are dropped, never fatal."""
    log = CoercionLog(warnings)
    if not isinstance(data, dict):
        log.record("<root>", f"expected an object, got {type(data).__name__}")
        data = {}

    raw_medications = data.get("medications")
    if raw_medications is not None and not isinstance(raw_medications, list):
        log.record("medications", f"expected a list, got {type(raw_medications).__name__}")
        raw_medications = []

    medications = []
    for index, entry in enumerate(raw_medications or []):
        if not isinstance(entry, (dict, str)):
            log.record(f"medications[{index}]", f"expected an object, got {type(entry).__name__}, dropped")
            continue
        medications.append(coerce_medication(entry, index, log))

    details = {key: log.optional_text(data.get(key), key) for key in DETAIL_FIELDS}
    prescription = PrescriptionData.model_validate({"medications": medications, **details})
    logger.info(f"Parsed prescription with {len(medications)} medications")
    return prescription


def normalize_prescription(raw_text: str, warnings: Optional[list] = None) -> PrescriptionData:
    """
    Raises:
        ResponseParseError: no JSON object could be recovered.
    """
    return coerce_prescription(extract_json(raw_text), warnings)
