"""
Drug-drug interaction lookup over a small static table.

Each entry lists the drugs a medication interacts with. Pairs are checked
in both directions; when both sides list each other, the more severe entry
wins, so the result does not depend on input order.
"""
import logging
from dataclasses import dataclass
from itertools import combinations
from typing import Iterable, Optional, Union

from .models import InteractionFinding, Medication

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionRule:
    interacts_with: frozenset[str]
    severity: str
    description: str
    recommendation: str


DRUG_INTERACTIONS: dict[str, InteractionRule] = {
    "warfarin": InteractionRule(
        interacts_with=frozenset({"aspirin", "ibuprofen", "naproxen", "heparin", "clopidogrel"}),
        severity="severe",
        description="Increased risk of bleeding",
        recommendation="Monitor INR closely and avoid concurrent use if possible",
    ),
    "aspirin": InteractionRule(
        interacts_with=frozenset({"warfarin", "clopidogrel", "ibuprofen", "naproxen"}),
        severity="moderate",
        description="Increased risk of bleeding",
        recommendation="Monitor for signs of bleeding",
    ),
    "metformin": InteractionRule(
        interacts_with=frozenset({"alcohol", "furosemide"}),
        severity="moderate",
        description="Increased risk of lactic acidosis",
        recommendation="Monitor for symptoms of lactic acidosis",
    ),
    "digoxin": InteractionRule(
        interacts_with=frozenset({"furosemide", "hydrochlorothiazide", "amiodarone"}),
        severity="moderate",
        description="Altered digoxin levels",
        recommendation="Monitor digoxin levels and adjust dose if needed",
    ),
    "acebutolol": InteractionRule(
        interacts_with=frozenset({"verapamil", "diltiazem"}),
        severity="moderate",
        description="Increased risk of bradycardia and heart block",
        recommendation="Monitor heart rate and ECG",
    ),
    "amiodarone": InteractionRule(
        interacts_with=frozenset({"digoxin", "warfarin", "simvastatin"}),
        severity="moderate",
        description="Altered drug levels and increased side effects",
        recommendation="Monitor drug levels and adjust doses",
    ),
}

SEVERITY_RANK = {"mild": 0, "moderate": 1, "severe": 2, "contraindicated": 3}


def normalize_medication_name(name: str) -> str:
    return " ".join(name.lower().split())


def _lookup(first: str, second: str) -> Optional[InteractionRule]:
    rule = DRUG_INTERACTIONS.get(first)
    if rule and second in rule.interacts_with:
        return rule
    return None


def find_interaction(first: str, second: str) -> Optional[InteractionRule]:
    """Check a normalized pair in both directions; the more severe rule wins."""
    candidates = [r for r in (_lookup(first, second), _lookup(second, first)) if r is not None]
    if not candidates:
        return None
    return max(candidates, key=lambda r: SEVERITY_RANK[r.severity])


def check_interactions(medications: Iterable[Union[Medication, dict, str]]) -> list[InteractionFinding]:
    """
    Return at most one finding per unordered medication pair.

    Accepts Medication models, dicts with a "name" key, or bare names.
    Unknown medications produce no findings.
    """
    names = []
    for med in medications:
        if isinstance(med, Medication):
            raw = med.name
        elif isinstance(med, dict):
            raw = str(med.get("name") or "")
        else:
            raw = str(med)
        normalized = normalize_medication_name(raw)
        if normalized and normalized not in names:
            names.append(normalized)

    findings = []
    for first, second in combinations(names, 2):
        rule = find_interaction(first, second)
        if rule is None:
            continue
        findings.append(InteractionFinding(
            medication_pair=tuple(sorted((first, second))),
            severity=rule.severity,
            description=rule.description,
            recommendation=rule.recommendation,
        ))

    findings.sort(key=lambda f: (-SEVERITY_RANK[f.severity], f.medication_pair))
    if findings:
        logger.info(f"Found {len(findings)} drug interactions among {len(names)} medications")
    return findings
