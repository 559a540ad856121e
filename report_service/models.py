"""
Pydantic models for the MedReport AI Service.

Attributes are snake_case in Python and camelCase on the wire, matching the
JSON shape the analysis prompt asks the model to produce.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


TestSeverity = Literal["normal", "moderate", "high", "critical"]
Likelihood = Literal["Low", "Moderate", "High", "Very High"]
ConditionSeverity = Literal["Low", "Moderate", "High", "Critical"]
AlertType = Literal[
    "critical_value", "condition_warning", "medication_interaction",
    "abnormal_trend", "follow_up",
]
AlertSeverity = Literal["critical", "high", "medium", "low"]
InteractionSeverity = Literal["mild", "moderate", "severe", "contraindicated"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Analysis result ---

class ExtractedTest(CamelModel):
    name: str
    value: Optional[float] = None  # None when the report value was unreadable
    unit: str = ""
    reference_range: str = "Not specified"
    severity: TestSeverity = "normal"
    clinical_significance: str = "No specific clinical significance noted"


class IdentifiedCondition(CamelModel):
    condition_name: str
    likelihood: Likelihood = "Low"
    explanation: str = ""
    severity: ConditionSeverity = "Low"


class NarrativeSummary(CamelModel):
    severity_assessment: str = ""
    disease_analysis: str = ""
    deviation_from_normal: str = ""


class LifestyleRecommendations(CamelModel):
    diet: list[str] = Field(default_factory=list)
    exercise: list[str] = Field(default_factory=list)
    monitoring: list[str] = Field(default_factory=list)
    warning_signs: list[str] = Field(default_factory=list)


class AdditionalRecommendations(CamelModel):
    specialist_referrals: list[str] = Field(default_factory=list)
    further_tests: list[str] = Field(default_factory=list)
    follow_up: str = ""


class AnalysisResult(CamelModel):
    tests: list[ExtractedTest] = Field(default_factory=list)
    overall_severity: ConditionSeverity = "Low"
    identified_conditions: list[IdentifiedCondition] = Field(default_factory=list)
    narrative_summary: NarrativeSummary = Field(default_factory=NarrativeSummary)
    recommended_medicines: list[str] = Field(default_factory=list)
    precautions: list[str] = Field(default_factory=list)
    lifestyle_recommendations: LifestyleRecommendations = Field(default_factory=LifestyleRecommendations)
    additional_recommendations: AdditionalRecommendations = Field(default_factory=AdditionalRecommendations)
    confidence: float = Field(default=0.85, ge=0.0, le=1.0)


# --- Alerts ---

class Alert(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    subject_ref: Optional[str] = None  # test name, condition name or medication pair
    test_value: Optional[str] = None
    timestamp: datetime


# --- Medications ---

class Medication(CamelModel):
    name: str
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""
    quantity: str = ""


class InteractionFinding(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    medication_pair: tuple[str, str]
    severity: InteractionSeverity
    description: str
    recommendation: str


class PrescriptionData(CamelModel):
    medications: list[Medication] = Field(default_factory=list)
    doctor_name: Optional[str] = None
    date: Optional[str] = None
    patient_name: Optional[str] = None
    diagnosis: Optional[str] = None
    additional_notes: Optional[str] = None


# --- API request/response ---

class AnalyzeReportResponse(CamelModel):
    report_id: str
    request_id: str
    model: str
    result: AnalysisResult
    alerts: list[Alert]


class AnalyzePrescriptionResponse(CamelModel):
    report_id: str
    request_id: str
    model: str
    prescription: PrescriptionData
    interactions: list[InteractionFinding]
    alerts: list[Alert]


class CheckInteractionsRequest(CamelModel):
    medications: list[Medication]


class CheckInteractionsResponse(CamelModel):
    has_interactions: bool
    interactions: list[InteractionFinding]


class AddKnowledgeChunkRequest(CamelModel):
    category: str
    keywords: list[str]
    content: str

    @field_validator("category", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("keywords")
    @classmethod
    def keywords_not_empty(cls, v: list[str]) -> list[str]:
        cleaned = [k.strip().lower() for k in v if k.strip()]
        if not cleaned:
            raise ValueError("At least one keyword is required")
        return cleaned


class ErrorResponse(CamelModel):
    message: str
    error_kind: str
    request_id: Optional[str] = None
