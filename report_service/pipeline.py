"""
Report analysis pipeline.

ingest -> retrieve knowledge -> assemble prompt -> invoke model with
fallback -> normalize -> alerts. Every typed error is caught here and
returned as an AnalysisFailure so one bad upload never reaches the
transport layer as an exception.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union

from google.genai import types

from .alerts import generate_alerts, interaction_alerts
from .audit import AuditLogger
from .config import DEFAULT_MAX_DOCUMENT_CHARS, DEFAULT_MAX_UPLOAD_BYTES, Settings
from .errors import ModelUnavailableError, ReportServiceError
from .ingestion import ingest
from .interactions import check_interactions
from .knowledge import KnowledgeStore
from .model_resolver import ModelResolver, create_client
from .models import Alert, AnalysisResult, InteractionFinding, Medication, PrescriptionData
from .normalizer import normalize
from .prescriptions import normalize_prescription
from .prompts import ANALYSIS_PROMPT, PRESCRIPTION_PROMPT, REPORT_RETRIEVAL_QUERY, assemble_request
from .retrieval import KnowledgeRetriever
from .structured_logging import StructuredLogger, set_request_id

logger = logging.getLogger(__name__)
slog = StructuredLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Analysis failed, please retry."


@dataclass(frozen=True)
class AnalysisContext:
    patient_id: str
    identity: str = "anonymous"
    report_id: Optional[str] = None
    # Bound by the HTTP layer; direct callers get a fresh id per call.
    request_id: Optional[str] = None


@dataclass
class AnalysisOutcome:
    report_id: str
    request_id: str
    model: str
    result: AnalysisResult
    alerts: list[Alert]
    diagnostics: dict[str, Any] = field(default_factory=dict)
    ok: bool = True


@dataclass
class PrescriptionOutcome:
    report_id: str
    request_id: str
    model: str
    prescription: PrescriptionData
    interactions: list[InteractionFinding]
    alerts: list[Alert]
    diagnostics: dict[str, Any] = field(default_factory=dict)
    ok: bool = True


@dataclass(frozen=True)
class AnalysisFailure:
    kind: str
    user_message: str
    status_code: int
    request_id: str
    report_id: str
    sub_kind: Optional[str] = None
    ok: bool = False


class ReportAnalysisPipeline:
    """Entry points for report analysis, prescription analysis and interaction checks."""

    def __init__(
        self,
        resolver: ModelResolver,
        retriever: KnowledgeRetriever,
        audit: Optional[AuditLogger] = None,
        max_document_chars: int = DEFAULT_MAX_DOCUMENT_CHARS,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        retrieval_top_k: int = 5,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.resolver = resolver
        self.retriever = retriever
        self.audit = audit
        self.max_document_chars = max_document_chars
        self.max_upload_bytes = max_upload_bytes
        self.retrieval_top_k = retrieval_top_k
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, client: Any = None) -> "ReportAnalysisPipeline":
        client = client if client is not None else create_client(settings)
        resolver = ModelResolver(client, settings.model_candidates)
        store = KnowledgeStore(settings.knowledge_base_path).load()
        return cls(
            resolver=resolver,
            retriever=KnowledgeRetriever(store, resolver),
            audit=AuditLogger(settings.audit_log_file),
            max_document_chars=settings.max_document_chars,
            max_upload_bytes=settings.max_upload_bytes,
            retrieval_top_k=settings.retrieval_top_k,
        )

    # --- boundary helpers ---

    def _failure(self, error: BaseException, request_id: str, report_id: str) -> AnalysisFailure:
        if isinstance(error, ReportServiceError):
            logger.warning(f"Request {request_id} failed ({error.error_kind}): {error}")
            sub_kind = error.kind.value if isinstance(error, ModelUnavailableError) else None
            return AnalysisFailure(
                kind=error.error_kind,
                sub_kind=sub_kind,
                user_message=error.user_message,
                status_code=error.status_code,
                request_id=request_id,
                report_id=report_id,
            )
        logger.exception(f"Unexpected error while handling request {request_id}")
        return AnalysisFailure(
            kind="internal_error",
            user_message=GENERIC_FAILURE_MESSAGE,
            status_code=500,
            request_id=request_id,
            report_id=report_id,
        )

    def _audit(self, context: AnalysisContext, resource_kind: str, resource_id: str,
               success: bool, error: Optional[str] = None, **metadata: Any) -> None:
        if self.audit is None:
            return
        self.audit.log_access(
            context.identity, "create", resource_kind, resource_id,
            success=success, error=error, patient_id=context.patient_id, **metadata,
        )

    # --- entry points ---

    def analyze_document(self, data: bytes, media_type: str,
                         context: AnalysisContext) -> Union[AnalysisOutcome, AnalysisFailure]:
        """Analyze one test report. Never raises for per-request failures."""
        request_id = set_request_id(context.request_id)
        report_id = context.report_id or f"tr-{uuid.uuid4().hex[:12]}"
        started = time.monotonic()
        try:
            outcome = self._analyze_document(data, media_type, report_id, request_id)
        except Exception as e:
            failure = self._failure(e, request_id, report_id)
            self._audit(context, "test_report", report_id, False, error=failure.kind)
            return failure

        outcome.diagnostics["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
        slog.info("Report analyzed", report_id=report_id, **outcome.diagnostics)
        self._audit(context, "test_report", report_id, True,
                    model=outcome.model, alerts=len(outcome.alerts))
        return outcome

    def _analyze_document(self, data: bytes, media_type: str, report_id: str,
                          request_id: str) -> AnalysisOutcome:
        payload = ingest(data, media_type, self.max_document_chars, self.max_upload_bytes)

        retrieval = self.retriever.retrieve_ranked(REPORT_RETRIEVAL_QUERY, self.retrieval_top_k)
        knowledge_block = self.retriever.format_for_prompt(retrieval.chunks)
        if retrieval.chunks:
            logger.info(f"Retrieved {len(retrieval)} knowledge chunks ({retrieval.strategy})")

        contents = assemble_request(ANALYSIS_PROMPT, payload, knowledge_block)
        reply = self.resolver.invoke_with_fallback(
            contents,
            config=types.GenerateContentConfig(temperature=0.2, response_mime_type="application/json"),
        )
        logger.info(f"Received {len(reply.text)} chars from {reply.model}, normalizing")

        coercions: list = []
        result = normalize(reply.text, coercions)
        alerts = generate_alerts(
            result.tests, result.identified_conditions, result.overall_severity,
            report_id=report_id, timestamp=self.clock(),
        )

        return AnalysisOutcome(
            report_id=report_id,
            request_id=request_id,
            model=reply.model,
            result=result,
            alerts=alerts,
            diagnostics={
                "media_type": payload.media_type,
                "text_truncated": payload.truncated,
                "original_text_length": payload.original_length,
                "retrieval_strategy": retrieval.strategy,
                "knowledge_chunks": len(retrieval),
                "coercions": len(coercions),
                "model": reply.model,
            },
        )

    def analyze_prescription(self, data: bytes, media_type: str,
                             context: AnalysisContext) -> Union[PrescriptionOutcome, AnalysisFailure]:
        """Extract medications from a prescription and check them for interactions."""
        request_id = set_request_id(context.request_id)
        report_id = context.report_id or f"rx-{uuid.uuid4().hex[:12]}"
        started = time.monotonic()
        try:
            payload = ingest(data, media_type, self.max_document_chars, self.max_upload_bytes)
            reply = self.resolver.invoke_with_fallback(
                assemble_request(PRESCRIPTION_PROMPT, payload),
                config=types.GenerateContentConfig(temperature=0.1, response_mime_type="application/json"),
            )
            coercions: list = []
            prescription = normalize_prescription(reply.text, coercions)
            findings = check_interactions(prescription.medications)
            alerts = interaction_alerts(findings, report_id=report_id, timestamp=self.clock())
        except Exception as e:
            failure = self._failure(e, request_id, report_id)
            self._audit(context, "prescription", report_id, False, error=failure.kind)
            return failure

        diagnostics = {
            "media_type": payload.media_type,
            "medications": len(prescription.medications),
            "interactions": len(findings),
            "coercions": len(coercions),
            "model": reply.model,
            "duration_ms": round((time.monotonic() - started) * 1000, 2),
        }
        slog.info("Prescription analyzed", report_id=report_id, **diagnostics)
        self._audit(context, "prescription", report_id, True, model=reply.model)
        return PrescriptionOutcome(
            report_id=report_id,
            request_id=request_id,
            model=reply.model,
            prescription=prescription,
            interactions=findings,
            alerts=alerts,
            diagnostics=diagnostics,
        )

    def check_interactions(self, medications: Iterable[Union[Medication, dict, str]]) -> list[InteractionFinding]:
        return check_interactions(medications)
