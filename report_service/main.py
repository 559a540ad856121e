"""
MedReport AI Service - FastAPI Backend

Thin transport layer over ReportAnalysisPipeline: uploads in, typed results
or JSON error bodies out. Blocking work (PDF parsing, Gemini calls) runs in
worker threads so the event loop stays free.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .alerts import AcknowledgementLedger
from .config import cors_origins, load_settings
from .errors import ModelUnavailableError, ReportServiceError
from .models import (
    AddKnowledgeChunkRequest,
    AnalyzePrescriptionResponse,
    AnalyzeReportResponse,
    CheckInteractionsRequest,
    CheckInteractionsResponse,
    ErrorResponse,
)
from .pipeline import AnalysisContext, AnalysisFailure, ReportAnalysisPipeline
from .structured_logging import get_request_id, log_request, set_request_id, setup_logging

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, error_kind: str,
                    request_id: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(message=message, error_kind=error_kind, request_id=request_id)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


def _failure_response(failure: AnalysisFailure) -> JSONResponse:
    kind = f"{failure.kind}:{failure.sub_kind}" if failure.sub_kind else failure.kind
    return _error_response(failure.status_code, failure.user_message, kind, failure.request_id)


def create_app(pipeline: Optional[ReportAnalysisPipeline] = None) -> FastAPI:
    """
    Build the FastAPI app.

    When no pipeline is injected, settings are loaded during startup; a
    missing Gemini credential raises ConfigurationError and the service
    refuses to start.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting MedReport AI Service...")
        if app.state.pipeline is None:
            settings = load_settings()
            setup_logging(settings.log_level, use_json=settings.log_json)
            app.state.pipeline = ReportAnalysisPipeline.from_settings(settings)
            try:
                model = await asyncio.to_thread(app.state.pipeline.resolver.resolve)
                logger.info(f"Using model: {model}")
            except ModelUnavailableError as e:
                logger.warning(f"No Gemini model answered at startup, will retry per request: {e}")
        logger.info("Ready to serve requests.")
        yield
        logger.info("Shutting down...")
        if app.state.pipeline.audit is not None:
            app.state.pipeline.audit.close()

    app = FastAPI(
        title="MedReport AI Service",
        description="Medical test report analysis with Gemini, knowledge retrieval and deterministic alerts",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.state.ledger = AcknowledgementLedger()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins()),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id"))
        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        log_request(
            request.method, request.url.path, response.status_code,
            (time.monotonic() - started) * 1000,
            identity=request.headers.get("x-user-id"),
        )
        return response

    @app.exception_handler(ReportServiceError)
    async def report_service_error_handler(request: Request, exc: ReportServiceError):
        kind = exc.error_kind
        if isinstance(exc, ModelUnavailableError):
            kind = f"{kind}:{exc.kind.value}"
        return _error_response(exc.status_code, exc.user_message, kind, get_request_id())

    # Health check
    @app.get("/health")
    async def health_check(request: Request):
        pipeline: ReportAnalysisPipeline = request.app.state.pipeline
        return {
            "status": "healthy",
            "version": __version__,
            "model": pipeline.resolver.cached_model,
            "knowledge": pipeline.retriever.store.stats(),
        }

    @app.post("/patients/{patient_id}/test-reports/analyze", response_model=AnalyzeReportResponse,
              responses={415: {"model": ErrorResponse}, 422: {"model": ErrorResponse},
                         429: {"model": ErrorResponse}, 502: {"model": ErrorResponse}})
    async def analyze_test_report(
        patient_id: str,
        request: Request,
        file: UploadFile = File(...),
        x_user_id: Optional[str] = Header(default=None),
    ):
        """Analyze an uploaded test report (image, PDF or text)."""
        logger.info(f"Analyzing test report for patient {patient_id}: {file.filename} ({file.content_type})")
        data = await file.read()
        outcome = await asyncio.to_thread(
            request.app.state.pipeline.analyze_document,
            data, file.content_type or "",
            AnalysisContext(patient_id, x_user_id or "anonymous", request_id=get_request_id()),
        )
        if isinstance(outcome, AnalysisFailure):
            return _failure_response(outcome)
        return AnalyzeReportResponse(
            report_id=outcome.report_id,
            request_id=outcome.request_id,
            model=outcome.model,
            result=outcome.result,
            alerts=outcome.alerts,
        )

    @app.post("/patients/{patient_id}/prescriptions/analyze", response_model=AnalyzePrescriptionResponse,
              responses={415: {"model": ErrorResponse}, 422: {"model": ErrorResponse},
                         429: {"model": ErrorResponse}, 502: {"model": ErrorResponse}})
    async def analyze_prescription(
        patient_id: str,
        request: Request,
        file: UploadFile = File(...),
        x_user_id: Optional[str] = Header(default=None),
    ):
        """Extract medications from a prescription and flag interactions."""
        logger.info(f"Analyzing prescription for patient {patient_id}: {file.filename} ({file.content_type})")
        data = await file.read()
        outcome = await asyncio.to_thread(
            request.app.state.pipeline.analyze_prescription,
            data, file.content_type or "",
            AnalysisContext(patient_id, x_user_id or "anonymous", request_id=get_request_id()),
        )
        if isinstance(outcome, AnalysisFailure):
            return _failure_response(outcome)
        return AnalyzePrescriptionResponse(
            report_id=outcome.report_id,
            request_id=outcome.request_id,
            model=outcome.model,
            prescription=outcome.prescription,
            interactions=outcome.interactions,
            alerts=outcome.alerts,
        )

    @app.post("/interactions/check", response_model=CheckInteractionsResponse)
    async def check_interactions(body: CheckInteractionsRequest, request: Request):
        findings = request.app.state.pipeline.check_interactions(body.medications)
        return CheckInteractionsResponse(has_interactions=bool(findings), interactions=findings)

    @app.get("/knowledge/stats")
    async def knowledge_stats(request: Request):
        return request.app.state.pipeline.retriever.store.stats()

    @app.post("/knowledge/chunks", status_code=201)
    async def add_knowledge_chunk(body: AddKnowledgeChunkRequest, request: Request):
        store = request.app.state.pipeline.retriever.store
        chunk = await asyncio.to_thread(store.add_chunk, body.category, body.keywords, body.content)
        return chunk.to_dict()

    @app.post("/models/reprobe")
    async def reprobe_models(request: Request):
        """Forget the cached model and probe the candidate list again."""
        model = await asyncio.to_thread(request.app.state.pipeline.resolver.reprobe)
        return {"model": model}

    @app.post("/alerts/{alert_id}/acknowledge")
    async def acknowledge_alert(
        alert_id: str,
        request: Request,
        x_user_id: Optional[str] = Header(default=None),
    ):
        acknowledged_at = request.app.state.ledger.acknowledge(alert_id, x_user_id or "anonymous")
        return {"alertId": alert_id, "acknowledged": True, "acknowledgedAt": acknowledged_at.isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
