"""End-to-end tests for ReportAnalysisPipeline with a fake Gemini client."""
import json
from datetime import datetime, timezone
from unittest.mock import patch

from google.genai import types

from report_service.config import Settings
from report_service.pipeline import AnalysisContext, AnalysisFailure, AnalysisOutcome, ReportAnalysisPipeline

from .fakes import make_responder

FIXED_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

PRESCRIPTION_JSON = json.dumps({
    "medications": [
        {"name": "Warfarin", "dosage": "5mg", "frequency": "once daily"},
        {"name": "Aspirin", "dosage": "75mg"},
        {"name": "Metformin"},
    ],
    "doctorName": "Dr. Smith",
    "date": "2024-02-28",
})


def audit_lines(audit_logger):
    return [json.loads(line) for line in audit_logger.log_file.read_text(encoding="utf-8").splitlines()]


class TestAnalyzeDocument:

    def test_text_report_success(self, make_pipeline, sample_analysis_text, audit_logger):
        pipeline, client = make_pipeline({"model-a": make_responder(sample_analysis_text)},
                                         clock=lambda: FIXED_TIME)
        outcome = pipeline.analyze_document(b"HbA1c: 10.5 %", "text/plain",
                                            AnalysisContext("patient-1", "dr-lee", report_id="tr-fixed"))

        assert isinstance(outcome, AnalysisOutcome)
        assert outcome.ok
        assert outcome.report_id == "tr-fixed"
        assert outcome.model == "model-a"
        assert [t.name for t in outcome.result.tests] == ["HbA1c", "Hemoglobin"]
        assert [a.type for a in outcome.alerts] == ["critical_value", "condition_warning"]
        assert all(a.timestamp == FIXED_TIME for a in outcome.alerts)
        assert outcome.diagnostics["retrieval_strategy"] == "ranked"
        assert outcome.diagnostics["knowledge_chunks"] == 2
        assert outcome.diagnostics["text_truncated"] is False

        analysis_prompt = client.models.calls[-1][1][0]
        assert "RELEVANT MEDICAL KNOWLEDGE AND GUIDELINES" in analysis_prompt
        assert analysis_prompt.endswith("Extracted text from document:\nHbA1c: 10.5 %")

        [line] = audit_lines(audit_logger)
        assert line["identity"] == "dr-lee"
        assert line["resource_kind"] == "test_report"
        assert line["resource_id"] == "tr-fixed"
        assert line["success"] is True
        assert line["metadata"]["patient_id"] == "patient-1"

    def test_image_report_sends_inline_part(self, make_pipeline, sample_analysis_text, png_bytes):
        pipeline, client = make_pipeline({"model-a": make_responder(sample_analysis_text)})
        outcome = pipeline.analyze_document(png_bytes, "image/png", AnalysisContext("patient-1"))

        assert outcome.ok
        contents = client.models.calls[-1][1]
        assert isinstance(contents[1], types.Part)
        assert outcome.diagnostics["media_type"] == "image/png"

    def test_report_ids_generated(self, make_pipeline, sample_analysis_text):
        pipeline, _ = make_pipeline({"model-a": make_responder(sample_analysis_text)})
        first = pipeline.analyze_document(b"a", "text/plain", AnalysisContext("p"))
        second = pipeline.analyze_document(b"b", "text/plain", AnalysisContext("p"))
        assert first.report_id.startswith("tr-")
        assert first.report_id != second.report_id

    def test_falls_back_when_payload_rejected(self, make_pipeline, sample_analysis_text):
        def model_a(contents):
            if isinstance(contents, list):
                return RuntimeError("400 request payload size exceeds the limit")
            return "[1]"

        pipeline, client = make_pipeline({"model-a": model_a, "model-b": make_responder(sample_analysis_text)})
        outcome = pipeline.analyze_document(b"HbA1c 10.5", "text/plain", AnalysisContext("p"))

        assert outcome.ok
        assert outcome.model == "model-b"
        assert pipeline.resolver.cached_model == "model-b"

    def test_unsupported_media_spends_no_model_call(self, make_pipeline, audit_logger):
        pipeline, client = make_pipeline({"model-a": "never used"})
        failure = pipeline.analyze_document(b"PK\x03\x04", "application/zip", AnalysisContext("p", "nurse"))

        assert isinstance(failure, AnalysisFailure)
        assert not failure.ok
        assert failure.kind == "unsupported_media"
        assert failure.status_code == 415
        assert client.models.calls == []

        [line] = audit_lines(audit_logger)
        assert line["success"] is False
        assert line["error"] == "unsupported_media"

    def test_all_models_unavailable(self, make_pipeline):
        pipeline, _ = make_pipeline({})
        failure = pipeline.analyze_document(b"HbA1c 7", "text/plain", AnalysisContext("p"))

        assert failure.kind == "model_unavailable"
        assert failure.sub_kind == "not_found"
        assert failure.status_code == 502

    def test_quota_exhaustion(self, make_pipeline):
        quota = RuntimeError("429 RESOURCE_EXHAUSTED")
        pipeline, _ = make_pipeline({"model-a": quota, "model-b": quota})
        failure = pipeline.analyze_document(b"HbA1c 7", "text/plain", AnalysisContext("p"))

        assert failure.sub_kind == "quota"
        assert failure.status_code == 429

    def test_unparseable_reply(self, make_pipeline):
        pipeline, _ = make_pipeline({"model-a": make_responder("I'm sorry, the image is too blurry.")})
        failure = pipeline.analyze_document(b"HbA1c 7", "text/plain", AnalysisContext("p"))

        assert failure.kind == "response_parse_error"
        assert failure.status_code == 502
        assert "blurry" not in failure.user_message

    def test_empty_document(self, make_pipeline):
        pipeline, _ = make_pipeline({"model-a": "unused"})
        failure = pipeline.analyze_document(b"   ", "text/plain", AnalysisContext("p"))
        assert failure.kind == "unreadable_document"
        assert failure.status_code == 422

    def test_unexpected_error_is_generic(self, make_pipeline):
        pipeline, _ = make_pipeline({"model-a": "unused"})
        with patch.object(pipeline.retriever, "retrieve_ranked", side_effect=RuntimeError("kaboom")):
            failure = pipeline.analyze_document(b"HbA1c 7", "text/plain", AnalysisContext("p"))

        assert failure.kind == "internal_error"
        assert failure.status_code == 500
        assert "kaboom" not in failure.user_message


class TestAnalyzePrescription:

    def test_interactions_and_alerts(self, make_pipeline, audit_logger):
        pipeline, client = make_pipeline({"model-a": make_responder(PRESCRIPTION_JSON)},
                                         clock=lambda: FIXED_TIME)
        outcome = pipeline.analyze_prescription(b"Rx: warfarin, aspirin", "text/plain",
                                                AnalysisContext("patient-2", "dr-kim"))

        assert outcome.ok
        assert outcome.report_id.startswith("rx-")
        assert [m.name for m in outcome.prescription.medications] == ["Warfarin", "Aspirin", "Metformin"]
        assert outcome.prescription.doctor_name == "Dr. Smith"
        assert [f.medication_pair for f in outcome.interactions] == [("aspirin", "warfarin")]
        assert [a.severity for a in outcome.alerts] == ["high"]
        # no knowledge ranking call for prescriptions
        assert len(client.models.calls) == 1

        [line] = audit_lines(audit_logger)
        assert line["resource_kind"] == "prescription"
        assert line["success"] is True

    def test_failure(self, make_pipeline):
        pipeline, _ = make_pipeline({"model-a": "unused"})
        failure = pipeline.analyze_prescription(b"x", "video/mp4", AnalysisContext("p"))
        assert failure.kind == "unsupported_media"


def test_check_interactions(make_pipeline):
    pipeline, client = make_pipeline({})
    findings = pipeline.check_interactions(["Digoxin", "Amiodarone"])
    assert findings[0].medication_pair == ("amiodarone", "digoxin")
    assert client.models.calls == []


class TestRequestIds:

    def test_direct_calls_get_fresh_ids(self, make_pipeline, sample_analysis_text):
        pipeline, _ = make_pipeline({"model-a": make_responder(sample_analysis_text)})
        first = pipeline.analyze_document(b"a", "text/plain", AnalysisContext("p"))
        second = pipeline.analyze_document(b"b", "text/plain", AnalysisContext("p"))
        third = pipeline.analyze_prescription(b"x", "video/mp4", AnalysisContext("p"))
        assert len({first.request_id, second.request_id, third.request_id}) == 3

    def test_bound_id_is_used(self, make_pipeline):
        pipeline, _ = make_pipeline({})
        failure = pipeline.analyze_document(b"x", "application/zip",
                                            AnalysisContext("p", request_id="req-from-http"))
        assert failure.request_id == "req-from-http"


@patch("report_service.model_resolver.genai.Client")
def test_from_settings_puts_timeout_on_client(mock_client, tmp_path):
    settings = Settings(
        api_key="test-key",
        timeout_seconds=7,
        knowledge_base_path=tmp_path / "knowledge.yaml",
        audit_log_file=tmp_path / "audit.log",
    )
    pipeline = ReportAnalysisPipeline.from_settings(settings)
    try:
        _, kwargs = mock_client.call_args
        assert kwargs["http_options"].timeout == 7000
        assert pipeline.resolver.client is mock_client.return_value
    finally:
        pipeline.audit.close()
