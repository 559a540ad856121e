"""Shared fixtures for the report_service tests."""
import io
import json
import uuid

import pytest
from PIL import Image

from report_service.audit import AuditLogger
from report_service.knowledge import KnowledgeStore
from report_service.model_resolver import ModelResolver
from report_service.pipeline import ReportAnalysisPipeline
from report_service.retrieval import KnowledgeRetriever

from .fakes import SAMPLE_ANALYSIS, FakeClient


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color=(255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def sample_analysis_text():
    return "Here is the analysis:\n```json\n" + json.dumps(SAMPLE_ANALYSIS) + "\n```"


@pytest.fixture
def knowledge_store(tmp_path):
    return KnowledgeStore(tmp_path / "knowledge.yaml").load()


@pytest.fixture
def audit_logger(tmp_path):
    audit = AuditLogger(tmp_path / "audit.log", logger_name=f"audit_test_{uuid.uuid4().hex}")
    yield audit
    audit.close()


@pytest.fixture
def make_pipeline(knowledge_store, audit_logger):
    def build(behaviors, candidates=("model-a", "model-b"), **kwargs):
        client = FakeClient(behaviors)
        resolver = ModelResolver(client, candidates)
        pipeline = ReportAnalysisPipeline(
            resolver=resolver,
            retriever=KnowledgeRetriever(knowledge_store, resolver),
            audit=audit_logger,
            **kwargs,
        )
        return pipeline, client
    return build
