"""
Knowledge store for prompt enrichment.

A small, static set of medical reference chunks, loaded once from a YAML
(or JSON) file and written back out the first time defaults are generated.
Chunks are never edited in place; admin additions replace the whole list.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional, Union

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnowledgeChunk:
    """One block of reference text plus the keywords that select it."""
    id: str
    category: str
    keywords: tuple[str, ...]
    content: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KnowledgeChunk":
        return cls(
            id=str(data["id"]),
            category=str(data["category"]),
            keywords=tuple(str(k).lower() for k in data.get("keywords") or ()),
            content=str(data["content"]),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["keywords"] = list(self.keywords)
        return data


def default_chunks() -> list[KnowledgeChunk]:
    """Built-in knowledge set used when no file exists yet."""
    return [
        KnowledgeChunk(
            id="diabetes-1",
            category="Metabolic Disorders",
            keywords=("diabetes", "hba1c", "fbs", "glucose", "blood sugar", "insulin"),
            content=(
                "Diabetes Management Guidelines:\n"
                "- HbA1c target: <7% for most patients, <6.5% if achievable without hypoglycemia\n"
                "- Fasting blood glucose: 80-130 mg/dL\n"
                "- Postprandial glucose: <180 mg/dL\n"
                "- Medications: Metformin (first-line), SGLT2 inhibitors, GLP-1 agonists\n"
                "- Monitoring: Daily glucose checks, quarterly HbA1c, annual eye/foot exams\n"
                "- Lifestyle: Low-carb diet, regular exercise, weight management"
            ),
        ),
        KnowledgeChunk(
            id="diabetes-2",
            category="Metabolic Disorders",
            keywords=("diabetes", "complications", "neuropathy", "retinopathy", "nephropathy"),
            content=(
                "Diabetes Complications:\n"
                "- Neuropathy: Numbness, tingling, pain in extremities\n"
                "- Retinopathy: Annual eye exams, control blood pressure and glucose\n"
                "- Nephropathy: Monitor creatinine, eGFR, microalbuminuria\n"
                "- Cardiovascular: Increased risk of heart disease, stroke\n"
                "- Prevention: Tight glucose control, blood pressure <130/80, statin therapy"
            ),
        ),
        KnowledgeChunk(
            id="cardiovascular-1",
            category="Cardiovascular",
            keywords=("hypertension", "blood pressure", "bp", "systolic", "diastolic"),
            content=(
                "Hypertension Management:\n"
                "- Normal: <120/80 mmHg\n"
                "- Elevated: 120-129/<80 mmHg\n"
                "- Stage 1: 130-139/80-89 mmHg\n"
                "- Stage 2: >=140/90 mmHg\n"
                "- Medications: ACE inhibitors, ARBs, diuretics, calcium channel blockers\n"
                "- Lifestyle: DASH diet, reduce sodium, regular exercise, limit alcohol\n"
                "- Monitoring: Home BP monitoring, annual lipid panel"
            ),
        ),
        KnowledgeChunk(
            id="cardiovascular-2",
            category="Cardiovascular",
            keywords=("cholesterol", "ldl", "hdl", "triglycerides", "lipid"),
            content=(
                "Lipid Management Guidelines:\n"
                "- LDL Cholesterol: <100 mg/dL (optimal), <70 mg/dL (high risk)\n"
                "- HDL Cholesterol: >40 mg/dL (men), >50 mg/dL (women)\n"
                "- Triglycerides: <150 mg/dL\n"
                "- Medications: Statins (first-line), Ezetimibe, PCSK9 inhibitors\n"
                "- Lifestyle: Mediterranean diet, omega-3 fatty acids, exercise\n"
                "- Risk factors: Age, family history, smoking, diabetes, hypertension"
            ),
        ),
        KnowledgeChunk(
            id="kidney-1",
            category="Renal",
            keywords=("creatinine", "egfr", "kidney", "renal", "bun"),
            content=(
                "Kidney Function Assessment:\n"
                "- Creatinine: Normal 0.6-1.2 mg/dL (men), 0.5-1.1 mg/dL (women)\n"
                "- eGFR: >60 mL/min/1.73m2 (normal), 30-59 (CKD stage 3), <30 (CKD stage 4-5)\n"
                "- BUN: 7-20 mg/dL\n"
                "- Medications to avoid: NSAIDs, certain antibiotics in renal impairment\n"
                "- Monitoring: Annual creatinine, eGFR, urine microalbumin\n"
                "- Stages of CKD require different management approaches"
            ),
        ),
        KnowledgeChunk(
            id="liver-1",
            category="Hepatic",
            keywords=("liver", "alt", "ast", "bilirubin", "alp", "hepatitis"),
            content=(
                "Liver Function Tests:\n"
                "- ALT: 7-56 U/L (men), 5-36 U/L (women)\n"
                "- AST: 10-40 U/L\n"
                "- Bilirubin: <1.2 mg/dL\n"
                "- ALP: 44-147 U/L\n"
                "- Elevated ALT/AST: Consider viral hepatitis, alcohol, medications, NAFLD\n"
                "- Medications: Avoid hepatotoxic drugs, consider liver-protective agents\n"
                "- Lifestyle: Avoid alcohol, maintain healthy weight, vaccination for hepatitis"
            ),
        ),
        KnowledgeChunk(
            id="thyroid-1",
            category="Endocrine",
            keywords=("thyroid", "tsh", "t3", "t4", "hypothyroidism", "hyperthyroidism"),
            content=(
                "Thyroid Function:\n"
                "- TSH: 0.4-4.0 mIU/L (normal), >4.0 (hypothyroidism), <0.4 (hyperthyroidism)\n"
                "- Free T4: 0.8-1.8 ng/dL\n"
                "- Free T3: 2.3-4.2 pg/mL\n"
                "- Hypothyroidism: Levothyroxine replacement, monitor TSH every 6-12 weeks\n"
                "- Hyperthyroidism: Methimazole, PTU, or radioactive iodine\n"
                "- Monitoring: TSH every 6-12 weeks until stable, then annually"
            ),
        ),
        KnowledgeChunk(
            id="anemia-1",
            category="Hematology",
            keywords=("anemia", "hemoglobin", "hgb", "hematocrit", "iron", "ferritin"),
            content=(
                "Anemia Evaluation:\n"
                "- Hemoglobin: >13 g/dL (men), >12 g/dL (women)\n"
                "- Hematocrit: >39% (men), >36% (women)\n"
                "- Iron deficiency: Low ferritin, high TIBC, low iron\n"
                "- B12/Folate deficiency: Macrocytic anemia, check levels\n"
                "- Treatment: Iron supplementation, B12/folate if deficient\n"
                "- Investigate: GI bleeding, nutritional deficiencies, chronic disease"
            ),
        ),
        KnowledgeChunk(
            id="general-1",
            category="General",
            keywords=("precautions", "monitoring", "follow-up", "lifestyle"),
            content=(
                "General Medical Precautions:\n"
                "- Regular monitoring of abnormal values every 3-6 months\n"
                "- Lifestyle modifications: Balanced diet, regular exercise, adequate sleep\n"
                "- Medication adherence: Take as prescribed, report side effects\n"
                "- Warning signs: Chest pain, shortness of breath, severe symptoms\n"
                "- Emergency: Seek immediate care for severe symptoms or critical values\n"
                "- Follow-up: Regular appointments with primary care and specialists as needed"
            ),
        ),
    ]


class KnowledgeStore:
    """
    Holds the loaded knowledge chunks.

    Readers take a snapshot via `chunks`; writers build a new tuple and swap
    the reference, so a concurrent reader never sees a half-updated list.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._chunks: tuple[KnowledgeChunk, ...] = ()
        self._initialized = False

    @property
    def chunks(self) -> tuple[KnowledgeChunk, ...]:
        return self._chunks

    @property
    def initialized(self) -> bool:
        return self._initialized

    def load(self) -> "KnowledgeStore":
        """Load chunks from disk, or generate and persist the defaults."""
        if self._initialized:
            return self

        loaded = self._read_file() if self.path and self.path.exists() else None
        if loaded is not None:
            self._chunks = tuple(loaded)
            logger.info(f"Loaded {len(self._chunks)} knowledge chunks from {self.path}")
        else:
            self._chunks = tuple(default_chunks())
            self._persist()

        self._initialized = True
        logger.info(f"Knowledge store ready with {len(self._chunks)} chunks")
        return self

    def _read_file(self) -> Optional[list[KnowledgeChunk]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
            if self.path.suffix.lower() == ".json":
                data = json.loads(raw)
            else:
                data = yaml.safe_load(raw)
            if not isinstance(data, list):
                raise ValueError("knowledge file must contain a list of chunks")
            return [KnowledgeChunk.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load knowledge base from {self.path}, using defaults: {e}")
            return None

    def _persist(self) -> None:
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            data = [chunk.to_dict() for chunk in self._chunks]
            if self.path.suffix.lower() == ".json":
                text = json.dumps(data, indent=2)
            else:
                text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
            self.path.write_text(text, encoding="utf-8")
            logger.info(f"Saved knowledge base to {self.path}")
        except OSError as e:
            logger.warning(f"Failed to save knowledge base to {self.path}: {e}")

    def add_chunk(self, category: str, keywords: list[str], content: str) -> KnowledgeChunk:
        """Append a new chunk and persist the updated set."""
        if not self._initialized:
            self.load()
        chunk = KnowledgeChunk(
            id=f"custom-{uuid.uuid4().hex[:12]}",
            category=category,
            keywords=tuple(k.lower() for k in keywords),
            content=content,
        )
        self._chunks = self._chunks + (chunk,)
        self._persist()
        logger.info(f"Added knowledge chunk {chunk.id} ({category})")
        return chunk

    def stats(self) -> dict[str, Any]:
        categories = list(dict.fromkeys(chunk.category for chunk in self._chunks))
        return {
            "total_chunks": len(self._chunks),
            "categories": categories,
            "initialized": self._initialized,
        }
