"""
Knowledge retrieval for prompt enrichment.

Two strategies over the same small store: keyword scoring, and asking
Gemini to rank chunk indices. Ranking falls back to keyword scoring on any
model or parse failure, so retrieval never blocks an analysis.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from google.genai import types

from .errors import ModelUnavailableError
from .knowledge import KnowledgeChunk, KnowledgeStore
from .model_resolver import ModelResolver
from .prompts import KNOWLEDGE_RANKING_PROMPT

logger = logging.getLogger(__name__)

KEYWORD_WEIGHT = 2.0
CONTENT_WEIGHT = 1.0
CATEGORY_WEIGHT = 1.5
RANKED_SCORE = 1.0
RANKING_PREVIEW_CHARS = 200

_INDEX_ARRAY = re.compile(r"\[[\d,\s]+\]")


@dataclass(frozen=True)
class RetrievalResult:
    chunks: tuple[KnowledgeChunk, ...] = ()
    scores: tuple[float, ...] = ()
    strategy: str = "keyword"

    def __len__(self) -> int:
        return len(self.chunks)


class KnowledgeSanitizer:
    """
    Strip instruction-like content from knowledge text before it is placed
    in a prompt. Admin-added chunks are untrusted input.
    """

    FORBIDDEN_PATTERNS = [
        r"ignore\s+(all\s+|previous\s+)?instructions",
        r"system\s+prompt",
        r"disregard\s+(the\s+|all\s+)?(above|previous)",
        r"forget\s+(everything|all)\s+(above|before)",
        r"pretend\s+(to\s+be|you\s+are)",
        r"override\s+(safety|security)",
        r"bypass\s+(restrictions|filters)",
    ]

    def __init__(self):
        self.compiled_patterns = [re.compile(p, re.IGNORECASE) for p in self.FORBIDDEN_PATTERNS]

    def sanitize(self, text: str) -> str:
        sanitized = re.sub(r"```[\s\S]*?```", "[CODE BLOCK REMOVED]", text)
        sanitized = re.sub(r"<[^>]+>", "", sanitized)
        sanitized = sanitized.replace("{{", "").replace("}}", "")
        for pattern in self.compiled_patterns:
            sanitized = pattern.sub("[REMOVED]", sanitized)
        return sanitized


class KnowledgeRetriever:
    """Selects knowledge chunks relevant to a query."""

    def __init__(
        self,
        store: KnowledgeStore,
        resolver: Optional[ModelResolver] = None,
        sanitizer: Optional[KnowledgeSanitizer] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.sanitizer = sanitizer or KnowledgeSanitizer()

    def _snapshot(self) -> tuple[KnowledgeChunk, ...]:
        if not self.store.initialized:
            self.store.load()
        return self.store.chunks

    @staticmethod
    def score_chunk(chunk: KnowledgeChunk, query_lower: str) -> float:
        score = 0.0
        for keyword in chunk.keywords:
            if keyword.lower() in query_lower:
                score += KEYWORD_WEIGHT
        if query_lower and query_lower in chunk.content.lower():
            score += CONTENT_WEIGHT
        if chunk.category.lower() in query_lower:
            score += CATEGORY_WEIGHT
        return score

    def retrieve(self, query: str, top_k: int = 5) -> RetrievalResult:
        """Keyword scoring: keep the top_k chunks with a positive score."""
        query_lower = query.lower()
        scored = [(chunk, self.score_chunk(chunk, query_lower)) for chunk in self._snapshot()]
        # sorted() is stable, so equal scores keep store order
        scored = sorted(scored, key=lambda item: item[1], reverse=True)
        top = [(chunk, score) for chunk, score in scored[:top_k] if score > 0]
        return RetrievalResult(
            chunks=tuple(chunk for chunk, _ in top),
            scores=tuple(score for _, score in top),
            strategy="keyword",
        )

    def build_ranking_prompt(self, query: str, chunks: Sequence[KnowledgeChunk], top_k: int) -> str:
        chunk_list = "\n\n".join(
            f"{i}. [{chunk.category}] {self.sanitizer.sanitize(chunk.content[:RANKING_PREVIEW_CHARS])}..."
            for i, chunk in enumerate(chunks, 1)
        )
        return KNOWLEDGE_RANKING_PROMPT.format(
            query=query, chunk_list=chunk_list, top_k=top_k, total=len(chunks),
        )

    @staticmethod
    def parse_ranking(text: str, total: int, top_k: int) -> list[int]:
        """Parse a 1-based index array into unique, in-range 0-based indices."""
        match = _INDEX_ARRAY.search(text)
        if not match:
            raise ValueError("No index array in ranking response")
        indices = []
        for value in json.loads(match.group()):
            index = int(value) - 1
            if 0 <= index < total and index not in indices:
                indices.append(index)
        return indices[:top_k]

    def retrieve_ranked(self, query: str, top_k: int = 5) -> RetrievalResult:
        """Ask the model to rank chunks; fall back to keyword scoring on failure."""
        chunks = self._snapshot()
        if self.resolver is None or not chunks:
            return self.retrieve(query, top_k)

        try:
            reply = self.resolver.invoke_with_fallback(
                self.build_ranking_prompt(query, chunks, top_k),
                config=types.GenerateContentConfig(temperature=0.0, max_output_tokens=64),
            )
            indices = self.parse_ranking(reply.text, len(chunks), top_k)
        except (ModelUnavailableError, ValueError) as e:
            logger.warning(f"Semantic ranking failed, falling back to keyword search: {e}")
            return self.retrieve(query, top_k)

        if not indices:
            logger.warning("Semantic ranking returned no usable indices, falling back to keyword search")
            return self.retrieve(query, top_k)

        selected = tuple(chunks[i] for i in indices)
        return RetrievalResult(
            chunks=selected,
            scores=tuple(RANKED_SCORE for _ in selected),
            strategy="ranked",
        )

    def format_for_prompt(self, chunks: Sequence[KnowledgeChunk]) -> str:
        """Render chunks as a knowledge block to append to the instruction prompt."""
        if not chunks:
            return ""
        body = "\n\n".join(
            f"{i}. [{chunk.category}] {self.sanitizer.sanitize(chunk.content)}"
            for i, chunk in enumerate(chunks, 1)
        )
        return (
            f"\n\nRELEVANT MEDICAL KNOWLEDGE AND GUIDELINES:\n{body}"
            "\n\nUse this knowledge to provide evidence-based, accurate medical analysis."
        )
