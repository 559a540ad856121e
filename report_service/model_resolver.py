"""
Gemini model availability resolution.

Candidates are tried strictly in order, one at a time; the first one that
answers is remembered for the life of the process and tried first on every
later call. Fallback applies to both the availability probe and the real
request, since a model that answered a probe can still reject a payload.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import Settings
from .errors import ModelErrorKind, ModelUnavailableError
from .prompts import PROBE_PROMPT

logger = logging.getLogger(__name__)


def create_client(settings: Settings) -> genai.Client:
    """Create the Gemini client with a bounded per-call timeout."""
    timeout_ms = int(settings.timeout_seconds * 1000)
    client = genai.Client(
        api_key=settings.api_key,
        http_options=types.HttpOptions(timeout=timeout_ms),
    )
    logger.info(f"Gemini client initialized (timeout: {settings.timeout_seconds}s)")
    return client


@dataclass(frozen=True)
class ModelReply:
    model: str
    text: str


class EmptyResponseError(Exception):
    """The model answered but produced no text."""


class ModelResolver:
    """Finds a callable model among an ordered candidate list and caches it."""

    def __init__(self, client: Any, candidates: Sequence[str]):
        # Per-call timeouts live on the client; see create_client.
        if not candidates:
            raise ValueError("At least one model candidate is required")
        self.client = client
        self.candidates = tuple(candidates)
        self._cached_model: Optional[str] = None

    @property
    def cached_model(self) -> Optional[str]:
        return self._cached_model

    def _generate(self, model: str, contents: Any,
                  config: Optional[types.GenerateContentConfig] = None) -> str:
        response = self.client.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )
        text = response.text
        if not text or not text.strip():
            raise EmptyResponseError(f"Model {model} returned an empty response")
        return text

    def resolve(self) -> str:
        """
        Return a working model identifier, probing candidates if none is cached.

        Raises:
            ModelUnavailableError: every candidate failed the probe.
        """
        cached = self._cached_model
        if cached is not None:
            return cached

        logger.info(f"Testing {len(self.candidates)} Gemini model candidates...")
        probe_config = types.GenerateContentConfig(temperature=0.0, max_output_tokens=8)
        last_error: Optional[BaseException] = None
        for model in self.candidates:
            try:
                self._generate(model, PROBE_PROMPT, probe_config)
            except Exception as e:
                logger.info(f"Model {model} failed probe: {e}")
                last_error = e
                continue
            self._cached_model = model
            logger.info(f"Using model: {model}")
            return model

        raise self._exhausted("No Gemini model candidate answered the availability probe",
                              last_error, list(self.candidates))

    def reprobe(self) -> str:
        """Forget the cached model and probe the candidate list again."""
        logger.info("Re-probing Gemini model candidates")
        self._cached_model = None
        return self.resolve()

    def _trial_order(self) -> list[str]:
        cached = self._cached_model
        if cached is None:
            return list(self.candidates)
        return [cached] + [m for m in self.candidates if m != cached]

    def invoke_with_fallback(self, contents: Any,
                             config: Optional[types.GenerateContentConfig] = None) -> ModelReply:
        """
        Send the real request, walking the candidates until one answers.

        A failing candidate is not retried within the same call. The winner
        becomes the cached model.

        Raises:
            ModelUnavailableError: every candidate failed; carries the kind of
                the last failure.
        """
        attempted = []
        last_error: Optional[BaseException] = None
        for model in self._trial_order():
            attempted.append(model)
            started = time.monotonic()
            try:
                text = self._generate(model, contents, config)
            except Exception as e:
                logger.warning(f"Model {model} failed ({self.classify_error(e).value}): {e}")
                last_error = e
                continue
            elapsed = time.monotonic() - started
            if self._cached_model != model:
                logger.info(f"Caching working model: {model}")
            self._cached_model = model
            logger.info(f"Model {model} answered in {elapsed:.2f}s ({len(text)} chars)")
            return ModelReply(model=model, text=text)

        raise self._exhausted("All Gemini model candidates failed", last_error, attempted)

    def _exhausted(self, message: str, last_error: Optional[BaseException],
                   attempted: list[str]) -> ModelUnavailableError:
        kind = self.classify_error(last_error) if last_error else ModelErrorKind.UNKNOWN
        logger.error(f"{message} (last error kind: {kind.value}): {last_error}")
        return ModelUnavailableError(
            f"{message}. Last error: {last_error}",
            kind=kind,
            last_error=last_error,
            attempted=attempted,
        )

    @staticmethod
    def classify_error(error: BaseException) -> ModelErrorKind:
        """Map a client exception onto a ModelErrorKind."""
        if isinstance(error, TimeoutError) or "timeout" in type(error).__name__.lower():
            return ModelErrorKind.TIMEOUT

        code = error.code if isinstance(error, genai_errors.APIError) else None
        if code == 429:
            return ModelErrorKind.QUOTA
        if code in (401, 403):
            return ModelErrorKind.PERMISSION
        if code == 404:
            return ModelErrorKind.NOT_FOUND
        if code == 400:
            return ModelErrorKind.MALFORMED_REQUEST

        message = str(error).lower()
        if "quota" in message or "429" in message or "resource_exhausted" in message:
            return ModelErrorKind.QUOTA
        if "permission" in message or "403" in message or "api key" in message:
            return ModelErrorKind.PERMISSION
        if "404" in message or "not found" in message:
            return ModelErrorKind.NOT_FOUND
        if "invalid" in message or "400" in message:
            return ModelErrorKind.MALFORMED_REQUEST
        if "timed out" in message or "deadline" in message:
            return ModelErrorKind.TIMEOUT
        return ModelErrorKind.UNKNOWN
