"""
Service configuration, read once from the environment (and a local .env).
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Newest first; the resolver walks this list until a candidate answers.
DEFAULT_MODEL_CANDIDATES = (
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-2.0-flash-exp",
    "gemini-1.5-flash-latest",
    "gemini-1.5-flash",
    "gemini-1.5-pro-latest",
    "gemini-1.5-pro",
)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_DOCUMENT_CHARS = 100_000
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_KNOWLEDGE_PATH = Path(__file__).parent / "data" / "medical_knowledge.yaml"

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "GOOGLE_AI_API_KEY")
DEFAULT_CORS_ORIGINS = ("http://localhost:8080",)


@dataclass(frozen=True)
class Settings:
    api_key: str
    model_candidates: tuple[str, ...] = DEFAULT_MODEL_CANDIDATES
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    knowledge_base_path: Path = DEFAULT_KNOWLEDGE_PATH
    max_document_chars: int = DEFAULT_MAX_DOCUMENT_CHARS
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    retrieval_top_k: int = 5
    audit_log_file: Path = Path("logs/audit.log")
    log_json: bool = True
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or default


def load_settings(api_key: Optional[str] = None, dotenv: bool = True) -> Settings:
    """Build Settings from the environment.

    Raises:
        ConfigurationError: if no Gemini credential is available or a
            numeric setting cannot be parsed.
    """
    if dotenv:
        load_dotenv()

    key = api_key
    if not key:
        for var in API_KEY_ENV_VARS:
            key = os.getenv(var)
            if key:
                break
    if not key:
        raise ConfigurationError(
            "No Gemini API key found. Set GEMINI_API_KEY, GOOGLE_API_KEY or "
            "GOOGLE_AI_API_KEY environment variable."
        )

    return Settings(
        api_key=key,
        model_candidates=_env_list("GEMINI_MODEL_CANDIDATES", DEFAULT_MODEL_CANDIDATES),
        timeout_seconds=_env_number("GEMINI_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS, float),
        knowledge_base_path=Path(os.getenv("KNOWLEDGE_BASE_PATH") or DEFAULT_KNOWLEDGE_PATH),
        max_document_chars=_env_number("MAX_DOCUMENT_CHARS", DEFAULT_MAX_DOCUMENT_CHARS, int),
        max_upload_bytes=_env_number("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES, int),
        retrieval_top_k=_env_number("RETRIEVAL_TOP_K", 5, int),
        audit_log_file=Path(os.getenv("AUDIT_LOG_FILE") or "logs/audit.log"),
        log_json=_env_bool("LOG_JSON", True),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        cors_origins=cors_origins(),
    )


def cors_origins() -> tuple[str, ...]:
    """CORS origins are needed when the app is built, before settings load."""
    return _env_list("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
