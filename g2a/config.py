from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def load_env_files() -> None:
    """Load environment variables from .env files.

    The working directory is checked first, then the repository root, so the
    service behaves the same whether uvicorn is launched from the project root
    or elsewhere. Values already present in the environment always win.
    """
    load_dotenv(override=False)
    repo_root = Path(__file__).resolve().parents[1]
    root_env = repo_root / ".env"
    if root_env.exists():
        load_dotenv(dotenv_path=root_env, override=False)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    sessions_path: Path
    min_confidence: float = 0.6
    llm_max_attempts: int = 3
    llm_retry_backoff: float = 1.0
    llm_temperature: float = 0.3
    llm_timeout: float = 120.0
    copilot_bridge_url: str = "http://localhost:3030"
    allow_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    api_host: str = "0.0.0.0"
    api_port: int = 8001
    enforce_jwt: bool = False


def get_settings() -> Settings:
    """Read settings from the environment at call time (tests patch env vars)."""
    origins = os.getenv("ALLOW_ORIGINS", "http://localhost:5173").split(",")
    return Settings(
        sessions_path=Path(os.getenv("G2A_SESSIONS_PATH", "sessions")).resolve(),
        min_confidence=_env_float("SUGGESTION_MIN_CONFIDENCE", 0.6),
        llm_max_attempts=max(1, _env_int("LLM_MAX_ATTEMPTS", 3)),
        llm_retry_backoff=max(0.0, _env_float("LLM_RETRY_BACKOFF_SECONDS", 1.0)),
        llm_temperature=_env_float("LLM_TEMPERATURE", 0.3),
        llm_timeout=_env_float("LLM_TIMEOUT_SECONDS", 120.0),
        copilot_bridge_url=os.getenv("COPILOT_BRIDGE_URL", "http://localhost:3030").rstrip("/"),
        allow_origins=[o.strip() for o in origins if o.strip()],
        api_host=os.getenv("API_HOST", "0.0.0.0"),
        api_port=_env_int("API_PORT", 8001),
        enforce_jwt=os.getenv("ENFORCE_JWT", "").strip().lower() in _TRUTHY,
    )
