"""LLM access for suggestion runs and context-document amalgamation.

The Copilot bridge is the default backend; Azure OpenAI (via LangChain) is
used when the bridge is switched off and the Azure variables are present.
Callers never talk to a client directly: they build an ``LlmTask`` and get an
``LlmResult`` back, so every call shares the same retry policy.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests
from langchain_openai import AzureChatOpenAI

from ..config import Settings, get_settings
from .errors import LlmError

logger = logging.getLogger(__name__)

_AZURE_VARS = (
    "OPENAI_API_VERSION",
    "AZURE_OPENAI_DEPLOYMENT",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_KEY",
)


class CopilotResponse:
    def __init__(self, content: str):
        self.content = content


class CopilotClient:
    def __init__(self, bridge_url: str, temperature: float = 0.3, timeout: float = 120.0):
        self.temperature = temperature
        self.timeout = timeout
        self.bridge_url = f"{bridge_url.rstrip('/')}/api/copilot/chat"

    def invoke(self, prompt: str) -> CopilotResponse:
        logger.info("[COPILOT] Sending request to %s (%d chars)", self.bridge_url, len(prompt))
        try:
            response = requests.post(
                self.bridge_url,
                json={
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": self.temperature,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            content = response.json().get("content", "")
        except (requests.RequestException, ValueError) as exc:
            raise LlmError(f"Copilot bridge error: {exc}") from exc
        logger.info("[COPILOT] Response received (%d chars)", len(content or ""))
        return CopilotResponse(content or "")


def _azure_configured() -> bool:
    return all(os.getenv(var) for var in _AZURE_VARS)


def build_llm(settings: Optional[Settings] = None) -> Any:
    """Pick the LLM backend from the environment.

    ``LLM_BACKEND=azure`` forces Azure OpenAI; otherwise the Copilot bridge is
    used unless it is explicitly disabled (``COPILOT_BRIDGE_URL=off``) and the
    Azure variables are configured.
    """
    settings = settings or get_settings()
    backend = os.getenv("LLM_BACKEND", "").strip().lower()
    bridge_off = os.getenv("COPILOT_BRIDGE_URL", "").strip().lower() in {"off", "none", "disabled"}
    if backend == "azure" or (bridge_off and _azure_configured()):
        missing = [var for var in _AZURE_VARS if not os.getenv(var)]
        if missing:
            raise LlmError(f"Missing Azure OpenAI env vars: {', '.join(missing)}")
        logger.info("Using Azure OpenAI deployment %s", os.getenv("AZURE_OPENAI_DEPLOYMENT"))
        return AzureChatOpenAI(
            openai_api_version=os.getenv("OPENAI_API_VERSION"),
            azure_deployment=os.getenv("AZURE_OPENAI_DEPLOYMENT", "GPT-4o"),
            azure_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT"),
            api_key=os.getenv("AZURE_OPENAI_KEY"),
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout,
        )
    logger.info("Using Copilot bridge at %s", settings.copilot_bridge_url)
    return CopilotClient(
        settings.copilot_bridge_url,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout,
    )


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(max_attempts=settings.llm_max_attempts, backoff_seconds=settings.llm_retry_backoff)

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * (self.multiplier ** (attempt - 1))


@dataclass(frozen=True)
class LlmResult:
    name: str
    content: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        if self.error is not None:
            raise LlmError(f"{self.name} failed after {self.attempts} attempt(s): {self.error}", self.attempts)
        return self.content or ""


def _response_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
    return str(content or "").strip()


@dataclass
class LlmTask:
    """One prompt to send, retried under ``policy`` on transport failure or empty output."""

    name: str
    prompt: str
    system: str = ""
    policy: RetryPolicy = RetryPolicy()
    sleep: Callable[[float], None] = time.sleep

    def full_prompt(self) -> str:
        if not self.system:
            return self.prompt
        return f"{self.system}\n\n{self.prompt}"

    def run(self, llm: Any) -> LlmResult:
        last_error = "no attempt made"
        attempts = max(1, self.policy.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                text = _response_text(llm.invoke(self.full_prompt()))
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning("%s: attempt %d/%d failed: %s", self.name, attempt, attempts, last_error)
            else:
                if text:
                    return LlmResult(self.name, content=text, attempts=attempt)
                last_error = "empty response"
                logger.warning("%s: attempt %d/%d returned nothing", self.name, attempt, attempts)
            if attempt < attempts:
                self.sleep(self.policy.delay_for(attempt))
        return LlmResult(self.name, error=last_error, attempts=attempts)
