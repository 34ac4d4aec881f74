from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Depends

from ..core.llm_client import build_llm
from ..services.workspace import SessionWorkspace, WorkspaceRegistry
from .events import session_events

logger = logging.getLogger(__name__)


def _attach_broker(workspace: SessionWorkspace) -> None:
    workspace.bus.subscribe(session_events.publish_change)


registry = WorkspaceRegistry(on_open=_attach_broker)

_llm_instance: Optional[Any] = None


def get_registry() -> WorkspaceRegistry:
    return registry


def get_workspace(sessionId: str, reg: WorkspaceRegistry = Depends(get_registry)) -> SessionWorkspace:
    return reg.get(sessionId)


def get_llm() -> Any:
    """Build the LLM client on first use so the API starts without LLM credentials."""
    global _llm_instance
    if _llm_instance is None:
        _llm_instance = build_llm()
    return _llm_instance
