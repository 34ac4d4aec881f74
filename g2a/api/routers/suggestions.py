from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...core import json_store
from ...services.confirmation_service import ConfirmationService
from ...services.suggestion_service import SuggestionEngine
from ...services.workspace import SessionWorkspace
from ..auth import jwt_required
from ..deps import get_llm, get_workspace

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/llm-match", tags=["llm-match"], dependencies=[Depends(jwt_required)])


class ConfirmRequest(BaseModel):
    acceptedIds: List[str] = Field(default_factory=list, description="Suggestion ids the reviewer accepted.")
    runId: Optional[str] = Field(None, description="Run the review was based on; rejected when stale.")


@router.post("/{sessionId}/run")
async def run_llm_match(workspace: SessionWorkspace = Depends(get_workspace), llm: Any = Depends(get_llm)) -> dict:
    engine = SuggestionEngine(llm)
    ctx, skipped = engine.prepare(workspace)
    if skipped is not None:
        return skipped.to_json_dict()
    # stores stay on the event loop; only the LLM call and file writes leave it
    loop = asyncio.get_event_loop()
    content = await loop.run_in_executor(None, engine.ask, ctx)
    run = engine.finish(workspace.session_id, ctx, content)
    await loop.run_in_executor(None, json_store.save_suggestion_run, workspace.paths, run)
    return run.to_json_dict()


@router.post("/{sessionId}/confirm")
async def confirm_llm_match(
    req: ConfirmRequest,
    workspace: SessionWorkspace = Depends(get_workspace),
    llm: Any = Depends(get_llm),
) -> dict:
    service = ConfirmationService(llm)
    result, run = service.apply(workspace, req.acceptedIds, req.runId)
    links = workspace.links.list_links() if result.created_binomi else None
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, service.persist, workspace.paths, run, links)
    result = await loop.run_in_executor(None, service.merge_reasoning, workspace.paths, result)
    return result.to_dict()


@router.get("/{sessionId}/latest")
async def latest_llm_match(workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    return SuggestionEngine.latest_run(workspace).to_json_dict()
