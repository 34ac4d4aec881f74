from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...core.models import BoxRef, BoxType
from ...services.coverage_service import coverage_percentage
from ...services.knowledge_service import KnowledgeService
from ...services.workspace import SessionWorkspace
from ..auth import jwt_required
from ..deps import get_workspace

router = APIRouter(prefix="/api", tags=["knowledge"], dependencies=[Depends(jwt_required)])


class TextPayload(BaseModel):
    text: str


class CoverageRequest(BaseModel):
    testCaseId: str
    boxType: BoxType
    statement: str


@router.get("/context-document/{sessionId}")
async def get_context_document(workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    return KnowledgeService(workspace.paths).context_document().to_json_dict()


@router.put("/context-document/{sessionId}")
async def put_context_document(req: TextPayload, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    return KnowledgeService(workspace.paths).save_context_document(req.text).to_json_dict()


@router.get("/business-spec/{sessionId}")
async def get_business_spec(workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    doc = KnowledgeService(workspace.paths).business_spec()
    return {"text": doc.text, "updatedAt": doc.updated_at}


@router.put("/business-spec/{sessionId}")
async def put_business_spec(req: TextPayload, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    doc = KnowledgeService(workspace.paths).save_business_spec(req.text)
    return {"text": doc.text, "updatedAt": doc.updated_at}


@router.post("/coverage/{sessionId}")
async def statement_coverage(req: CoverageRequest, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    box = BoxRef(test_case_id=req.testCaseId, box_type=req.boxType)
    return {"percentage": coverage_percentage(workspace, box, req.statement)}
