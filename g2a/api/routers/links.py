from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...core.geometry import Rect, attachment_point
from ...core.models import LinkStatus, Point
from ...services.knowledge_service import KnowledgeService
from ...services.workspace import SessionWorkspace
from ..auth import jwt_required
from ..deps import get_workspace

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/binomi", tags=["binomi"], dependencies=[Depends(jwt_required)])


class PointPayload(BaseModel):
    x: float = Field(..., ge=0.0, le=1.0)
    y: float = Field(..., ge=0.0, le=1.0)

    def point(self) -> Point:
        return Point(x=self.x, y=self.y)


class CreateLinkRequest(BaseModel):
    fromObjectId: str
    toObjectId: str
    fromPoint: Optional[PointPayload] = None
    toPoint: Optional[PointPayload] = None


class StatusChangeRequest(BaseModel):
    status: LinkStatus
    reason: str = Field(..., description="Why the Binomio is being disabled or re-enabled.")


class RectPayload(BaseModel):
    left: float
    top: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)


class AttachmentRequest(BaseModel):
    pointerX: float
    pointerY: float
    box: RectPayload


@router.get("/{sessionId}")
async def list_links(
    testCaseId: Optional[str] = None,
    status: Optional[Literal["active", "disabled"]] = None,
    workspace: SessionWorkspace = Depends(get_workspace),
) -> dict:
    return {"binomi": [link.to_json_dict() for link in workspace.links.list_links(testCaseId, status)]}


@router.post("/{sessionId}", status_code=201)
async def create_link(req: CreateLinkRequest, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    link = workspace.links.create_link(
        req.fromObjectId,
        req.toObjectId,
        from_point=req.fromPoint.point() if req.fromPoint else None,
        to_point=req.toPoint.point() if req.toPoint else None,
    )
    workspace.save_links()
    return link.to_json_dict()


@router.put("/{sessionId}/{binomioId}")
async def change_link_status(
    binomioId: str,
    req: StatusChangeRequest,
    workspace: SessionWorkspace = Depends(get_workspace),
) -> dict:
    previous = workspace.links.get(binomioId).status
    link = workspace.links.toggle_status(binomioId, req.status, req.reason)
    workspace.save_links()
    source = workspace.anchors.find(link.from_object_id)
    target = workspace.anchors.find(link.to_object_id)
    KnowledgeService(workspace.paths).record_status_change(
        link,
        previous,
        from_text=source.text if source else None,
        to_text=target.text if target else None,
    )
    return link.to_json_dict()


@router.delete("/{sessionId}/{binomioId}")
async def delete_link(binomioId: str, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    workspace.links.delete_link(binomioId)
    workspace.save_links()
    return {"deleted": binomioId}


@router.post("/{sessionId}/attachment-point")
async def compute_attachment_point(req: AttachmentRequest) -> dict:
    box = Rect(left=req.box.left, top=req.box.top, width=req.box.width, height=req.box.height)
    return attachment_point((req.pointerX, req.pointerY), box).to_json_dict()
