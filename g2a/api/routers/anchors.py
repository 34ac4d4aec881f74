from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ...core.errors import ValidationError
from ...core.geometry import ViewportMetrics, compute_anchor_geometry
from ...core.isolation import enforce_separation
from ...core.models import BoxRef, BoxType, Location
from ...core.reconciler import EditDescriptor
from ...services.coverage_service import discover_header_anchors
from ...services.workspace import SessionWorkspace
from ..auth import jwt_required
from ..deps import get_workspace

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ec-objects", tags=["ec-objects"], dependencies=[Depends(jwt_required)])


class BoxPayload(BaseModel):
    testCaseId: str
    boxType: BoxType

    def box(self) -> BoxRef:
        return BoxRef(test_case_id=self.testCaseId, box_type=self.boxType)


class CreateAnchorRequest(BoxPayload):
    location: Location
    startIndex: int = Field(..., ge=0)
    endIndex: int
    text: str


class BufferEditRequest(BoxPayload):
    location: Location
    buffer: str = Field(..., description="Buffer content before the edit.")
    editStart: Optional[int] = Field(None, ge=0)
    deletedLength: int = Field(0, ge=0)
    insertedLength: Optional[int] = Field(None, ge=0)
    insertedText: Optional[str] = None
    newBuffer: Optional[str] = Field(None, description="Post-edit buffer; the edit is derived when editStart is omitted.")
    baseRevision: Optional[int] = None
    persist: bool = True

    def descriptor(self) -> EditDescriptor:
        if self.editStart is None:
            if self.newBuffer is None:
                raise ValidationError("Provide either editStart or newBuffer")
            return EditDescriptor.from_buffers(self.buffer, self.newBuffer, self.baseRevision)
        if self.insertedText is None and self.insertedLength:
            raise ValidationError("insertedText is required when insertedLength is non-zero")
        inserted = self.insertedText or ""
        return EditDescriptor(
            edit_start=self.editStart,
            deleted_length=self.deletedLength,
            inserted_length=self.insertedLength if self.insertedLength is not None else len(inserted),
            inserted_text=inserted,
            base_revision=self.baseRevision,
        )


class SeparateRequest(BoxPayload):
    buffer: str


class MetricsPayload(BaseModel):
    charWidth: float = Field(8.0, gt=0)
    lineHeight: float = Field(20.0, gt=0)
    paddingLeft: float = 0.0
    paddingTop: float = 0.0
    wrapColumns: Optional[int] = Field(None, ge=1)
    scrollTop: float = 0.0
    scrollLeft: float = 0.0


class GeometryRequest(BoxPayload):
    location: Location
    buffer: str
    metrics: MetricsPayload = Field(default_factory=MetricsPayload)


class DiscoverRequest(BoxPayload):
    statement: str


def _dump(anchors) -> List[Dict[str, Any]]:
    return [a.to_json_dict() for a in anchors]


@router.get("/{sessionId}")
async def list_anchors(
    testCaseId: Optional[str] = None,
    boxType: Optional[BoxType] = None,
    location: Optional[Location] = None,
    workspace: SessionWorkspace = Depends(get_workspace),
) -> dict:
    return {"objects": _dump(workspace.anchors.all_anchors(testCaseId, boxType, location))}


@router.post("/{sessionId}", status_code=201)
async def create_anchor(req: CreateAnchorRequest, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    anchor = workspace.anchors.create_anchor(req.box(), req.location, req.startIndex, req.endIndex, req.text)
    workspace.save_anchors()
    return anchor.to_json_dict()


@router.delete("/{sessionId}/{objectId}")
async def delete_anchor(objectId: str, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    removed = workspace.delete_anchor(objectId)
    return {"deleted": objectId, "cascadedBinomi": removed}


@router.post("/{sessionId}/{objectId}/edit-session")
async def begin_edit_session(objectId: str, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    anchor = workspace.anchors.begin_edit(objectId)
    return {"editing": anchor.id}


@router.delete("/{sessionId}/{objectId}/edit-session")
async def end_edit_session(objectId: str, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    workspace.anchors.end_edit(objectId)
    return {"editing": None}


@router.post("/{sessionId}/edit")
async def apply_buffer_edit(req: BufferEditRequest, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    outcome = workspace.anchors.apply_edit(req.box(), req.location, req.descriptor(), req.buffer)
    if outcome.applied and req.persist:
        workspace.save_anchors()
    payload: Dict[str, Any] = {
        "applied": outcome.applied,
        "buffer": outcome.buffer,
        "revision": outcome.revision,
        "objects": _dump(outcome.anchors),
    }
    if outcome.blocked_by:
        payload["blockedBy"] = outcome.blocked_by
    if outcome.message:
        payload["message"] = outcome.message
    return payload


@router.post("/{sessionId}/separate")
async def separate_content_anchors(req: SeparateRequest, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    box = req.box()
    current = workspace.anchors.list_anchors(box, "content")
    if any(a.end_index > len(req.buffer) for a in current):
        raise HTTPException(status_code=400, detail="Buffer is shorter than the anchors it should contain")
    buffer, anchors = enforce_separation(req.buffer, current, workspace.anchors.editing_anchor_id(box, "content"))
    if buffer != req.buffer:
        workspace.anchors.replace_partition(box, "content", anchors)
        workspace.save_anchors()
    return {"buffer": buffer, "objects": _dump(anchors), "changed": buffer != req.buffer}


@router.post("/{sessionId}/geometry")
async def anchor_geometry(req: GeometryRequest, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    m = req.metrics
    layout = compute_anchor_geometry(
        req.buffer,
        workspace.anchors.list_anchors(req.box(), req.location),
        ViewportMetrics(
            char_width=m.charWidth,
            line_height=m.lineHeight,
            padding_left=m.paddingLeft,
            padding_top=m.paddingTop,
            wrap_columns=m.wrapColumns,
            scroll_top=m.scrollTop,
            scroll_left=m.scrollLeft,
        ),
    )
    return {"layout": [geometry.to_dict() for geometry in layout.values()]}


@router.post("/{sessionId}/discover")
async def discover_anchors(req: DiscoverRequest, workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    return {"candidates": discover_header_anchors(workspace, req.box(), req.statement)}
