"""Layout math for drawing Binomi between highlighted anchors.

Everything here is a pure function of its inputs so the editor can recompute
the layout on every render without touching the stores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Anchor, Binomio, Point


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def to_dict(self) -> Dict[str, float]:
        return {"left": self.left, "top": self.top, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class ViewportMetrics:
    char_width: float = 8.0
    line_height: float = 20.0
    padding_left: float = 0.0
    padding_top: float = 0.0
    wrap_columns: Optional[int] = None
    scroll_top: float = 0.0
    scroll_left: float = 0.0


@dataclass(frozen=True)
class AnchorGeometry:
    anchor_id: str
    rects: List[Rect] = field(default_factory=list)
    bounds: Optional[Rect] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "anchorId": self.anchor_id,
            "rects": [r.to_dict() for r in self.rects],
            "bounds": self.bounds.to_dict() if self.bounds else None,
        }


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def attachment_point(pointer: Tuple[float, float], box: Rect) -> Point:
    """Where a link dropped at ``pointer`` attaches to ``box``, in box-relative units.

    The pointer is clamped into the box, projected onto the closest edge
    (ties resolve left, right, top, bottom) and normalized to ``[0,1]``.
    """
    px = _clamp(pointer[0], box.left, box.right)
    py = _clamp(pointer[1], box.top, box.bottom)
    nx = _clamp((px - box.left) / box.width, 0.0, 1.0) if box.width > 0 else 0.5
    ny = _clamp((py - box.top) / box.height, 0.0, 1.0) if box.height > 0 else 0.5

    distances = (
        ("left", px - box.left),
        ("right", box.right - px),
        ("top", py - box.top),
        ("bottom", box.bottom - py),
    )
    edge = min(distances, key=lambda item: item[1])[0]
    if edge == "left":
        return Point(x=0.0, y=ny)
    if edge == "right":
        return Point(x=1.0, y=ny)
    if edge == "top":
        return Point(x=nx, y=0.0)
    return Point(x=nx, y=1.0)


def resolve_point(point: Point, box: Rect) -> Tuple[float, float]:
    return (box.left + point.x * box.width, box.top + point.y * box.height)


def _line_starts(buffer: str, wrap_columns: Optional[int]) -> List[Tuple[int, int]]:
    """Visual lines of the buffer as ``(start_offset, end_offset)`` pairs."""
    lines: List[Tuple[int, int]] = []
    offset = 0
    for raw in buffer.split("\n"):
        if wrap_columns and wrap_columns > 0 and len(raw) > wrap_columns:
            for chunk_start in range(0, len(raw), wrap_columns):
                chunk_end = min(len(raw), chunk_start + wrap_columns)
                lines.append((offset + chunk_start, offset + chunk_end))
        else:
            lines.append((offset, offset + len(raw)))
        offset += len(raw) + 1
    return lines


def _union(rects: Iterable[Rect]) -> Optional[Rect]:
    rects = list(rects)
    if not rects:
        return None
    left = min(r.left for r in rects)
    top = min(r.top for r in rects)
    right = max(r.right for r in rects)
    bottom = max(r.bottom for r in rects)
    return Rect(left=left, top=top, width=right - left, height=bottom - top)


def compute_anchor_geometry(
    buffer: str,
    anchors: Iterable[Anchor],
    viewport_metrics: ViewportMetrics,
) -> Dict[str, AnchorGeometry]:
    """Lay out each anchor's text as one rectangle per visual line it spans."""
    metrics = viewport_metrics
    lines = _line_starts(buffer, metrics.wrap_columns)
    layout: Dict[str, AnchorGeometry] = {}
    for anchor in anchors:
        rects: List[Rect] = []
        for row, (line_start, line_end) in enumerate(lines):
            start = max(anchor.start_index, line_start)
            end = min(anchor.end_index, line_end)
            if start >= end:
                continue
            rects.append(
                Rect(
                    left=metrics.padding_left + (start - line_start) * metrics.char_width - metrics.scroll_left,
                    top=metrics.padding_top + row * metrics.line_height - metrics.scroll_top,
                    width=(end - start) * metrics.char_width,
                    height=metrics.line_height,
                )
            )
        layout[anchor.id] = AnchorGeometry(anchor_id=anchor.id, rects=rects, bounds=_union(rects))
    return layout


def link_segment(
    link: Binomio,
    from_geometry: AnchorGeometry,
    to_geometry: AnchorGeometry,
) -> Optional[Tuple[Tuple[float, float], Tuple[float, float]]]:
    """Absolute endpoints of a link; unset points fall back to bottom-centre and top-centre."""
    if from_geometry.bounds is None or to_geometry.bounds is None:
        return None
    from_point = link.from_point or Point(x=0.5, y=1.0)
    to_point = link.to_point or Point(x=0.5, y=0.0)
    return resolve_point(from_point, from_geometry.bounds), resolve_point(to_point, to_geometry.bounds)
