from __future__ import annotations

import logging
import re
from typing import Dict, List

from ..core.matching import PARTIAL_MATCH_THRESHOLD, find_partial_match
from ..core.models import Anchor, BoxRef
from .workspace import SessionWorkspace

logger = logging.getLogger(__name__)

_LEADING_KEYWORD = re.compile(r"^(Given|When|Then|And|Or|But)\s+", re.IGNORECASE)
_INNER_CONJUNCTION = re.compile(r"\s+(and|or|but)\s+", re.IGNORECASE)
_PUNCTUATION = re.compile(r"[,;:]")


def _clean(text: str) -> str:
    text = _LEADING_KEYWORD.sub("", text or "")
    text = _INNER_CONJUNCTION.sub(" ", text)
    return _PUNCTUATION.sub("", text).strip()


def coverage_percentage(workspace: SessionWorkspace, box: BoxRef, statement: str) -> int:
    """Share of a step statement already covered by linked header anchors (0-100)."""
    clean = _clean(statement)
    if not clean:
        return 0
    headers = workspace.anchors.all_anchors(box.test_case_id, box.box_type, "header")
    linked = {link.from_object_id for link in workspace.links.list_links(box.test_case_id, "active")}
    covered = sum(len(_clean(a.text)) for a in headers if a.id in linked)
    return min(100, round(covered / len(clean) * 100))


def discover_header_anchors(workspace: SessionWorkspace, box: BoxRef, statement: str) -> List[Dict[str, object]]:
    """Propose header ranges where the From text of a known pattern reappears.

    Nothing is created: the caller reviews the proposals and calls the
    regular create endpoint for the ones it keeps.
    """
    known_texts = []
    for link in workspace.links.active_links():
        source = workspace.anchors.find(link.from_object_id)
        if source is not None and source.text not in known_texts:
            known_texts.append(source.text)

    occupied: List[Anchor] = workspace.anchors.list_anchors(box, "header")
    proposals: List[Dict[str, object]] = []
    for known in known_texts:
        match = find_partial_match(statement, known)
        if match is None or match.similarity <= PARTIAL_MATCH_THRESHOLD:
            continue
        taken = [(a.start_index, a.end_index) for a in occupied]
        taken += [(p["startIndex"], p["endIndex"]) for p in proposals]
        if any(match.start_index < end and match.end_index > start for start, end in taken):
            continue
        proposals.append(
            {
                "testCaseId": box.test_case_id,
                "boxType": box.box_type,
                "location": "header",
                "startIndex": match.start_index,
                "endIndex": match.end_index,
                "text": match.text,
                "similarity": match.similarity,
                "discoveredFrom": known,
            }
        )
    logger.info("Discovered %d candidate header anchor(s) in TC%s/%s", len(proposals), box.test_case_id, box.box_type)
    return proposals
