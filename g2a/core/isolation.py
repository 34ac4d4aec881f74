from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .errors import EditBlockedError
from .models import Anchor
from .reconciler import EditDescriptor, owning_anchor

logger = logging.getLogger(__name__)


class EditDecision(str, Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"


def _intersects(anchor: Anchor, edit: EditDescriptor) -> bool:
    if edit.deleted_length == 0:
        return anchor.start_index <= edit.edit_start < anchor.end_index
    return edit.edit_start < anchor.end_index and edit.edit_end > anchor.start_index


def can_apply_edit(
    anchor: Anchor,
    edit: EditDescriptor,
    editing_anchor_id: Optional[str] = None,
    owner_end: Optional[int] = None,
) -> EditDecision:
    """Decide whether ``edit`` may touch the range owned by ``anchor``.

    The anchor's own editor may change anything inside it, a lone newline
    typed right before it is always accepted, and everything else that lands
    inside ``[startIndex, endIndex)`` is refused. ``owner_end`` is where the
    anchor under edit ends when the edit falls inside it: typing at that
    position extends the owner even if ``anchor`` starts right there.
    """
    if not _intersects(anchor, edit):
        return EditDecision.ALLOWED
    if edit.is_newline_insert and edit.edit_start == anchor.start_index:
        return EditDecision.ALLOWED
    if editing_anchor_id == anchor.id and edit.edit_end <= anchor.end_index:
        return EditDecision.ALLOWED
    if edit.deleted_length == 0 and edit.edit_start == anchor.start_index == owner_end:
        return EditDecision.ALLOWED
    return EditDecision.BLOCKED


def check_edit(anchors: Iterable[Anchor], edit: EditDescriptor, editing_anchor_id: Optional[str] = None) -> None:
    anchors = list(anchors)
    owner = owning_anchor(anchors, edit, editing_anchor_id)
    owner_end = owner.end_index if owner is not None else None
    for anchor in anchors:
        if can_apply_edit(anchor, edit, editing_anchor_id, owner_end) is EditDecision.BLOCKED:
            raise EditBlockedError(
                f"Anchor {anchor.id} is isolated; open an edit session before changing its text",
                anchor_id=anchor.id,
            )


def enforce_separation(
    buffer: str,
    anchors: Iterable[Anchor],
    editing_anchor_id: Optional[str] = None,
) -> Tuple[str, List[Anchor]]:
    """Make sure every content anchor sits on its own line(s).

    A newline is inserted before an anchor that does not start the buffer or a
    line, and after one that is not followed by a newline or the buffer end.
    Anchors after an insertion point are shifted to match. The anchor under
    edit gets no separators. Inputs are left untouched.
    """
    ordered = sorted(anchors, key=lambda a: a.start_index)
    chars = buffer
    shifted = list(ordered)
    inserted = 0

    def _insert_newline_at(position: int, from_index: int) -> None:
        nonlocal chars, inserted
        chars = chars[:position] + "\n" + chars[position:]
        inserted += 1
        for j in range(from_index, len(shifted)):
            other = shifted[j]
            shifted[j] = other.model_copy(
                update={"start_index": other.start_index + 1, "end_index": other.end_index + 1}
            )

    for i in range(len(shifted)):
        anchor = shifted[i]
        if anchor.location != "content" or anchor.id == editing_anchor_id:
            continue
        if anchor.start_index > 0 and chars[anchor.start_index - 1] != "\n":
            _insert_newline_at(anchor.start_index, i)
            anchor = shifted[i]
        if anchor.end_index < len(chars) and chars[anchor.end_index] != "\n":
            _insert_newline_at(anchor.end_index, i + 1)

    if inserted:
        logger.debug("Inserted %d separator newline(s) around content anchors", inserted)
    return chars, shifted
