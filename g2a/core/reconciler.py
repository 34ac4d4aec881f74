"""Keep anchor offsets valid while the underlying buffer is edited.

An edit is described by where it starts, how many characters it removed and
how many it inserted. ``reconcile`` walks the anchors of one buffer in
``startIndex`` order and returns the shifted (or extended) copies; it never
touches the buffer itself. Edits that would land inside an anchor that is not
being edited are refused with ``EditBlockedError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .errors import EditBlockedError, ValidationError
from .models import Anchor


@dataclass(frozen=True)
class EditDescriptor:
    edit_start: int
    deleted_length: int = 0
    inserted_length: int = 0
    inserted_text: Optional[str] = None
    # revision of the buffer the edit was computed against
    base_revision: Optional[int] = None

    def __post_init__(self) -> None:
        if self.edit_start < 0 or self.deleted_length < 0 or self.inserted_length < 0:
            raise ValidationError("edit offsets and lengths must be non-negative")
        if self.inserted_text is not None and len(self.inserted_text) != self.inserted_length:
            raise ValidationError("insertedLength does not match the inserted text")

    @property
    def delta(self) -> int:
        return self.inserted_length - self.deleted_length

    @property
    def edit_end(self) -> int:
        return self.edit_start + self.deleted_length

    @property
    def is_newline_insert(self) -> bool:
        return self.deleted_length == 0 and self.inserted_length == 1 and self.inserted_text == "\n"

    @classmethod
    def from_buffers(cls, before: str, after: str, base_revision: Optional[int] = None) -> "EditDescriptor":
        """Derive the single contiguous edit that turns ``before`` into ``after``."""
        prefix = 0
        limit = min(len(before), len(after))
        while prefix < limit and before[prefix] == after[prefix]:
            prefix += 1
        suffix = 0
        while (
            suffix < limit - prefix
            and before[len(before) - 1 - suffix] == after[len(after) - 1 - suffix]
        ):
            suffix += 1
        inserted = after[prefix:len(after) - suffix]
        return cls(
            edit_start=prefix,
            deleted_length=len(before) - suffix - prefix,
            inserted_length=len(inserted),
            inserted_text=inserted,
            base_revision=base_revision,
        )


def owning_anchor(anchors: Sequence[Anchor], edit: EditDescriptor, editing_anchor_id: Optional[str]) -> Optional[Anchor]:
    """Return the anchor under edit when the edit falls within it (tail inclusive)."""
    if not editing_anchor_id:
        return None
    for anchor in anchors:
        if anchor.id != editing_anchor_id:
            continue
        if anchor.start_index <= edit.edit_start and edit.edit_end <= anchor.end_index:
            return anchor
        return None
    return None


def reconcile(
    anchors: Iterable[Anchor],
    edit: EditDescriptor,
    editing_anchor_id: Optional[str] = None,
) -> List[Anchor]:
    ordered = sorted(anchors, key=lambda a: a.start_index)
    owner = owning_anchor(ordered, edit, editing_anchor_id)
    delta = edit.delta
    result: List[Anchor] = []

    for anchor in ordered:
        if owner is not None and anchor.id == owner.id:
            new_end = anchor.end_index + delta
            if new_end <= anchor.start_index:
                raise EditBlockedError(
                    f"Edit would empty anchor {anchor.id}; delete the anchor instead",
                    anchor_id=anchor.id,
                )
            result.append(anchor.model_copy(update={"end_index": new_end}))
            continue

        if edit.edit_start >= anchor.end_index:
            result.append(anchor)
            continue

        before_start = edit.edit_end <= anchor.start_index and edit.edit_start < anchor.start_index
        # pure insertion right at the start: allowed when it extends the anchor
        # that ends here or when it is the single separating newline
        insert_at_start = (
            edit.deleted_length == 0
            and edit.edit_start == anchor.start_index
            and (edit.is_newline_insert or (owner is not None and owner.end_index == anchor.start_index))
        )
        if before_start or insert_at_start:
            result.append(
                anchor.model_copy(
                    update={
                        "start_index": anchor.start_index + delta,
                        "end_index": anchor.end_index + delta,
                    }
                )
            )
            continue

        raise EditBlockedError(
            f"Edit at {edit.edit_start} overlaps anchor {anchor.id} "
            f"[{anchor.start_index}, {anchor.end_index}) which is not being edited",
            anchor_id=anchor.id,
        )

    return result


def apply_to_buffer(buffer: str, edit: EditDescriptor) -> str:
    if edit.edit_end > len(buffer):
        raise ValidationError(f"edit range [{edit.edit_start}, {edit.edit_end}) exceeds buffer length {len(buffer)}")
    inserted = edit.inserted_text if edit.inserted_text is not None else ""
    if len(inserted) != edit.inserted_length:
        raise ValidationError("inserted text is required to rewrite the buffer")
    return buffer[:edit.edit_start] + inserted + buffer[edit.edit_end:]


def refresh_text(anchors: Iterable[Anchor], buffer: str) -> List[Anchor]:
    """Re-derive each anchor's cached text from the buffer it indexes."""
    refreshed: List[Anchor] = []
    for anchor in anchors:
        if anchor.end_index > len(buffer):
            raise ValidationError(f"anchor {anchor.id} ends past the buffer ({anchor.end_index} > {len(buffer)})")
        text = buffer[anchor.start_index:anchor.end_index]
        refreshed.append(anchor if text == anchor.text else anchor.model_copy(update={"text": text}))
    return refreshed
