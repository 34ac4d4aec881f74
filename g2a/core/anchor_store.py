from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .bus import ChangeBus
from .errors import EditBlockedError, NotFoundError, OverlapError, ValidationError
from .isolation import check_edit
from .models import Anchor, BoxRef, Location, utc_now_iso
from .reconciler import EditDescriptor, apply_to_buffer, reconcile, refresh_text

logger = logging.getLogger(__name__)

Partition = Tuple[str, str, str]


@dataclass(frozen=True)
class EditOutcome:
    buffer: str
    anchors: List[Anchor]
    applied: bool
    revision: int
    blocked_by: Optional[str] = None
    message: Optional[str] = None


@dataclass
class _PartitionState:
    anchors: List[Anchor] = field(default_factory=list)
    revision: int = 0
    editing_anchor_id: Optional[str] = None


def anchor_id_for(session_id: str, box: BoxRef, box_number: int) -> str:
    return f"{session_id}-TC{box.test_case_id}-{box.box_type.upper()}-{box_number}"


class AnchorStore:
    """In-memory owner of a session's anchors, partitioned by box and location.

    Within a partition anchors never overlap and are kept sorted by
    ``startIndex``. Every accepted mutation is published on the bus.
    """

    def __init__(self, session_id: str, bus: Optional[ChangeBus] = None) -> None:
        self.session_id = session_id
        self.bus = bus or ChangeBus(session_id)
        self._partitions: Dict[Partition, _PartitionState] = {}
        self._index: Dict[str, Anchor] = {}

    # ----------------- queries -----------------
    def _state(self, box: BoxRef, location: str) -> _PartitionState:
        key = (str(box.test_case_id), box.box_type, location)
        return self._partitions.setdefault(key, _PartitionState())

    def get(self, anchor_id: str) -> Anchor:
        anchor = self._index.get(anchor_id)
        if anchor is None:
            raise NotFoundError(f"Anchor {anchor_id} not found")
        return anchor

    def find(self, anchor_id: str) -> Optional[Anchor]:
        return self._index.get(anchor_id)

    def list_anchors(self, box: BoxRef, location: Location) -> List[Anchor]:
        return list(self._state(box, location).anchors)

    def all_anchors(
        self,
        test_case_id: Optional[str] = None,
        box_type: Optional[str] = None,
        location: Optional[str] = None,
    ) -> List[Anchor]:
        selected = [
            a
            for a in self._index.values()
            if (test_case_id is None or a.test_case_id == str(test_case_id))
            and (box_type is None or a.box_type == box_type)
            and (location is None or a.location == location)
        ]
        return sorted(selected, key=lambda a: (a.test_case_id, a.box_type, a.location, a.start_index))

    def revision(self, box: BoxRef, location: Location) -> int:
        return self._state(box, location).revision

    def revisions(self) -> Dict[str, int]:
        return {"/".join(key): state.revision for key, state in self._partitions.items()}

    # ----------------- hydration -----------------
    def load(self, anchors: Iterable[Anchor]) -> int:
        """Replace the store content with persisted anchors.

        Records that overlap an already loaded anchor of the same partition are
        skipped with a warning so one bad record cannot poison the session.
        """
        self._partitions.clear()
        self._index.clear()
        loaded = 0
        for anchor in sorted(anchors, key=lambda a: a.start_index):
            state = self._state(anchor.box, anchor.location)
            clash = self._first_overlap(state.anchors, anchor.start_index, anchor.end_index)
            if clash is not None or anchor.id in self._index:
                logger.warning("Skipping anchor %s: conflicts with %s", anchor.id, clash.id if clash else anchor.id)
                continue
            state.anchors.append(anchor)
            self._index[anchor.id] = anchor
            loaded += 1
        return loaded

    # ----------------- mutations -----------------
    @staticmethod
    def _first_overlap(anchors: Iterable[Anchor], start: int, end: int) -> Optional[Anchor]:
        for existing in anchors:
            if start < existing.end_index and existing.start_index < end:
                return existing
        return None

    def _next_box_number(self, box: BoxRef) -> int:
        used = [
            a.box_number
            for a in self._index.values()
            if a.test_case_id == str(box.test_case_id) and a.box_type == box.box_type
        ]
        return max(used, default=0) + 1

    def create_anchor(self, box: BoxRef, location: Location, start: int, end: int, text: str) -> Anchor:
        if start < 0 or end <= start:
            raise ValidationError(f"Invalid range [{start}, {end}): endIndex must be greater than startIndex")
        if len(text) != end - start:
            raise ValidationError(f"Text length {len(text)} does not match range length {end - start}")
        if not text.strip():
            raise ValidationError("Anchor text cannot be blank")
        state = self._state(box, location)
        clash = self._first_overlap(state.anchors, start, end)
        if clash is not None:
            raise OverlapError(
                f"Range [{start}, {end}) overlaps anchor {clash.id} [{clash.start_index}, {clash.end_index})",
                conflicting_id=clash.id,
            )

        box_number = self._next_box_number(box)
        anchor = Anchor(
            id=anchor_id_for(self.session_id, box, box_number),
            session_id=self.session_id,
            test_case_id=str(box.test_case_id),
            box_type=box.box_type,
            box_number=box_number,
            location=location,
            text=text,
            start_index=start,
            end_index=end,
            created_at=utc_now_iso(),
        )
        state.anchors = sorted(state.anchors + [anchor], key=lambda a: a.start_index)
        self._index[anchor.id] = anchor
        logger.info("Created anchor %s [%d, %d) %r", anchor.id, start, end, text)
        self.bus.emit("anchor.created", anchor=anchor.to_json_dict())
        return anchor

    def delete_anchor(self, anchor_id: str, incident_link_ids: Iterable[str] = ()) -> Set[str]:
        """Remove the anchor and hand back the link ids the caller must cascade."""
        anchor = self.get(anchor_id)
        state = self._state(anchor.box, anchor.location)
        state.anchors = [a for a in state.anchors if a.id != anchor_id]
        if state.editing_anchor_id == anchor_id:
            state.editing_anchor_id = None
        del self._index[anchor_id]
        cascade = set(incident_link_ids)
        logger.info("Deleted anchor %s (%d incident link(s))", anchor_id, len(cascade))
        self.bus.emit("anchor.deleted", anchorId=anchor_id, cascade=sorted(cascade))
        return cascade

    # ----------------- edit sessions -----------------
    def begin_edit(self, anchor_id: str) -> Anchor:
        anchor = self.get(anchor_id)
        state = self._state(anchor.box, anchor.location)
        if state.editing_anchor_id and state.editing_anchor_id != anchor_id:
            logger.debug("Closing edit session on %s in favour of %s", state.editing_anchor_id, anchor_id)
        state.editing_anchor_id = anchor_id
        self.bus.emit("anchor.edit_started", anchorId=anchor_id)
        return anchor

    def end_edit(self, anchor_id: str) -> None:
        anchor = self.get(anchor_id)
        state = self._state(anchor.box, anchor.location)
        if state.editing_anchor_id == anchor_id:
            state.editing_anchor_id = None
            self.bus.emit("anchor.edit_ended", anchorId=anchor_id)

    def editing_anchor_id(self, box: BoxRef, location: Location) -> Optional[str]:
        return self._state(box, location).editing_anchor_id

    # ----------------- buffer edits -----------------
    def apply_edit(self, box: BoxRef, location: Location, edit: EditDescriptor, buffer: str) -> EditOutcome:
        """Apply a buffer edit to one partition.

        ``buffer`` is the text before the edit. Blocked edits leave both the
        buffer and the anchors untouched and come back with ``applied=False``.
        An edit computed against an older revision was already applied and is
        ignored.
        """
        state = self._state(box, location)
        if edit.base_revision is not None and edit.base_revision < state.revision:
            logger.debug(
                "Ignoring edit computed against revision %s (current %s)", edit.base_revision, state.revision
            )
            return EditOutcome(buffer, list(state.anchors), False, state.revision, message="already applied")

        editing = state.editing_anchor_id
        try:
            check_edit(state.anchors, edit, editing)
            updated = reconcile(state.anchors, edit, editing)
            new_buffer = apply_to_buffer(buffer, edit)
            updated = refresh_text(updated, new_buffer)
        except EditBlockedError as exc:
            logger.debug("Edit blocked: %s", exc)
            return EditOutcome(
                buffer, list(state.anchors), False, state.revision, blocked_by=exc.anchor_id, message=str(exc)
            )

        self._replace_partition(state, updated)
        state.revision += 1
        self.bus.emit(
            "anchors.reconciled",
            testCaseId=str(box.test_case_id),
            boxType=box.box_type,
            location=location,
            revision=state.revision,
            delta=edit.delta,
        )
        return EditOutcome(new_buffer, list(state.anchors), True, state.revision)

    def replace_partition(self, box: BoxRef, location: Location, anchors: List[Anchor]) -> None:
        """Install a reconciled anchor list (e.g. after newline separation)."""
        state = self._state(box, location)
        known = {a.id for a in state.anchors}
        if {a.id for a in anchors} != known:
            raise ValidationError("Reconciled anchors must be the same set as the current partition")
        self._replace_partition(state, anchors)
        state.revision += 1
        self.bus.emit(
            "anchors.reconciled",
            testCaseId=str(box.test_case_id),
            boxType=box.box_type,
            location=location,
            revision=state.revision,
            delta=0,
        )

    def _replace_partition(self, state: _PartitionState, anchors: List[Anchor]) -> None:
        state.anchors = sorted(anchors, key=lambda a: a.start_index)
        for anchor in state.anchors:
            self._index[anchor.id] = anchor
