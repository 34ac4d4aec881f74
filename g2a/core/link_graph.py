from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from .bus import ChangeBus
from .errors import NotFoundError, ValidationError
from .models import Anchor, Binomio, LinkStatus, LlmMeta, Point, utc_now_iso

logger = logging.getLogger(__name__)

AnchorLookup = Callable[[str], Optional[Anchor]]

_VALID_STATUSES = ("active", "disabled")


class LinkGraph:
    """Directed links (Binomi) from header anchors to content anchors of one session."""

    def __init__(self, session_id: str, anchor_lookup: AnchorLookup, bus: Optional[ChangeBus] = None) -> None:
        self.session_id = session_id
        self._lookup = anchor_lookup
        self.bus = bus or ChangeBus(session_id)
        self._links: Dict[str, Binomio] = {}

    def load(self, links: Iterable[Binomio]) -> int:
        self._links = {link.id: link for link in links}
        return len(self._links)

    # ----------------- queries -----------------
    def get(self, link_id: str) -> Binomio:
        link = self._links.get(link_id)
        if link is None:
            raise NotFoundError(f"Binomio {link_id} not found")
        return link

    def find(self, link_id: str) -> Optional[Binomio]:
        return self._links.get(link_id)

    def list_links(self, test_case_id: Optional[str] = None, status: Optional[str] = None) -> List[Binomio]:
        links = [
            link
            for link in self._links.values()
            if (test_case_id is None or link.test_case_id == str(test_case_id))
            and (status is None or link.status == status)
        ]
        return sorted(links, key=lambda l: (l.created_at, l.id))

    def active_links(self) -> List[Binomio]:
        return [link for link in self.list_links() if link.is_active]

    def incident_links(self, anchor_id: str) -> List[str]:
        return [link.id for link in self._links.values() if link.touches(anchor_id)]

    # ----------------- mutations -----------------
    def _next_link_id(self, test_case_id: str) -> str:
        prefix = f"bf-{self.session_id}-TC{test_case_id}-"
        seqs = []
        for link_id in self._links:
            if not link_id.startswith(prefix):
                continue
            head = link_id[len(prefix):].split("-", 1)[0]
            if head.isdigit():
                seqs.append(int(head))
        seq = max(seqs, default=0) + 1
        return f"{prefix}{seq:03d}-{int(time.time() * 1000)}"

    def _resolve(self, anchor_id: str, role: str) -> Anchor:
        anchor = self._lookup(anchor_id)
        if anchor is None:
            raise ValidationError(f"{role} anchor {anchor_id} does not exist")
        return anchor

    def create_link(
        self,
        from_id: str,
        to_id: str,
        from_point: Optional[Point] = None,
        to_point: Optional[Point] = None,
        llm_meta: Optional[LlmMeta] = None,
    ) -> Binomio:
        if from_id == to_id:
            raise ValidationError("A Binomio cannot link an anchor to itself")
        source = self._resolve(from_id, "From")
        target = self._resolve(to_id, "To")
        if source.test_case_id != target.test_case_id:
            raise ValidationError(
                f"Endpoints belong to different test cases ({source.test_case_id} vs {target.test_case_id})"
            )
        link = Binomio(
            id=self._next_link_id(source.test_case_id),
            session_id=self.session_id,
            test_case_id=source.test_case_id,
            from_object_id=from_id,
            to_object_id=to_id,
            from_point=from_point,
            to_point=to_point,
            created_at=utc_now_iso(),
            status="active",
            llm_meta=llm_meta,
        )
        self._links[link.id] = link
        logger.info("Created Binomio %s: %s -> %s", link.id, from_id, to_id)
        self.bus.emit("link.created", binomio=link.to_json_dict())
        return link

    def toggle_status(self, link_id: str, status: LinkStatus, reason: str) -> Binomio:
        link = self.get(link_id)
        if status not in _VALID_STATUSES:
            raise ValidationError(f"Invalid status {status!r}; expected one of {', '.join(_VALID_STATUSES)}")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to change a Binomio status")

        now = utc_now_iso()
        if status == "disabled":
            changes = {
                "status": status,
                "disabled_at": now,
                "disabled_reason": reason,
                "enabled_at": None,
                "enabled_reason": None,
            }
        else:
            changes = {
                "status": status,
                "enabled_at": now,
                "enabled_reason": reason,
                "disabled_at": None,
                "disabled_reason": None,
            }
        updated = link.model_copy(update=changes)
        self._links[link_id] = updated
        logger.info("Binomio %s: %s -> %s (%s)", link_id, link.status, status, reason)
        self.bus.emit("link.status_changed", binomioId=link_id, previous=link.status, status=status, reason=reason)
        return updated

    def delete_link(self, link_id: str) -> Binomio:
        link = self.get(link_id)
        del self._links[link_id]
        self.bus.emit("link.deleted", binomioId=link_id)
        return link

    def delete_links(self, link_ids: Iterable[str]) -> List[str]:
        removed = []
        for link_id in link_ids:
            if link_id in self._links:
                self.delete_link(link_id)
                removed.append(link_id)
        return removed

    def delete_links_for_anchor(self, anchor_id: str) -> List[str]:
        return self.delete_links(self.incident_links(anchor_id))
