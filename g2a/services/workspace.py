from __future__ import annotations

import copy
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config import get_settings
from ..core import json_store
from ..core.anchor_store import AnchorStore
from ..core.bus import ChangeBus
from ..core.json_store import SessionPaths
from ..core.link_graph import LinkGraph
from ..core.models import utc_now_iso

logger = logging.getLogger(__name__)


class SessionWorkspace:
    """Everything the engine knows about one authoring session.

    The in-memory stores are authoritative; ``save_anchors`` / ``save_links``
    mirror them to the session directory as an explicit step.
    """

    def __init__(self, session_id: str, sessions_path: Path) -> None:
        self.session_id = session_id
        self.paths = SessionPaths(Path(sessions_path), session_id)
        self.bus = ChangeBus(session_id)
        self.anchors = AnchorStore(session_id, self.bus)
        self.links = LinkGraph(session_id, self.anchors.find, self.bus)

    @classmethod
    def open(cls, session_id: str, sessions_path: Path) -> "SessionWorkspace":
        workspace = cls(session_id, sessions_path)
        workspace.reload()
        return workspace

    def reload(self) -> None:
        anchor_count = self.anchors.load(json_store.load_anchors(self.paths))
        link_count = self.links.load(json_store.load_links(self.paths))
        logger.info(
            "Loaded session %s: %d anchor(s), %d Binomi from %s",
            self.session_id,
            anchor_count,
            link_count,
            self.paths.root,
        )

    def save_anchors(self) -> None:
        json_store.save_anchors(self.paths, self.anchors.all_anchors())

    def save_links(self) -> None:
        json_store.save_links(self.paths, self.links.list_links())

    def delete_anchor(self, anchor_id: str) -> List[str]:
        """Delete an anchor together with every Binomio that references it.

        Each file is written before the matching in-memory change, links
        first. A failed links write changes nothing; a failed anchors write
        leaves the anchor in place with its cascade already gone, which is
        what both memory and disk then hold.
        """
        self.anchors.get(anchor_id)
        incident = self.links.incident_links(anchor_id)
        json_store.save_links(self.paths, [l for l in self.links.list_links() if l.id not in incident])
        removed = self.links.delete_links(incident)
        json_store.save_anchors(self.paths, [a for a in self.anchors.all_anchors() if a.id != anchor_id])
        self.anchors.delete_anchor(anchor_id, incident)
        return removed

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only deep copy of the session state for diagnostics and export."""
        data: Dict[str, Any] = {
            "sessionId": self.session_id,
            "takenAt": utc_now_iso(),
            "anchors": [a.to_json_dict() for a in self.anchors.all_anchors()],
            "binomi": [l.to_json_dict() for l in self.links.list_links()],
            "revisions": self.anchors.revisions(),
            "recentEvents": [e.to_json_dict() for e in self.bus.recent()],
        }
        return MappingProxyType(copy.deepcopy(data))


class WorkspaceRegistry:
    """Keeps one live workspace per session id."""

    def __init__(
        self,
        sessions_path: Optional[Path] = None,
        on_open: Optional[Callable[[SessionWorkspace], None]] = None,
    ) -> None:
        self._sessions_path = sessions_path
        self._on_open = on_open
        self._workspaces: Dict[str, SessionWorkspace] = {}

    @property
    def sessions_path(self) -> Path:
        return self._sessions_path or get_settings().sessions_path

    def get(self, session_id: str) -> SessionWorkspace:
        workspace = self._workspaces.get(session_id)
        if workspace is None:
            workspace = SessionWorkspace.open(session_id, self.sessions_path)
            self._workspaces[session_id] = workspace
            if self._on_open is not None:
                self._on_open(workspace)
        return workspace

    def evict(self, session_id: str) -> None:
        self._workspaces.pop(session_id, None)

    def clear(self) -> None:
        self._workspaces.clear()
