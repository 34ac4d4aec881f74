from __future__ import annotations

import logging
from typing import Optional

from ..core import json_store
from ..core.errors import ValidationError
from ..core.json_store import SessionPaths
from ..core.models import Binomio, KnowledgeDocument, utc_now_iso

logger = logging.getLogger(__name__)


class KnowledgeService:
    """Context Document and Business Spec of a session."""

    def __init__(self, paths: SessionPaths) -> None:
        self.paths = paths

    def context_document(self) -> KnowledgeDocument:
        return json_store.load_context_document(self.paths)

    def save_context_document(self, text: str) -> KnowledgeDocument:
        if not isinstance(text, str):
            raise ValidationError('"text" must be a string')
        current = json_store.load_context_document(self.paths)
        updated = current.model_copy(update={"text": text, "updated_at": utc_now_iso()})
        json_store.save_context_document(self.paths, updated)
        return updated

    def business_spec(self) -> KnowledgeDocument:
        return json_store.load_business_spec(self.paths)

    def save_business_spec(self, text: str) -> KnowledgeDocument:
        if not isinstance(text, str):
            raise ValidationError('"text" must be a string')
        json_store.save_business_spec(self.paths, text)
        return json_store.load_business_spec(self.paths)

    def append_journal_entry(self, title: str, body: str) -> KnowledgeDocument:
        current = self.context_document()
        entry = f"[{utc_now_iso()}] {title}\n{body.strip()}"
        text = f"{current.text.rstrip()}\n\n{entry}" if current.text.strip() else entry
        return self.save_context_document(text)

    def record_status_change(
        self,
        link: Binomio,
        previous_status: str,
        from_text: Optional[str] = None,
        to_text: Optional[str] = None,
    ) -> Optional[KnowledgeDocument]:
        """Append a BINOMIO_STATUS_CHANGE block; failures are logged, never raised."""
        reason = link.disabled_reason if link.status == "disabled" else link.enabled_reason
        lines = [
            f"Binomio: {link.id}",
            f"From status: {previous_status}",
            f"To status: {link.status}",
            f"Reason: {reason or ''}",
        ]
        if from_text is not None:
            lines.append(f'From anchor: "{from_text}"')
        if to_text is not None:
            lines.append(f'To anchor: "{to_text}"')
        try:
            return self.append_journal_entry("BINOMIO_STATUS_CHANGE", "\n".join(lines))
        except OSError as exc:
            logger.warning("Could not journal status change of %s: %s", link.id, exc)
            return None
