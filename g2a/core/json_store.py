"""Per-session JSON files mirroring the in-memory stores.

Each entity file has exactly one loader that validates the envelope and then
every record on its own: a missing or unreadable file yields the typed
default, and a single malformed record is dropped instead of discarding the
whole file. Writes replace the file through a temp file so a concurrent
reader sees either the old or the new content, never a torn one.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import Anchor, Binomio, KnowledgeDocument, SuggestionRun, utc_now_iso

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

FILE_VERSION = "1.0"
EC_OBJECTS_FILE = "ec-objects.json"
BINOMI_FILE = "binomi-fondamentali.json"
SUGGESTIONS_FILE = "llm-suggestions.json"
CONTEXT_DOCUMENT_FILE = "context-document.json"
BUSINESS_SPEC_FILE = "business-spec.txt"


@dataclass(frozen=True)
class SessionPaths:
    base: Path
    session_id: str

    def __post_init__(self) -> None:
        sid = self.session_id
        if not sid or sid in {".", ".."} or "/" in sid or "\\" in sid:
            raise ValidationError(f"Invalid session id {sid!r}")

    @property
    def root(self) -> Path:
        return self.base / self.session_id

    @property
    def ec_objects(self) -> Path:
        return self.root / EC_OBJECTS_FILE

    @property
    def binomi(self) -> Path:
        return self.root / BINOMI_FILE

    @property
    def suggestions(self) -> Path:
        return self.root / SUGGESTIONS_FILE

    @property
    def context_document(self) -> Path:
        return self.root / CONTEXT_DOCUMENT_FILE

    @property
    def business_spec(self) -> Path:
        return self.root / BUSINESS_SPEC_FILE


# ----------------- low level helpers -----------------
def _read_json(path: Path) -> Optional[Any]:
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable JSON in %s (%s); using defaults", path, exc)
        return None


def write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def write_json_atomic(path: Path, payload: Dict[str, Any]) -> None:
    write_text_atomic(path, json.dumps(payload, indent=2, ensure_ascii=False))


def _validate_records(raw: Any, model: Type[ModelT], path: Path) -> List[ModelT]:
    if not isinstance(raw, list):
        return []
    records: List[ModelT] = []
    for position, item in enumerate(raw):
        try:
            records.append(model.model_validate(item))
        except PydanticValidationError as exc:
            logger.warning(
                "Dropping invalid %s record #%d in %s: %s",
                model.__name__,
                position,
                path,
                exc.errors()[0].get("msg") if exc.errors() else exc,
            )
    return records


def _envelope(raw: Any) -> Dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


def _save_collection(path: Path, key: str, records: List[BaseModel]) -> None:
    previous = _envelope(_read_json(path))
    now = utc_now_iso()
    payload = {
        "version": previous.get("version") or FILE_VERSION,
        "createdAt": previous.get("createdAt") or now,
        "lastUpdated": now,
        key: [record.to_json_dict() for record in records],
    }
    write_json_atomic(path, payload)


# ----------------- anchors -----------------
def load_anchors(paths: SessionPaths) -> List[Anchor]:
    raw = _envelope(_read_json(paths.ec_objects))
    return _validate_records(raw.get("objects"), Anchor, paths.ec_objects)


def save_anchors(paths: SessionPaths, anchors: List[Anchor]) -> None:
    _save_collection(paths.ec_objects, "objects", anchors)


# ----------------- links -----------------
def load_links(paths: SessionPaths) -> List[Binomio]:
    raw = _envelope(_read_json(paths.binomi))
    return _validate_records(raw.get("binomi"), Binomio, paths.binomi)


def save_links(paths: SessionPaths, links: List[Binomio]) -> None:
    _save_collection(paths.binomi, "binomi", links)


# ----------------- suggestion runs -----------------
def load_suggestion_run(paths: SessionPaths) -> SuggestionRun:
    raw = _read_json(paths.suggestions)
    if not isinstance(raw, dict):
        return SuggestionRun()
    try:
        return SuggestionRun.model_validate(raw)
    except PydanticValidationError as exc:
        logger.warning("Discarding malformed suggestion run in %s: %s", paths.suggestions, exc)
        return SuggestionRun()


def save_suggestion_run(paths: SessionPaths, run: SuggestionRun) -> None:
    write_json_atomic(paths.suggestions, run.to_json_dict())


# ----------------- knowledge documents -----------------
def load_context_document(paths: SessionPaths) -> KnowledgeDocument:
    raw = _read_json(paths.context_document)
    if not isinstance(raw, dict):
        return KnowledgeDocument()
    defaults = KnowledgeDocument()
    try:
        return KnowledgeDocument.model_validate(
            {
                "version": raw.get("version") or defaults.version,
                "createdAt": raw.get("createdAt") or defaults.created_at,
                "updatedAt": raw.get("updatedAt") or defaults.updated_at,
                "text": raw.get("text") or "",
            }
        )
    except PydanticValidationError as exc:
        logger.warning("Discarding malformed context document in %s: %s", paths.context_document, exc)
        return defaults


def save_context_document(paths: SessionPaths, document: KnowledgeDocument) -> None:
    write_json_atomic(paths.context_document, document.to_json_dict())


def load_business_spec(paths: SessionPaths) -> KnowledgeDocument:
    path = paths.business_spec
    if not path.exists():
        return KnowledgeDocument()
    text = path.read_text(encoding="utf-8")
    modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat().replace("+00:00", "Z")
    return KnowledgeDocument(text=text, created_at=modified, updated_at=modified)


def save_business_spec(paths: SessionPaths, text: str) -> None:
    write_text_atomic(paths.business_spec, text)
