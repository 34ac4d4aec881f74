"""Session files: round trips, typed defaults and tolerant loading."""

import json

from g2a.core import json_store
from g2a.core.json_store import SessionPaths
from g2a.core.models import KnowledgeDocument, Point
from g2a.services.workspace import SessionWorkspace

HEADER = "Given the user opens the login page"
CODE = "cy.visit('/login')\ncy.get('[data-cy=user]').type('ana')\n"


def test_anchors_and_links_round_trip(workspace, make_anchor, tmp_path):
    source = make_anchor("7", "given", "header", HEADER, "opens the login page")
    target = make_anchor("7", "given", "content", CODE, "cy.visit('/login')")
    link = workspace.links.create_link(source.id, target.id, to_point=Point(x=0.25, y=0.0))
    workspace.save_anchors()
    workspace.save_links()

    reloaded = SessionWorkspace.open("S1", tmp_path)

    for original in (source, target):
        again = reloaded.anchors.get(original.id)
        assert (again.text, again.start_index, again.end_index) == (
            original.text,
            original.start_index,
            original.end_index,
        )
    again_link = reloaded.links.get(link.id)
    assert (again_link.from_object_id, again_link.to_object_id) == (source.id, target.id)
    assert again_link.to_point == Point(x=0.25, y=0.0)


def test_envelope_keeps_created_at_and_uses_camel_case(workspace, make_anchor):
    make_anchor("7", "given", "header", HEADER, "the user")
    workspace.save_anchors()
    first = json.loads(workspace.paths.ec_objects.read_text(encoding="utf-8"))
    workspace.save_anchors()
    second = json.loads(workspace.paths.ec_objects.read_text(encoding="utf-8"))

    assert first["version"] == "1.0"
    assert second["createdAt"] == first["createdAt"]
    record = second["objects"][0]
    assert {"id", "sessionId", "testCaseId", "boxType", "boxNumber", "location", "text", "startIndex", "endIndex", "createdAt"} <= set(record)


def test_missing_files_load_as_typed_defaults(tmp_path):
    paths = SessionPaths(tmp_path, "empty")
    assert json_store.load_anchors(paths) == []
    assert json_store.load_links(paths) == []
    assert json_store.load_suggestion_run(paths).run_id is None
    doc = json_store.load_context_document(paths)
    assert isinstance(doc, KnowledgeDocument)
    assert (doc.version, doc.text) == (1, "")
    assert json_store.load_business_spec(paths).text == ""


def test_truncated_files_load_as_defaults(tmp_path):
    paths = SessionPaths(tmp_path, "S1")
    paths.root.mkdir(parents=True)
    paths.suggestions.write_text('{"runId": "r1", "suggestions": [{"id": ', encoding="utf-8")
    paths.ec_objects.write_text("[not json", encoding="utf-8")
    assert json_store.load_suggestion_run(paths).run_id is None
    assert json_store.load_anchors(paths) == []


def test_invalid_records_are_dropped_individually(tmp_path):
    paths = SessionPaths(tmp_path, "S1")
    paths.root.mkdir(parents=True)
    good = {
        "id": "S1-TC1-THEN-1",
        "sessionId": "S1",
        "testCaseId": "1",
        "boxType": "then",
        "boxNumber": 1,
        "location": "header",
        "text": "sees the dashboard",
        "startIndex": 9,
        "endIndex": 27,
        "createdAt": "2025-01-01T00:00:00Z",
    }
    broken = dict(good, id="S1-TC1-THEN-2", text="too short", startIndex=30, endIndex=60)
    paths.ec_objects.write_text(json.dumps({"version": "1.0", "objects": [good, broken, "junk"]}), encoding="utf-8")

    anchors = json_store.load_anchors(paths)

    assert [a.id for a in anchors] == ["S1-TC1-THEN-1"]


def test_links_without_status_load_as_active(tmp_path):
    paths = SessionPaths(tmp_path, "S1")
    paths.root.mkdir(parents=True)
    legacy = {
        "id": "bf-S1-TC1-001-1700000000000",
        "testCaseId": "1",
        "fromObjectId": "S1-TC1-WHEN-1",
        "toObjectId": "S1-TC1-WHEN-2",
        "fromPoint": None,
        "toPoint": None,
        "createdAt": "2025-01-01T00:00:00Z",
    }
    paths.binomi.write_text(json.dumps({"binomi": [legacy]}), encoding="utf-8")
    [link] = json_store.load_links(paths)
    assert link.status == "active"
    assert link.from_point is None


def test_context_document_preserves_version_and_created_at(tmp_path):
    paths = SessionPaths(tmp_path, "S1")
    paths.root.mkdir(parents=True)
    paths.context_document.write_text(
        json.dumps({"version": 3, "createdAt": "2024-05-01T10:00:00Z", "updatedAt": "2024-05-01T10:00:00Z", "text": "old"}),
        encoding="utf-8",
    )
    doc = json_store.load_context_document(paths)
    json_store.save_context_document(paths, doc.model_copy(update={"text": "new", "updated_at": "2024-06-01T00:00:00Z"}))
    again = json_store.load_context_document(paths)
    assert (again.version, again.created_at, again.updated_at, again.text) == (
        3,
        "2024-05-01T10:00:00Z",
        "2024-06-01T00:00:00Z",
        "new",
    )


def test_business_spec_is_plain_text(tmp_path):
    paths = SessionPaths(tmp_path, "S1")
    json_store.save_business_spec(paths, "Users log in with email and password.")
    assert paths.business_spec.read_text(encoding="utf-8") == "Users log in with email and password."
    assert json_store.load_business_spec(paths).text == "Users log in with email and password."


def test_session_ids_cannot_escape_the_sessions_directory(tmp_path):
    import pytest

    from g2a.core.errors import ValidationError

    for bad in ("", "..", "a/b"):
        with pytest.raises(ValidationError):
            SessionPaths(tmp_path, bad)
