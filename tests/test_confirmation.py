"""Confirming suggestions into Binomi and amalgamating the Context Document."""

import json

import pytest

from g2a.core import json_store
from g2a.core.errors import NotFoundError, StaleRunError
from g2a.services.confirmation_service import ConfirmationService
from g2a.services.knowledge_service import KnowledgeService
from g2a.services.suggestion_service import SuggestionEngine

HEADER = "When the user clicks Save and the user presses Save"
CODE = "cy.visit('/')\ncy.get('#save').click()\n"
MERGED = "Matching: 'presses Save' and 'clicks Save' are the same action."


@pytest.fixture
def pattern(workspace, make_anchor):
    source = make_anchor("1", "when", "header", HEADER, "the user clicks Save")
    target = make_anchor("1", "when", "content", CODE, "cy.get('#save').click()")
    return workspace.links.create_link(source.id, target.id)


@pytest.fixture
def unlinked(make_anchor, pattern):
    return make_anchor("1", "when", "header", HEADER, "the user presses Save")


def _run(workspace, settings, fake_llm, *pairs):
    answer = json.dumps(
        {
            "suggestions": [
                {
                    "fromObjectId": from_id,
                    "suggestedPatternBinomioId": pattern_id,
                    "confidence": 0.85,
                    "reasoning": "both phrases trigger the Save button",
                }
                for from_id, pattern_id in pairs
            ],
            "stats": {"totalAnalyzed": len(pairs)},
        }
    )
    return SuggestionEngine(fake_llm(answer), settings).run(workspace)


def test_accepted_suggestion_becomes_a_binomio_with_llm_meta(workspace, settings, fake_llm, pattern, unlinked):
    run = _run(workspace, settings, fake_llm, (unlinked.id, pattern.id))
    [suggestion] = run.suggestions
    doc_before = KnowledgeService(workspace.paths).save_context_document("Genesis: Save buttons use #save.")

    result = ConfirmationService(fake_llm(MERGED), settings).confirm(workspace, [suggestion.id], run.run_id)

    [link] = result.created_binomi
    assert (link.from_object_id, link.to_object_id) == (unlinked.id, pattern.to_object_id)
    assert link.status == "active"
    assert link.llm_meta.source_suggestion_id == suggestion.id
    assert link.llm_meta.source_pattern_binomio_id == pattern.id
    assert link.llm_meta.confidence == 0.85
    assert result.amalgamated is True

    stored = json_store.load_suggestion_run(workspace.paths)
    assert [s.status for s in stored.suggestions] == ["accepted"]
    assert link.id in {l.id for l in json_store.load_links(workspace.paths)}

    doc = KnowledgeService(workspace.paths).context_document()
    assert doc.text == MERGED
    assert doc.created_at == doc_before.created_at


def test_confirming_nothing_twice_is_idempotent(workspace, settings, fake_llm, pattern, unlinked):
    run = _run(workspace, settings, fake_llm, (unlinked.id, pattern.id))
    service = ConfirmationService(fake_llm(), settings)
    links_before = workspace.links.list_links()

    first = service.confirm(workspace, [])
    after_first = workspace.paths.suggestions.read_text(encoding="utf-8")
    second = service.confirm(workspace, [])

    assert len(first.rejected) == 1
    assert second.created_binomi == [] and second.rejected == []
    assert json.loads(workspace.paths.suggestions.read_text(encoding="utf-8")) == json.loads(after_first)
    assert workspace.links.list_links() == links_before
    assert [s.status for s in json_store.load_suggestion_run(workspace.paths).suggestions] == ["rejected"]
    assert run.run_id == json_store.load_suggestion_run(workspace.paths).run_id


def test_suggestion_whose_pattern_vanished_is_rejected_with_reason(workspace, settings, fake_llm, pattern, unlinked):
    run = _run(workspace, settings, fake_llm, (unlinked.id, pattern.id))
    workspace.links.delete_link(pattern.id)
    llm = fake_llm()

    result = ConfirmationService(llm, settings).confirm(workspace, [run.suggestions[0].id])

    assert result.created_binomi == []
    [rejected] = result.rejected
    assert rejected.status == "rejected"
    assert rejected.reason == "Pattern Binomio not found"
    assert llm.prompts == []


def test_pattern_from_another_test_case_is_not_applied(workspace, settings, fake_llm, make_anchor, pattern):
    foreign = make_anchor("2", "when", "header", "When the user presses Save", "the user presses Save")
    run = _run(workspace, settings, fake_llm, (foreign.id, pattern.id))

    result = ConfirmationService(fake_llm(), settings).confirm(workspace, [run.suggestions[0].id])

    assert result.created_binomi == []
    assert "test case 1" in result.rejected[0].reason
    assert workspace.links.incident_links(foreign.id) == []


def test_stale_run_id_is_refused(workspace, settings, fake_llm, pattern, unlinked):
    run = _run(workspace, settings, fake_llm, (unlinked.id, pattern.id))
    with pytest.raises(StaleRunError):
        ConfirmationService(fake_llm(), settings).confirm(workspace, [run.suggestions[0].id], "an-older-run")
    assert [s.status for s in json_store.load_suggestion_run(workspace.paths).suggestions] == ["pending"]


def test_confirm_without_a_run_is_not_found(workspace, settings, fake_llm):
    with pytest.raises(NotFoundError):
        ConfirmationService(fake_llm(), settings).confirm(workspace, ["anything"])


def test_amalgamation_failure_keeps_the_new_links(workspace, settings, fake_llm, pattern, unlinked):
    run = _run(workspace, settings, fake_llm, (unlinked.id, pattern.id))
    knowledge = KnowledgeService(workspace.paths)
    knowledge.save_context_document("Genesis: Save buttons use #save.")
    before = workspace.paths.context_document.read_text(encoding="utf-8")
    llm = fake_llm(TimeoutError("bridge timeout"), TimeoutError("bridge timeout"))

    result = ConfirmationService(llm, settings).confirm(workspace, [run.suggestions[0].id])

    assert len(result.created_binomi) == 1
    assert result.amalgamated is False
    assert "bridge timeout" in result.amalgamation_error
    assert result.to_dict()["amalgamationError"] == result.amalgamation_error
    assert workspace.paths.context_document.read_text(encoding="utf-8") == before
    assert len(json_store.load_links(workspace.paths)) == 2


def test_apply_only_changes_memory_until_persisted(workspace, settings, fake_llm, pattern, unlinked):
    run = _run(workspace, settings, fake_llm, (unlinked.id, pattern.id))
    workspace.save_links()
    llm = fake_llm(MERGED)
    service = ConfirmationService(llm, settings)

    result, updated = service.apply(workspace, [run.suggestions[0].id], run.run_id)

    [link] = result.created_binomi
    assert workspace.links.find(link.id) is not None
    assert [l.id for l in json_store.load_links(workspace.paths)] == [pattern.id]
    assert [s.status for s in json_store.load_suggestion_run(workspace.paths).suggestions] == ["pending"]
    assert llm.prompts == []

    service.persist(workspace.paths, updated, workspace.links.list_links())
    assert link.id in {l.id for l in json_store.load_links(workspace.paths)}
    assert [s.status for s in json_store.load_suggestion_run(workspace.paths).suggestions] == ["accepted"]
    assert service.merge_reasoning(workspace.paths, result).amalgamated is True
