from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import Settings, get_settings
from ..core import json_store
from ..core.errors import AmalgamationFailure, G2AError, NotFoundError, StaleRunError
from ..core.json_store import SessionPaths
from ..core.llm_client import LlmTask, RetryPolicy
from ..core.models import Binomio, LlmMeta, Suggestion, SuggestionRun, utc_now_iso
from .knowledge_service import KnowledgeService
from .workspace import SessionWorkspace

logger = logging.getLogger(__name__)

AMALGAMATION_SYSTEM = (
    "You are a knowledge manager who reorganizes technical documents to maximize coherence and usefulness."
)


def amalgamation_prompt(current_text: str, new_rules: str) -> str:
    return f"""
You have a Context Document with existing rules and new rules to integrate.

CURRENT DOCUMENT:
{current_text or "(empty)"}

NEW RULES:
{new_rules}

TASK:
Rewrite the Context Document integrating the new rules organically:
- Group similar rules by category (genesis, matching, unmatching, LLM)
- Remove duplicates and conflicts
- Keep chronology where relevant
- Make the text coherent and readable as guidance for future LLM inferences

Answer only with the new Context Document text, without extra comments.
""".strip()


@dataclass
class ConfirmationResult:
    created_binomi: List[Binomio] = field(default_factory=list)
    rejected: List[Suggestion] = field(default_factory=list)
    amalgamated: bool = False
    amalgamation_error: Optional[str] = None

    @property
    def accepted_count(self) -> int:
        return len(self.created_binomi)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "createdBinomi": [b.to_json_dict() for b in self.created_binomi],
            "acceptedCount": self.accepted_count,
            "rejectedCount": len(self.rejected),
            "amalgamated": self.amalgamated,
        }
        if self.amalgamation_error:
            payload["amalgamationError"] = self.amalgamation_error
        return payload


class ConfirmationService:
    def __init__(self, llm: Any, settings: Optional[Settings] = None) -> None:
        self.llm = llm
        self.settings = settings or get_settings()
        self.policy = RetryPolicy.from_settings(self.settings)

    def _resolve(self, workspace: SessionWorkspace, suggestion: Suggestion) -> Tuple[Optional[Binomio], Optional[str]]:
        """Return the pattern to copy, or the reason the suggestion cannot be applied."""
        pattern = workspace.links.find(suggestion.suggested_pattern_binomio_id)
        if pattern is None:
            return None, "Pattern Binomio not found"
        target = workspace.anchors.find(pattern.to_object_id)
        if target is None:
            return None, "Pattern To-anchor not found"
        source = workspace.anchors.find(suggestion.from_object_id)
        if source is None:
            return None, "From-anchor not found"
        if source.test_case_id != target.test_case_id:
            return None, f"Pattern To-anchor belongs to test case {target.test_case_id}"
        return pattern, None

    def apply(
        self,
        workspace: SessionWorkspace,
        accepted_ids: Iterable[str],
        run_id: Optional[str] = None,
    ) -> Tuple[ConfirmationResult, SuggestionRun]:
        """Create the accepted Binomi in memory and return the run with updated statuses.

        Nothing is written here; see :meth:`persist`.
        """
        run = json_store.load_suggestion_run(workspace.paths)
        if not run.run_id:
            raise NotFoundError("No suggestion run found; run the LLM match first")
        if run_id and run_id != run.run_id:
            raise StaleRunError(f"Suggestion run {run_id} was replaced by {run.run_id}")

        accepted = set(accepted_ids)
        result = ConfirmationResult()
        updated: List[Suggestion] = []

        for suggestion in run.suggestions:
            if suggestion.is_terminal:
                updated.append(suggestion)
                continue
            if suggestion.id not in accepted:
                rejected = suggestion.model_copy(update={"status": "rejected"})
                result.rejected.append(rejected)
                updated.append(rejected)
                continue

            pattern, problem = self._resolve(workspace, suggestion)
            link: Optional[Binomio] = None
            if pattern is not None:
                try:
                    link = workspace.links.create_link(
                        suggestion.from_object_id,
                        pattern.to_object_id,
                        llm_meta=LlmMeta(
                            source_suggestion_id=suggestion.id,
                            source_pattern_binomio_id=pattern.id,
                            confidence=suggestion.confidence,
                            reasoning=suggestion.reasoning,
                            created_at=utc_now_iso(),
                        ),
                    )
                except G2AError as exc:
                    problem = str(exc)
            if link is None:
                logger.warning("Suggestion %s rejected: %s", suggestion.id, problem)
                rejected = suggestion.model_copy(update={"status": "rejected", "reason": problem})
                result.rejected.append(rejected)
                updated.append(rejected)
                continue
            result.created_binomi.append(link)
            updated.append(suggestion.model_copy(update={"status": "accepted"}))

        logger.info(
            "[%s] Confirmed run %s: %d Binomi created, %d rejected",
            workspace.session_id,
            run.run_id,
            result.accepted_count,
            len(result.rejected),
        )
        return result, run.model_copy(update={"suggestions": updated})

    @staticmethod
    def persist(paths: SessionPaths, run: SuggestionRun, links: Optional[List[Binomio]] = None) -> None:
        """Write ``links`` (the full link list, when any were created) and then the run."""
        if links is not None:
            json_store.save_links(paths, links)
        json_store.save_suggestion_run(paths, run)

    def merge_reasoning(self, paths: SessionPaths, result: ConfirmationResult) -> ConfirmationResult:
        """Fold the new Binomi into the Context Document, recording any failure on ``result``."""
        if not result.created_binomi:
            return result
        try:
            self.amalgamate(paths, result.created_binomi)
            result.amalgamated = True
        except AmalgamationFailure as exc:
            logger.warning("%s", exc)
            result.amalgamation_error = str(exc)
        return result

    def confirm(
        self,
        workspace: SessionWorkspace,
        accepted_ids: Iterable[str],
        run_id: Optional[str] = None,
    ) -> ConfirmationResult:
        result, run = self.apply(workspace, accepted_ids, run_id)
        links = workspace.links.list_links() if result.created_binomi else None
        self.persist(workspace.paths, run, links)
        return self.merge_reasoning(workspace.paths, result)

    def amalgamate(self, paths: SessionPaths, links: List[Binomio]) -> str:
        """Merge the reasoning behind ``links`` into the Context Document."""
        rules = "\n\n".join(link.llm_meta.reasoning for link in links if link.llm_meta and link.llm_meta.reasoning)
        if not rules:
            raise AmalgamationFailure("No reasoning to merge into the context document")
        knowledge = KnowledgeService(paths)
        current = knowledge.context_document()
        outcome = LlmTask(
            name="amalgamation",
            prompt=amalgamation_prompt(current.text, rules),
            system=AMALGAMATION_SYSTEM,
            policy=self.policy,
        ).run(self.llm)
        if not outcome.ok:
            raise AmalgamationFailure(f"Context document amalgamation failed: {outcome.error}")
        try:
            knowledge.save_context_document(outcome.content or "")
        except OSError as exc:
            raise AmalgamationFailure(f"Could not save the amalgamated context document: {exc}") from exc
        return outcome.content or ""
