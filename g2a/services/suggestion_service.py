from __future__ import annotations

import json
import logging
import math
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings, get_settings
from ..core import json_store
from ..core.errors import SuggestionParseError
from ..core.llm_client import LlmTask, RetryPolicy
from ..core.models import Anchor, Binomio, KnowledgeDocument, Suggestion, SuggestionRun, SuggestionStats, utc_now_iso
from .knowledge_service import KnowledgeService
from .workspace import SessionWorkspace

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a test automation expert matching natural-language Gherkin fragments to Cypress code patterns. "
    'Always answer with valid JSON containing a "suggestions" array and a "stats" object.'
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class _RawSuggestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fromObjectId: str
    suggestedPatternBinomioId: str
    confidence: float = 0.0
    reasoning: str = ""


class _RawResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    suggestions: List[_RawSuggestion]
    stats: Dict[str, Any] = Field(...)


@dataclass
class MatchContext:
    context_document: KnowledgeDocument
    business_spec: KnowledgeDocument
    active_links: List[Binomio]
    anchors: Dict[str, Anchor]
    unlinked: List[Anchor] = field(default_factory=list)

    def siblings(self, anchor: Anchor) -> List[str]:
        return [
            a.text
            for a in self.anchors.values()
            if a.location == "content" and a.test_case_id == anchor.test_case_id and a.box_type == anchor.box_type
        ]


def gather_context(workspace: SessionWorkspace, knowledge: KnowledgeService) -> MatchContext:
    active = workspace.links.active_links()
    anchors = {a.id: a for a in workspace.anchors.all_anchors()}
    linked_from = {link.from_object_id for link in active}
    unlinked = [a for a in anchors.values() if a.location == "header" and a.id not in linked_from]
    return MatchContext(
        context_document=knowledge.context_document(),
        business_spec=knowledge.business_spec(),
        active_links=active,
        anchors=anchors,
        unlinked=unlinked,
    )


def build_prompt(ctx: MatchContext, min_confidence: float) -> str:
    patterns = []
    for idx, link in enumerate(ctx.active_links, start=1):
        source = ctx.anchors.get(link.from_object_id)
        target = ctx.anchors.get(link.to_object_id)
        patterns.append(
            f"{idx}. Pattern Binomio ID: {link.id}\n"
            f"   - Test Case: {link.test_case_id}\n"
            f'   - FROM: "{source.text if source else link.from_object_id}"\n'
            f'   - TO: "{target.text if target else link.to_object_id}"'
        )
    unlinked = []
    for idx, anchor in enumerate(ctx.unlinked, start=1):
        block = (
            f"{idx}. Object ID: {anchor.id}\n"
            f"   - Test Case: {anchor.test_case_id}\n"
            f'   - Text: "{anchor.text}"'
        )
        hints = ctx.siblings(anchor)
        if hints:
            block += f"\n   - Context (TO objects in the same step): {', '.join(hints)}"
        unlinked.append(block)

    return f"""
Identify unlinked FROM objects (natural language) that match an existing Binomio pattern.

CONTEXT DOCUMENT (learned rules):
{ctx.context_document.text or "(no context document yet)"}

BUSINESS SPECIFICATIONS:
{ctx.business_spec.text or "(no business spec available)"}

EXISTING BINOMIO PATTERNS:
{chr(10).join(patterns)}

UNLINKED FROM OBJECTS:
{chr(10).join(unlinked)}

For every match return fromObjectId, suggestedPatternBinomioId, confidence (0.0 - 1.0)
and reasoning grounded in the context document and the business spec.
Be conservative: only suggest matches with confidence >= {min_confidence}.
A pattern only applies inside its own test case.

Answer with JSON only:
{{
  "suggestions": [
    {{"fromObjectId": "...", "suggestedPatternBinomioId": "...", "confidence": 0.85, "reasoning": "..."}}
  ],
  "stats": {{"totalAnalyzed": 0, "suggested": 0, "avgConfidence": 0.0}}
}}
""".strip()


def parse_response(content: str) -> _RawResponse:
    text = (content or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise SuggestionParseError(f"LLM response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SuggestionParseError("LLM response must be a JSON object with suggestions and stats")
    try:
        return _RawResponse.model_validate(data)
    except PydanticValidationError as exc:
        raise SuggestionParseError(f"LLM response has the wrong shape: {exc.errors()[0].get('msg')}") from exc


def validate_suggestions(
    raw: _RawResponse,
    unlinked_ids: set,
    active_pattern_ids: set,
    min_confidence: float,
) -> List[Suggestion]:
    """Clamp, filter and stamp the raw LLM suggestions, in that order."""
    now = utc_now_iso()
    kept: List[Suggestion] = []
    for item in raw.suggestions:
        reported = float(item.confidence)
        confidence = 0.0 if math.isnan(reported) else max(0.0, min(1.0, reported))
        if confidence != reported:
            # out-of-range scores break the output contract; the clamped value is not trusted
            logger.debug("Dropping suggestion for %s: confidence %s outside [0, 1]", item.fromObjectId, reported)
            continue
        if item.fromObjectId not in unlinked_ids:
            logger.debug("Dropping suggestion for unknown or linked anchor %s", item.fromObjectId)
            continue
        if item.suggestedPatternBinomioId not in active_pattern_ids:
            logger.debug("Dropping suggestion with unknown pattern %s", item.suggestedPatternBinomioId)
            continue
        if confidence < min_confidence:
            continue
        kept.append(
            Suggestion(
                id=str(uuid.uuid4()),
                from_object_id=item.fromObjectId,
                suggested_pattern_binomio_id=item.suggestedPatternBinomioId,
                confidence=confidence,
                reasoning=item.reasoning or "",
                status="pending",
                created_at=now,
            )
        )
    return kept


class SuggestionEngine:
    """LLM matching in three steps so callers can keep store access on one thread.

    ``prepare`` snapshots the workspace, ``ask`` is the only step that talks
    to the LLM and ``finish`` validates the answer against the snapshot.
    ``run`` chains them for synchronous callers.
    """

    def __init__(self, llm: Any, settings: Optional[Settings] = None) -> None:
        self.llm = llm
        self.settings = settings or get_settings()
        self.policy = RetryPolicy.from_settings(self.settings)

    def prepare(self, workspace: SessionWorkspace) -> Tuple[MatchContext, Optional[SuggestionRun]]:
        """Snapshot the workspace; the second item is set when there is nothing to ask."""
        ctx = gather_context(workspace, KnowledgeService(workspace.paths))
        if not ctx.unlinked:
            logger.info("[%s] No unlinked header anchors; skipping LLM match", workspace.session_id)
            return ctx, SuggestionRun(message="No unlinked header anchors to analyze")
        if not ctx.active_links:
            logger.info("[%s] No active Binomi patterns; skipping LLM match", workspace.session_id)
            return ctx, SuggestionRun(
                stats=SuggestionStats(total_analyzed=len(ctx.unlinked)),
                message="No active Binomio pattern available for matching",
            )
        return ctx, None

    def ask(self, ctx: MatchContext) -> str:
        task = LlmTask(
            name="llm-match",
            prompt=build_prompt(ctx, self.settings.min_confidence),
            system=SYSTEM_PROMPT,
            policy=self.policy,
        )
        return task.run(self.llm).unwrap()

    def finish(self, session_id: str, ctx: MatchContext, content: str) -> SuggestionRun:
        raw = parse_response(content)
        suggestions = validate_suggestions(
            raw,
            unlinked_ids={a.id for a in ctx.unlinked},
            active_pattern_ids={link.id for link in ctx.active_links},
            min_confidence=self.settings.min_confidence,
        )
        avg = sum(s.confidence for s in suggestions) / len(suggestions) if suggestions else 0.0
        run = SuggestionRun(
            run_id=str(uuid.uuid4()),
            timestamp=utc_now_iso(),
            suggestions=suggestions,
            stats=SuggestionStats(total_analyzed=len(ctx.unlinked), suggested=len(suggestions), avg_confidence=avg),
        )
        logger.info(
            "[%s] LLM match run %s: %d of %d raw suggestion(s) kept",
            session_id,
            run.run_id,
            len(suggestions),
            len(raw.suggestions),
        )
        return run

    def run(self, workspace: SessionWorkspace) -> SuggestionRun:
        ctx, skipped = self.prepare(workspace)
        if skipped is not None:
            return skipped
        run = self.finish(workspace.session_id, ctx, self.ask(ctx))
        json_store.save_suggestion_run(workspace.paths, run)
        return run

    @staticmethod
    def latest_run(workspace: SessionWorkspace) -> SuggestionRun:
        return json_store.load_suggestion_run(workspace.paths)
