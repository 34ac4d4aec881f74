"""Domain records shared by the stores, services and HTTP layer.

Records persist with the camelCase keys used by the session files
(``startIndex``, ``fromObjectId`` ...); Python code uses snake_case
attributes. All records are frozen: updates go through ``model_copy`` so a
list handed out by a store can never be mutated behind its back.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

BoxType = Literal["given", "when", "then"]
Location = Literal["header", "content"]
LinkStatus = Literal["active", "disabled"]
SuggestionStatus = Literal["pending", "accepted", "rejected"]

BOX_TYPES = ("given", "when", "then")
TERMINAL_SUGGESTION_STATES = frozenset({"accepted", "rejected"})


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialize with the on-disk key names; unset optional fields are omitted."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class BoxRef(CamelModel):
    """A Gherkin step box inside a test case."""

    test_case_id: str
    box_type: BoxType


class Anchor(CamelModel):
    id: str
    session_id: str
    test_case_id: str
    box_type: BoxType
    box_number: int = Field(..., ge=1)
    location: Location
    text: str
    start_index: int = Field(..., ge=0)
    end_index: int
    created_at: str = Field(default_factory=utc_now_iso)

    @model_validator(mode="after")
    def _check_range(self) -> "Anchor":
        if self.end_index <= self.start_index:
            raise ValueError(f"endIndex {self.end_index} must be greater than startIndex {self.start_index}")
        if len(self.text) != self.end_index - self.start_index:
            raise ValueError(
                f"text length {len(self.text)} does not match range [{self.start_index}, {self.end_index})"
            )
        return self

    @property
    def box(self) -> BoxRef:
        return BoxRef(test_case_id=self.test_case_id, box_type=self.box_type)

    @property
    def partition(self) -> tuple:
        return (self.test_case_id, self.box_type, self.location)


class Point(CamelModel):
    x: float = Field(..., ge=0.0, le=1.0)
    y: float = Field(..., ge=0.0, le=1.0)


class LlmMeta(CamelModel):
    source_suggestion_id: str
    source_pattern_binomio_id: str
    confidence: float
    reasoning: str = ""
    created_at: str = Field(default_factory=utc_now_iso)


class Binomio(CamelModel):
    id: str
    session_id: Optional[str] = None
    test_case_id: str
    from_object_id: str
    to_object_id: str
    from_point: Optional[Point] = None
    to_point: Optional[Point] = None
    created_at: str = Field(default_factory=utc_now_iso)
    # records written before status tracking existed are active
    status: LinkStatus = "active"
    disabled_at: Optional[str] = None
    disabled_reason: Optional[str] = None
    enabled_at: Optional[str] = None
    enabled_reason: Optional[str] = None
    llm_meta: Optional[LlmMeta] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def touches(self, anchor_id: str) -> bool:
        return anchor_id in (self.from_object_id, self.to_object_id)


class Suggestion(CamelModel):
    id: str
    from_object_id: str
    suggested_pattern_binomio_id: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    status: SuggestionStatus = "pending"
    created_at: str = Field(default_factory=utc_now_iso)
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SUGGESTION_STATES


class SuggestionStats(CamelModel):
    total_analyzed: int = 0
    suggested: int = 0
    avg_confidence: float = 0.0


class SuggestionRun(CamelModel):
    run_id: Optional[str] = None
    timestamp: Optional[str] = None
    suggestions: List[Suggestion] = Field(default_factory=list)
    stats: SuggestionStats = Field(default_factory=SuggestionStats)
    message: Optional[str] = None


class KnowledgeDocument(CamelModel):
    version: int = 1
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    text: str = ""


class ChangeEvent(CamelModel):
    """Notification emitted after a store mutation has been applied."""

    type: str
    session_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now_iso)
