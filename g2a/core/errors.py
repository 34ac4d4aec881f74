from __future__ import annotations

from typing import Optional


class G2AError(Exception):
    """Base class for errors raised by the anchor and linkage engine."""


class OverlapError(G2AError):
    def __init__(self, message: str, conflicting_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.conflicting_id = conflicting_id


class ValidationError(G2AError):
    """Input rejected before any state changed (empty range, self link, bad status...)."""


class NotFoundError(G2AError):
    pass


class EditBlockedError(G2AError):
    """A buffer edit would land inside an anchor that is not under an edit session."""

    def __init__(self, message: str, anchor_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.anchor_id = anchor_id


class SuggestionParseError(G2AError):
    """The LLM answered, but not with the suggestions + stats JSON shape."""


class AmalgamationFailure(G2AError):
    """Merging accepted reasoning into the context document failed. Links are kept."""


class StaleRunError(G2AError):
    """A confirmation referenced a suggestion run that has since been replaced."""


class LlmError(G2AError):
    """Transport or backend failure while talking to the LLM."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts
