from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

PARTIAL_MATCH_THRESHOLD = 0.95


@dataclass(frozen=True)
class TextMatch:
    start_index: int
    end_index: int
    text: str
    similarity: float


def _words(text: str) -> List[str]:
    return [w for w in re.sub(r"[^\w\s]", " ", (text or "").lower()).split() if len(w) > 2]


def text_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the significant (3+ letter) words of two texts."""
    words_a, words_b = set(_words(first)), set(_words(second))
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def find_partial_match(statement: str, needle: str) -> Optional[TextMatch]:
    """Locate ``needle`` inside ``statement``.

    A case-insensitive literal hit wins. Otherwise word windows of the
    statement are compared with the needle and the best window scoring above
    the partial-match threshold is returned.
    """
    if not statement or not needle or not needle.strip():
        return None

    exact = re.search(re.escape(needle), statement, re.IGNORECASE)
    if exact:
        return TextMatch(exact.start(), exact.end(), exact.group(0), 1.0)

    statement_words = _words(statement)
    needle_words = _words(needle)
    if not needle_words:
        return None

    target = " ".join(needle_words)
    min_len = min(3, len(needle_words))
    best: Optional[TextMatch] = None
    for i in range(0, len(statement_words) - min_len + 1):
        for length in range(len(needle_words), min_len - 1, -1):
            if i + length > len(statement_words):
                continue
            window = statement_words[i:i + length]
            score = text_similarity(" ".join(window), target)
            if score <= PARTIAL_MATCH_THRESHOLD or (best and score <= best.similarity):
                continue
            pattern = r"\b" + r"[\W_]+".join(re.escape(w) for w in window) + r"\b"
            found = re.search(pattern, statement, re.IGNORECASE)
            if found:
                best = TextMatch(found.start(), found.end(), found.group(0), score)
    return best
