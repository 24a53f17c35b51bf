"""
Turning raw model output into an AnalysisResult.

Two tiers: strict JSON parsing first, then a tolerant regex extraction for
responses that wrap or truncate the JSON. Each tier either returns a full
result or reports failure; neither invents a score or explanation.
"""

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from issue_watcher.constants import (
    EXPLANATION_MAX_CHARS,
    MAX_EVIDENCE_ITEMS,
    MAX_MATCHED_TERMS,
)
from issue_watcher.exceptions import MalformedAnalysisError

_FENCE_OPEN_RE = re.compile(r"^\s*```(?:json)?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```\s*$")
_TERMINAL_PUNCTUATION_RE = re.compile(r"[.!?]$")
_SCORE_RE = re.compile(r'"relevanceScore"\s*:\s*(\d+)')
_EXPLANATION_RE = re.compile(r'"explanation"\s*:\s*"([^"]{0,%d})"' % EXPLANATION_MAX_CHARS)


@dataclass
class AnalysisResult:
    relevance_score: int
    explanation: str
    matched_terms: List[str] = field(default_factory=list)
    evidence: List[str] = field(default_factory=list)

    def apply_to(self, issue: dict) -> dict:
        """Return a copy of an embedded issue carrying this result."""
        updated = dict(issue)
        updated["relevance_score"] = self.relevance_score
        updated["explanation"] = self.explanation
        updated["matched_terms"] = list(self.matched_terms)
        updated["evidence"] = list(self.evidence)
        return updated


def strip_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text)).strip()


def end_with_period(text: str) -> str:
    """Ensure ``text`` ends in terminal punctuation. Already-terminated text is unchanged."""
    trimmed = text.strip()
    if not trimmed or _TERMINAL_PUNCTUATION_RE.search(trimmed):
        return trimmed
    return f"{trimmed}."


def enforce_non_multiple_of_five(score: float, salt: int) -> int:
    """
    Clamp a score to 0..100 and nudge multiples of 5 off the grid.

    0 and 100 stay as they are. Other multiples of 5 move up by one for an
    even ``salt`` and down by one for an odd one. The result is a fixed
    point: applying it again returns the same value.
    """
    if score is None or not math.isfinite(score):
        return 0
    clamped = max(0, min(100, int(round(score))))
    if clamped in (0, 100) or clamped % 5 != 0:
        return clamped
    if salt % 2 == 0:
        return min(100, clamped + 1)
    return max(0, clamped - 1)


def _normalize_explanation(raw: Any) -> str:
    text = str(raw).strip()
    normalized = end_with_period(text[:EXPLANATION_MAX_CHARS])
    if len(normalized) > EXPLANATION_MAX_CHARS:
        # leave room for the appended period
        normalized = end_with_period(text[: EXPLANATION_MAX_CHARS - 1])
    return normalized


def _string_list(value: Any, limit: int) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None][:limit]


def parse_strict(text: str, salt: int) -> Optional[AnalysisResult]:
    """First tier: the whole (unfenced) output must be a JSON object."""
    try:
        data = json.loads(strip_fences(text))
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None

    try:
        raw_score = float(data["relevanceScore"])
    except (KeyError, TypeError, ValueError):
        return None
    explanation = data.get("explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        return None

    return AnalysisResult(
        relevance_score=enforce_non_multiple_of_five(raw_score, salt),
        explanation=_normalize_explanation(explanation),
        matched_terms=_string_list(data.get("matchedTerms"), MAX_MATCHED_TERMS),
        evidence=_string_list(data.get("evidence"), MAX_EVIDENCE_ITEMS),
    )


def parse_tolerant(text: str, salt: int) -> Optional[AnalysisResult]:
    """Second tier: pull score and explanation out of malformed JSON."""
    score_match = _SCORE_RE.search(text)
    explanation_match = _EXPLANATION_RE.search(text)
    if not score_match or not explanation_match or not explanation_match.group(1).strip():
        return None
    return AnalysisResult(
        relevance_score=enforce_non_multiple_of_five(int(score_match.group(1)), salt),
        explanation=_normalize_explanation(explanation_match.group(1)),
    )


def parse_analysis(text: str, salt: int) -> AnalysisResult:
    """
    Parse model output for the issue numbered ``salt``.

    Raises:
        MalformedAnalysisError: when neither tier yields a result
    """
    if not text or not text.strip():
        raise MalformedAnalysisError("Empty LLM response")
    result = parse_strict(text, salt) or parse_tolerant(text, salt)
    if result is None:
        raise MalformedAnalysisError(f"Unparseable LLM response: {text[:120]!r}")
    return result


__all__ = [
    "AnalysisResult",
    "strip_fences",
    "end_with_period",
    "enforce_non_multiple_of_five",
    "parse_strict",
    "parse_tolerant",
    "parse_analysis",
]
