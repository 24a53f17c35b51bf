"""Prompt templates for issue relevance scoring."""

from typing import Any, Dict, List

from issue_watcher.constants import ISSUE_BODY_PROMPT_CHARS

SYSTEM_PROMPT = (
    "You are a helpful assistant capable of complex reasoning. "
    "Always think step-by-step before answering."
)

USER_PROMPT_TEMPLATE = """You are ranking GitHub issues for relevance to the keyword: "{keyword}".

Rules:
- Consider TITLE (0.45), BODY (0.35), LABELS (0.20).
- Accept synonyms/aliases of the keyword.
- Prefer concrete evidence (error messages, API names).
- EXPLANATION: 1-2 sentences (220 chars), mention where match was found.
- CRITICAL: You MUST respond with valid JSON only, no markdown formatting, no explanations outside the JSON.

Respond ONLY with this exact JSON format:
{{"relevanceScore": <0-100 integer not a multiple of 5>, "explanation": "<1-2 sentences, 80-220 chars>", "matchedTerms": ["..."], "evidence": ["<short excerpt or reason>"]}}

Issue:
TITLE: {title}
LABELS: {labels}
BODY:
{body}"""


def build_messages(keyword: str, issue: Dict[str, Any]) -> List[Dict[str, str]]:
    """Chat messages asking the model to score ``issue`` against ``keyword``."""
    labels = ", ".join(issue.get("labels") or []) or "none"
    body = (issue.get("body") or "")[:ISSUE_BODY_PROMPT_CHARS]
    user_prompt = USER_PROMPT_TEMPLATE.format(
        keyword=keyword,
        title=issue.get("title", ""),
        labels=labels,
        body=body,
    ).strip()
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]
