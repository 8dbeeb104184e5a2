"""Static responses returned when no provider produced an answer."""

from __future__ import annotations

from typing import Dict

from fossil_router.domain.models import RawResponse

DEFAULT_FALLBACK = "LLM service unavailable."

FALLBACK_CONTENT: Dict[str, str] = {
    "semantic-tagging": (
        '{"semanticCategory":"general","confidence":0.5,"concepts":[],'
        '"sentiment":"neutral","priority":"low","impact":"low","stakeholders":[]}'
    ),
    "excerpt-generation": "Content summary unavailable.",
    "goal-decomposition": (
        "Unable to decompose goal. Please provide manual task breakdown."
    ),
    "content-generation": "Content generation unavailable. Please write manually.",
}


def fallback_response(purpose: str) -> RawResponse:
    """Deterministic response keyed by purpose, shaped like a provider reply."""

    content = FALLBACK_CONTENT.get(purpose, DEFAULT_FALLBACK)
    return {"choices": [{"message": {"content": content}}]}
