"""Derives routing signals from a pending request."""

from __future__ import annotations

from fossil_router.domain.models import CallIntelligence, CallRequest

COMPLEXITY_NORMALIZER = 1000.0

CONTEXT_PURPOSE_MARKERS = ("analysis", "insights", "recommendations")
CREATIVE_PURPOSE_MARKERS = ("generation", "creation", "writing")
URGENT_PURPOSE_MARKERS = ("real-time", "urgent")

LOCAL_QUALITY, LOCAL_COST_BENEFIT = 0.8, 0.9
CLOUD_QUALITY, CLOUD_COST_BENEFIT = 0.95, 0.6


def message_complexity(request: CallRequest) -> float:
    """Average message length over 1000 characters, capped at 1."""

    messages = request.messages
    total = sum(len(message.content) for message in messages)
    average = total / len(messages)
    return _clamp(average / COMPLEXITY_NORMALIZER)


def analyze_call_intelligence(
    request: CallRequest,
    *,
    complexity_threshold: float,
    local_available: bool,
) -> CallIntelligence:
    purpose = request.purpose
    context = request.context

    complexity = message_complexity(request)
    requires_context = context != "test" and _contains_any(
        purpose, CONTEXT_PURPOSE_MARKERS
    )
    is_creative = _contains_any(purpose, CREATIVE_PURPOSE_MARKERS)
    is_time_sensitive = (
        _contains_any(purpose, URGENT_PURPOSE_MARKERS) or context == "production"
    )
    can_use_local = (
        not requires_context
        and not is_time_sensitive
        and complexity < complexity_threshold
        and local_available
    )

    return CallIntelligence(
        complexity=complexity,
        requires_context=requires_context,
        is_creative=is_creative,
        is_time_sensitive=is_time_sensitive,
        can_use_local=can_use_local,
        estimated_quality=LOCAL_QUALITY if can_use_local else CLOUD_QUALITY,
        cost_benefit=LOCAL_COST_BENEFIT if can_use_local else CLOUD_COST_BENEFIT,
    )


def _contains_any(value: str, markers: tuple[str, ...]) -> bool:
    return any(marker in value for marker in markers)


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(value, maximum))
