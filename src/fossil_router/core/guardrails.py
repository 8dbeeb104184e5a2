"""Pre-dispatch checks: value threshold, cost ceiling and token ceiling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from fossil_router.domain.models import CallRequest, ChatMessage, MessageRole
from fossil_router.utils.token_counter import (
    CHARS_PER_TOKEN,
    count_tokens_approximate,
    estimate_message_tokens,
)

ELLIPSIS = "..."

TokenEstimator = Callable[[Sequence[ChatMessage]], int]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardrailOutcome:
    """Result of one guardrail: proceed or skip, plus the messages to send."""

    proceed: bool
    reason: Optional[str] = None
    messages: Tuple[ChatMessage, ...] = ()
    truncated: bool = False

    @property
    def skipped(self) -> bool:
        return not self.proceed


def check_value(request: CallRequest, min_value_score: float) -> GuardrailOutcome:
    if request.value_score < min_value_score:
        return GuardrailOutcome(
            proceed=False,
            reason=(
                f"value score {request.value_score} below minimum {min_value_score}"
            ),
            messages=request.messages,
        )
    return GuardrailOutcome(proceed=True, messages=request.messages)


def check_cost(estimated_cost: float, max_cost_per_call: float) -> GuardrailOutcome:
    if estimated_cost > max_cost_per_call:
        return GuardrailOutcome(
            proceed=False,
            reason=(
                f"estimated cost ${estimated_cost:.4f} exceeds limit "
                f"${max_cost_per_call:.4f}"
            ),
        )
    return GuardrailOutcome(proceed=True)


def check_tokens(
    messages: Sequence[ChatMessage],
    max_tokens: int,
    *,
    estimate_tokens: TokenEstimator = estimate_message_tokens,
) -> GuardrailOutcome:
    """Always proceeds; truncates ``messages`` when they exceed ``max_tokens``."""

    estimated = estimate_tokens(messages)
    if estimated <= max_tokens:
        return GuardrailOutcome(proceed=True, messages=tuple(messages))
    truncated = truncate_messages(messages, max_tokens)
    return GuardrailOutcome(
        proceed=True,
        reason=f"estimated {estimated} tokens exceeds limit {max_tokens}; truncated",
        messages=truncated,
        truncated=True,
    )


def truncate_messages(
    messages: Sequence[ChatMessage], max_tokens: int
) -> Tuple[ChatMessage, ...]:
    """Fit ``messages`` under ``max_tokens`` keeping every system message verbatim.

    Non-system messages are kept in order while they fit. The first one that
    does not fit is cut to the remaining budget and suffixed with ``...``;
    every non-system message after it is dropped.
    """

    system_tokens = sum(
        count_tokens_approximate(message.content)
        for message in messages
        if message.role == MessageRole.SYSTEM.value
    )
    remaining = max_tokens - system_tokens
    if remaining < 0:
        logger.warning(
            "system_messages_exceed_token_limit",
            extra={"system_tokens": system_tokens, "max_tokens": max_tokens},
        )

    result: List[ChatMessage] = []
    overflowed = False
    for message in messages:
        if message.role == MessageRole.SYSTEM.value:
            result.append(message)
            continue
        if overflowed:
            continue
        tokens = count_tokens_approximate(message.content)
        if tokens <= remaining:
            result.append(message)
            remaining -= tokens
            continue
        overflowed = True
        keep_chars = remaining * CHARS_PER_TOKEN - len(ELLIPSIS)
        if keep_chars > 0:
            result.append(
                message.model_copy(
                    update={"content": message.content[:keep_chars] + ELLIPSIS}
                )
            )
            remaining = 0
    return tuple(result)
