"""Lightweight token counting heuristics."""

from __future__ import annotations

import math
from typing import Iterable

from fossil_router.domain.models import ChatMessage

CHARS_PER_TOKEN = 4


def count_tokens_approximate(text: str) -> int:
    """Approximate token count assuming roughly four characters per token."""

    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(messages: Iterable[ChatMessage]) -> int:
    return sum(count_tokens_approximate(message.content) for message in messages)
