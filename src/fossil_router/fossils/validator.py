"""Heuristic input checks that enrich a fossil's validation and quality blocks.

Nothing here blocks a call: the findings are advisory and only end up in the
audit trail.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Sequence, Tuple

from fossil_router.utils.token_counter import count_tokens_approximate

from .models import FossilQuality

MAX_MESSAGE_LENGTH = 100_000
MAX_TOTAL_TOKENS = 32_000
HIGH_TOKEN_RATIO = 0.8
MIN_CONTENT_LENGTH = 10
LONG_INPUT_CHARS = 5_000
MAX_USER_MESSAGES = 3

EXPENSIVE_MODELS = frozenset({"gpt-4", "gpt-4-turbo", "claude-3"})
CREDENTIAL_MARKERS = ("password", "secret", "token")

SENSITIVE_PATTERNS = (
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # email
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
    re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),  # card number
    re.compile(r"\b[A-Za-z0-9]{32,}\b"),  # key or token
)

_SPECIFIC_WORDS = re.compile(
    r"\b(how|what|when|where|why|which|who|specific|exactly|precisely|concrete|detailed)\b",
    re.IGNORECASE,
)
_VAGUE_WORDS = re.compile(
    r"\b(something|anything|everything|nothing|maybe|perhaps|sort of|kind of|basically|essentially)\b",
    re.IGNORECASE,
)
_TECHNICAL_TERMS = re.compile(
    r"\b(API|function|method|class|interface|type|schema|validation|error|success|config|option)\b",
    re.IGNORECASE,
)
_EXAMPLE_WORDS = re.compile(r"\b(example|instance|case|scenario|sample)\b", re.IGNORECASE)
_ACTION_WORDS = re.compile(
    r"\b(create|build|implement|fix|optimize|analyze|generate|write|test|validate)\b",
    re.IGNORECASE,
)
_NUMBERS = re.compile(r"\d+")
_SENTENCE_BREAK = re.compile(r"[.!?]+")


@dataclass(frozen=True)
class InputReport:
    """Advisory findings for one request payload."""

    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    security_issues: Tuple[str, ...] = ()
    performance_issues: Tuple[str, ...] = ()
    quality: FossilQuality = field(default_factory=FossilQuality)


def _messages(payload: Mapping[str, Any]) -> List[Tuple[str, str]]:
    raw = payload.get("messages") or []
    messages: List[Tuple[str, str]] = []
    for item in raw:
        if isinstance(item, Mapping):
            messages.append((str(item.get("role", "")), str(item.get("content", ""))))
    return messages


def _ratio(count: int, words: int) -> float:
    return count / max(1, words)


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


class InputValidator:
    """Content, performance and security heuristics over a chat request."""

    def __init__(
        self,
        *,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        max_total_tokens: int = MAX_TOTAL_TOKENS,
        min_content_length: int = MIN_CONTENT_LENGTH,
    ) -> None:
        self.max_message_length = max_message_length
        self.max_total_tokens = max_total_tokens
        self.min_content_length = min_content_length

    def inspect(self, payload: Mapping[str, Any]) -> InputReport:
        messages = _messages(payload)
        model = str(payload.get("model", ""))

        errors: List[str] = []
        warnings: List[str] = []
        self.check_content(messages, errors, warnings)
        performance = self.check_performance(messages, model, errors)
        security = self.check_security(messages)
        quality = self.analyze_quality(messages)

        return InputReport(
            errors=tuple(errors),
            warnings=tuple(warnings),
            recommendations=tuple(self.recommend(messages, quality)),
            security_issues=tuple(security),
            performance_issues=tuple(performance),
            quality=quality,
        )

    def check_content(
        self,
        messages: Sequence[Tuple[str, str]],
        errors: List[str],
        warnings: List[str],
    ) -> None:
        for index, (_, content) in enumerate(messages, start=1):
            length = len(content)
            if length < self.min_content_length:
                warnings.append(
                    f"Message {index} is very short ({length} chars) - consider adding more detail"
                )
            if length > self.max_message_length:
                errors.append(
                    f"Message {index} is too long ({length} chars) - max is {self.max_message_length}"
                )
            if "undefined" in content or "null" in content:
                warnings.append(
                    f"Message {index} contains undefined/null values - this may confuse the LLM"
                )
            if "Error:" in content or "Exception:" in content:
                warnings.append(
                    f"Message {index} contains error messages - consider providing context instead"
                )

        roles = [role for role, _ in messages]
        system_count = roles.count("system")
        if system_count == 0:
            warnings.append("No system message found - consider adding one to guide the LLM")
        elif system_count > 1:
            warnings.append("Multiple system messages found - consider consolidating into one")
        if "user" not in roles:
            errors.append("No user message found - LLM needs a user request to respond to")

    def check_performance(
        self,
        messages: Sequence[Tuple[str, str]],
        model: str,
        errors: List[str],
    ) -> List[str]:
        issues: List[str] = []
        tokens = sum(count_tokens_approximate(content) for _, content in messages)
        if tokens > self.max_total_tokens:
            errors.append(
                f"Estimated tokens ({tokens}) exceed limit ({self.max_total_tokens})"
            )
        elif tokens > self.max_total_tokens * HIGH_TOKEN_RATIO:
            issues.append(f"High token usage ({tokens}) - consider shortening input")
        if model in EXPENSIVE_MODELS:
            issues.append(
                f"Using expensive model ({model}) - consider gpt-3.5-turbo for cost optimization"
            )
        return issues

    @staticmethod
    def check_security(messages: Sequence[Tuple[str, str]]) -> List[str]:
        text = " ".join(content for _, content in messages)
        issues: List[str] = []
        if any(pattern.search(text) for pattern in SENSITIVE_PATTERNS):
            issues.append("Potential sensitive data detected - review before sending to LLM")
        if any(marker in text for marker in CREDENTIAL_MARKERS):
            issues.append(
                "Potential credentials detected - ensure no real secrets are included"
            )
        return issues

    @staticmethod
    def analyze_quality(messages: Sequence[Tuple[str, str]]) -> FossilQuality:
        """Readability, clarity, specificity and completeness of user messages."""

        user_contents = [content for role, content in messages if role == "user"]
        readability = clarity = specificity = completeness = 0.0
        for content in user_contents:
            words = len(content.split(" "))
            sentences = [s for s in _SENTENCE_BREAK.split(content) if s.strip()]
            if sentences:
                average = sum(len(s.split(" ")) for s in sentences) / len(sentences)
                readability += min(1.0, average / 20)
            specific = len(_SPECIFIC_WORDS.findall(content))
            vague = len(_VAGUE_WORDS.findall(content))
            clarity += max(0.0, _ratio(specific - vague, words))
            specificity += _ratio(
                len(_TECHNICAL_TERMS.findall(content))
                + len(_NUMBERS.findall(content))
                + len(_EXAMPLE_WORDS.findall(content)),
                words,
            )
            completeness += _ratio(
                content.count("?") + len(_ACTION_WORDS.findall(content)), words
            )

        count = max(1, len(user_contents))
        readability = _clamp(readability / count)
        clarity = _clamp(clarity / count)
        specificity = _clamp(specificity / count)
        completeness = _clamp(completeness / count)
        return FossilQuality(
            overall=(readability + clarity + specificity + completeness) / 4,
            clarity=clarity,
            specificity=specificity,
            completeness=completeness,
        )

    @staticmethod
    def recommend(
        messages: Sequence[Tuple[str, str]], quality: FossilQuality
    ) -> List[str]:
        user_count = sum(1 for role, _ in messages if role == "user")
        if user_count == 0:
            return ["Add a user message to specify what you want the LLM to do"]

        recommendations: List[str] = []
        if quality.clarity < 0.5:
            recommendations.append(
                'Use more specific language and avoid vague terms like "something" or "maybe"'
            )
        if quality.specificity < 0.4:
            recommendations.append(
                "Include specific technical terms, numbers, or examples to make your request more precise"
            )
        if quality.completeness < 0.5:
            recommendations.append(
                "Consider adding specific questions or action words to clarify what you want"
            )
        if user_count > MAX_USER_MESSAGES:
            recommendations.append(
                "Consider consolidating multiple messages into a single, comprehensive request"
            )

        text = " ".join(content for _, content in messages)
        if "TODO" in text or "FIXME" in text:
            recommendations.append(
                "Remove TODO/FIXME comments from LLM input - they can confuse the model"
            )
        if len(text) > LONG_INPUT_CHARS:
            recommendations.append(
                "Consider shortening your input - very long prompts can reduce response quality"
            )
        return recommendations
