"""Domain value objects representing LLM call orchestration concepts."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

RawResponse = Dict[str, Any]


class MessageRole(str, Enum):
    """Roles accepted in chat-style message lists."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class RoutingPreference(str, Enum):
    """Caller or config override controlling provider selection bias."""

    AUTO = "auto"
    LOCAL = "local"
    CLOUD = "cloud"


class ChatMessage(BaseModel):
    """Single role-tagged chat message."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    role: MessageRole
    content: str


class CallRequest(BaseModel):
    """Immutable request handed to the orchestrator by callers."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    model: str
    api_key: Optional[str] = None
    messages: Tuple[ChatMessage, ...]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, alias="max_tokens")
    context: str = "unknown"
    purpose: str = "general"
    value_score: float = Field(default=0.5, ge=0, le=1)
    routing_preference: Optional[RoutingPreference] = None

    @field_validator("messages")
    @classmethod
    def validate_messages(
        cls, value: Sequence[ChatMessage]
    ) -> Tuple[ChatMessage, ...]:
        if not value:
            raise ValueError("messages must contain at least one message")
        return tuple(value)

    @model_validator(mode="after")
    def validate_model(self) -> "CallRequest":
        if not self.model or not self.model.strip():
            raise ValueError("model must be a non-empty string")
        return self

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CallRequest":
        return cls.model_validate(dict(payload))

    def with_messages(self, messages: Sequence[ChatMessage]) -> "CallRequest":
        return self.model_copy(update={"messages": tuple(messages)})

    def to_payload(self) -> Dict[str, Any]:
        """Wire representation with the caller-facing key names."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CallIntelligence(BaseModel):
    """Routing signal derived from a pending request; never persisted."""

    model_config = ConfigDict(frozen=True)

    complexity: float = Field(..., ge=0, le=1)
    requires_context: bool
    is_creative: bool
    is_time_sensitive: bool
    can_use_local: bool
    estimated_quality: float
    cost_benefit: float


def response_content(response: Mapping[str, Any]) -> str:
    """Return the first choice's message content, or an empty string."""

    try:
        return str(response["choices"][0]["message"]["content"] or "")
    except (KeyError, IndexError, TypeError):
        return ""


def has_response_shape(response: Any) -> bool:
    if not isinstance(response, Mapping):
        return False
    choices = response.get("choices")
    if not isinstance(choices, (list, tuple)) or not choices:
        return False
    first = choices[0]
    if not isinstance(first, Mapping):
        return False
    message = first.get("message")
    return isinstance(message, Mapping) and isinstance(message.get("content"), str)
