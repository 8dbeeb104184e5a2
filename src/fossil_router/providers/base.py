"""Provider descriptors and shared adapter behavior."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from fossil_router.domain.models import CallRequest, ChatMessage, RawResponse
from fossil_router.utils.cost_calculator import estimate_cost
from fossil_router.utils.token_counter import estimate_message_tokens

CallFn = Callable[[CallRequest], Awaitable[RawResponse]]
AvailabilityFn = Callable[[], Awaitable[bool]]
TokenEstimator = Callable[[Sequence[ChatMessage]], int]
CostEstimator = Callable[[int, str], float]


class ProviderKind(str, Enum):
    """Tag distinguishing descriptor variants for routing."""

    CLOUD = "cloud"
    LOCAL = "local"
    CUSTOM = "custom"


async def always_available() -> bool:
    return True


def zero_cost(tokens: int, model: str) -> float:
    return 0.0


@dataclass(frozen=True)
class ProviderDescriptor:
    """Uniform capability set every backend exposes to the orchestrator."""

    name: str
    call: CallFn
    kind: ProviderKind = ProviderKind.CUSTOM
    is_available: AvailabilityFn = field(default=always_available)
    estimate_tokens: TokenEstimator = field(default=estimate_message_tokens)
    estimate_cost: CostEstimator = field(default=estimate_cost)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("provider name must be provided")


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration values shared by HTTP provider adapters."""

    api_key: Optional[str]
    base_url: str
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must be provided")
        if self.timeout <= 0:
            raise ValueError("timeout must be greater than zero")


class BaseProvider(ABC):
    """Template-method base: subclasses implement the transport, this class logs."""

    NAME = "custom"
    KIND = ProviderKind.CUSTOM

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(
            f"{__name__}.{self.__class__.__name__}"
        )

    async def complete(self, request: CallRequest) -> RawResponse:
        """Single invocation; retries belong to the orchestrator's executor."""

        self.log_request(request)
        started = time.perf_counter()
        response = await self._make_api_call(request)
        self.log_response(request, time.perf_counter() - started)
        return response

    @abstractmethod
    async def _make_api_call(self, request: CallRequest) -> RawResponse:
        """Provider-specific HTTP/process interaction implemented by subclasses."""

    async def is_available(self) -> bool:
        return True

    def estimate_tokens(self, messages: Sequence[ChatMessage]) -> int:
        return estimate_message_tokens(messages)

    def estimate_cost(self, tokens: int, model: str) -> float:
        return estimate_cost(tokens, model)

    def descriptor(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self.NAME,
            kind=self.KIND,
            call=self.complete,
            is_available=self.is_available,
            estimate_tokens=self.estimate_tokens,
            estimate_cost=self.estimate_cost,
        )

    def log_request(self, request: CallRequest) -> None:
        self.logger.debug(
            "provider_request",
            extra={
                "provider": self.NAME,
                "model": request.model,
                "prompt_tokens": self.estimate_tokens(request.messages),
            },
        )

    def log_response(self, request: CallRequest, latency: float) -> None:
        self.logger.debug(
            "provider_response",
            extra={"provider": self.NAME, "model": request.model, "latency": latency},
        )
