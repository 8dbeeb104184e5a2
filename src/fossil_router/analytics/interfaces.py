"""Analytics contracts that separate persistence from aggregation logic."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CallDisposition(str, Enum):
    """How a recorded attempt ended."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class UsageMetric(BaseModel):
    """Immutable record of one provider attempt outcome."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    timestamp: datetime = Field(default_factory=utc_now)
    model: str
    provider: str
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0)
    duration: float = Field(default=0.0, ge=0)
    success: bool
    error: Optional[str] = None
    context: str = "unknown"
    purpose: str = "general"
    value_score: float = 0.5
    call_id: str
    input_hash: str
    session_id: Optional[str] = None
    fossil_id: Optional[str] = None
    disposition: CallDisposition = CallDisposition.SUCCESS


class PurposeStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    purpose: str
    calls: int
    cost: float


class ProviderStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    calls: int
    cost: float


class DailyCost(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    cost: float
    calls: int


class UsageAnalytics(BaseModel):
    """Aggregated usage metrics across every recorded attempt."""

    model_config = ConfigDict(frozen=True)

    total_calls: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    success_rate: float = 0.0
    average_value_score: float = 0.0
    top_purposes: List[PurposeStat] = Field(default_factory=list)
    provider_breakdown: List[ProviderStat] = Field(default_factory=list)
    cost_by_day: List[DailyCost] = Field(default_factory=list)


class IUsageRepository(Protocol):
    """Persistence contract for the durable usage log."""

    def load(self) -> List[UsageMetric]:
        """Return every metric previously persisted, oldest first."""

    async def save(self, metrics: Sequence[UsageMetric]) -> None:
        """Persist the full ordered metric list."""


class IAnalyticsAggregator(Protocol):
    """Business-logic layer that derives analytics from recorded metrics."""

    def summarize(self, metrics: Sequence[UsageMetric]) -> UsageAnalytics:
        """Reduce the supplied metrics into an analytics summary."""
