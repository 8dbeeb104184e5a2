"""Usage tracking facade that coordinates the in-memory log, repository, and aggregator."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Tuple

from fossil_router.analytics.aggregator import AnalyticsAggregator
from fossil_router.analytics.interfaces import (
    IAnalyticsAggregator,
    IUsageRepository,
    UsageAnalytics,
    UsageMetric,
)
from fossil_router.domain.exceptions import PersistenceError


class UsageTracker:
    """Append-only usage log; the in-memory list is authoritative."""

    def __init__(
        self,
        repository: Optional[IUsageRepository] = None,
        aggregator: IAnalyticsAggregator | None = None,
        *,
        memory_only: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._aggregator = aggregator or AnalyticsAggregator()
        self._memory_only = memory_only or repository is None
        self._logger = logger or logging.getLogger(__name__)
        self._metrics: List[UsageMetric] = []
        if not self._memory_only and self._repository is not None:
            self._metrics.extend(self._repository.load())

    @property
    def metrics(self) -> Tuple[UsageMetric, ...]:
        return tuple(self._metrics)

    @property
    def memory_only(self) -> bool:
        return self._memory_only

    async def record(self, metric: UsageMetric) -> None:
        """Append the metric, then mirror the whole log to durable storage."""

        self._metrics.append(metric)
        self._logger.debug(
            "usage_recorded",
            extra={
                "call_id": metric.call_id,
                "provider": metric.provider,
                "success": metric.success,
                "cost": metric.cost,
            },
        )
        await self.flush()

    async def flush(self) -> bool:
        """Persist the current log; returns False when the write failed."""

        if self._memory_only or self._repository is None:
            return True
        try:
            await self._repository.save(self._metrics)
        except PersistenceError as exc:
            self._logger.warning("usage_log_write_failed", extra={"error": str(exc)})
            return False
        return True

    def get_usage_analytics(self) -> UsageAnalytics:
        return self._aggregator.summarize(self._metrics)

    def fossil_count(self) -> int:
        return sum(1 for metric in self._metrics if metric.fossil_id)

    def to_dataframe(self, metrics: Sequence[UsageMetric] | None = None) -> Any:
        """Export recorded metrics to a pandas DataFrame."""

        try:
            import pandas as pd  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("pandas is required for dataframe export") from exc

        rows = [
            metric.model_dump(by_alias=True)
            for metric in (metrics if metrics is not None else self._metrics)
        ]
        return pd.DataFrame(rows)
