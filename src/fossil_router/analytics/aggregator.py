"""Pure business-logic helpers for usage analytics aggregation."""

from __future__ import annotations

import math
from datetime import timezone
from typing import Dict, List, Sequence

from fossil_router.analytics.interfaces import (
    DailyCost,
    IAnalyticsAggregator,
    ProviderStat,
    PurposeStat,
    UsageAnalytics,
    UsageMetric,
)

TOP_PURPOSES_LIMIT = 10


class AnalyticsAggregator(IAnalyticsAggregator):
    """Performs read-only, order-independent reductions over usage metrics."""

    def summarize(self, metrics: Sequence[UsageMetric]) -> UsageAnalytics:
        total_calls = len(metrics)
        if not total_calls:
            return UsageAnalytics()
        successes = sum(1 for metric in metrics if metric.success)
        return UsageAnalytics(
            total_calls=total_calls,
            total_tokens=sum(metric.total_tokens for metric in metrics),
            total_cost=self.calculate_total_cost(metrics),
            success_rate=successes / total_calls,
            average_value_score=math.fsum(m.value_score for m in metrics)
            / total_calls,
            top_purposes=self.top_purposes(metrics),
            provider_breakdown=self.provider_breakdown(metrics),
            cost_by_day=self.cost_by_day(metrics),
        )

    def calculate_total_cost(self, metrics: Sequence[UsageMetric]) -> float:
        return math.fsum(metric.cost for metric in metrics)

    def group_by(
        self, metrics: Sequence[UsageMetric], field: str
    ) -> Dict[str, List[UsageMetric]]:
        grouped: Dict[str, List[UsageMetric]] = {}
        for metric in metrics:
            grouped.setdefault(str(getattr(metric, field)), []).append(metric)
        return grouped

    def top_purposes(
        self, metrics: Sequence[UsageMetric], limit: int = TOP_PURPOSES_LIMIT
    ) -> List[PurposeStat]:
        stats = [
            PurposeStat(
                purpose=purpose,
                calls=len(group),
                cost=self.calculate_total_cost(group),
            )
            for purpose, group in self.group_by(metrics, "purpose").items()
        ]
        stats.sort(key=lambda stat: (-stat.cost, stat.purpose))
        return stats[:limit]

    def provider_breakdown(self, metrics: Sequence[UsageMetric]) -> List[ProviderStat]:
        grouped = self.group_by(metrics, "provider")
        return [
            ProviderStat(
                provider=provider,
                calls=len(grouped[provider]),
                cost=self.calculate_total_cost(grouped[provider]),
            )
            for provider in sorted(grouped)
        ]

    def cost_by_day(self, metrics: Sequence[UsageMetric]) -> List[DailyCost]:
        days: Dict[str, List[UsageMetric]] = {}
        for metric in metrics:
            days.setdefault(self.day_bucket(metric), []).append(metric)
        return [
            DailyCost(
                date=day,
                cost=self.calculate_total_cost(days[day]),
                calls=len(days[day]),
            )
            for day in sorted(days)
        ]

    @staticmethod
    def day_bucket(metric: UsageMetric) -> str:
        timestamp = metric.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(timezone.utc).date().isoformat()
