"""Quality and trend analysis over stored fossils."""

from __future__ import annotations

from collections import Counter
from typing import Dict, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .models import FossilRecord

TREND_TOLERANCE = 0.1
COMMON_ISSUES_LIMIT = 10


class CommonIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    issue: str
    frequency: int
    impact: str


class QualitySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_fossils: int = 0
    average_quality: float = 0.0
    distribution: Dict[str, int] = Field(default_factory=dict)
    common_issues: List[CommonIssue] = Field(default_factory=list)
    quality_trend: str = "stable"
    error_rate_trend: str = "stable"


def quality_band(score: float) -> str:
    if score >= 0.8:
        return "excellent"
    if score >= 0.6:
        return "good"
    if score >= 0.4:
        return "fair"
    if score >= 0.2:
        return "poor"
    return "very_poor"


def _issue_impact(frequency: int) -> str:
    if frequency > 10:
        return "high"
    if frequency > 5:
        return "medium"
    return "low"


def _average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize_quality(fossils: Sequence[FossilRecord]) -> QualitySummary:
    if not fossils:
        return QualitySummary()

    scores = [fossil.validation.quality_score for fossil in fossils]
    distribution = {
        band: 0 for band in ("excellent", "good", "fair", "poor", "very_poor")
    }
    for score in scores:
        distribution[quality_band(score)] += 1

    issues = Counter(
        issue
        for fossil in fossils
        for issue in [*fossil.validation.warnings, *fossil.validation.errors]
    )
    common = sorted(issues.items(), key=lambda item: (-item[1], item[0]))
    common_issues = [
        CommonIssue(issue=issue, frequency=count, impact=_issue_impact(count))
        for issue, count in common[:COMMON_ISSUES_LIMIT]
    ]

    ordered = sorted(fossils, key=lambda fossil: fossil.timestamp)
    midpoint = len(ordered) // 2
    older, newer = ordered[:midpoint], ordered[midpoint:]

    older_quality = _average([f.validation.quality_score for f in older])
    newer_quality = _average([f.validation.quality_score for f in newer])
    if newer_quality > older_quality + TREND_TOLERANCE:
        quality_trend = "improving"
    elif newer_quality < older_quality - TREND_TOLERANCE:
        quality_trend = "declining"
    else:
        quality_trend = "stable"

    older_errors = _average([0.0 if f.validation.is_valid else 1.0 for f in older])
    newer_errors = _average([0.0 if f.validation.is_valid else 1.0 for f in newer])
    if newer_errors < older_errors - TREND_TOLERANCE:
        error_rate_trend = "decreasing"
    elif newer_errors > older_errors + TREND_TOLERANCE:
        error_rate_trend = "increasing"
    else:
        error_rate_trend = "stable"

    return QualitySummary(
        total_fossils=len(fossils),
        average_quality=_average(scores),
        distribution=distribution,
        common_issues=common_issues,
        quality_trend=quality_trend,
        error_rate_trend=error_rate_trend,
    )
