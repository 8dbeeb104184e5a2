"""Plain-text usage report built from aggregated analytics."""

from __future__ import annotations

from typing import List

from fossil_router.analytics.interfaces import UsageAnalytics

LOW_VALUE_THRESHOLD = 0.5
HIGH_TOTAL_COST = 10.0
LOW_SUCCESS_RATE = 0.9
EXPENSIVE_PURPOSE_COST = 1.0


def generate_recommendations(analytics: UsageAnalytics) -> List[str]:
    recommendations: List[str] = []
    if analytics.average_value_score < LOW_VALUE_THRESHOLD:
        recommendations.append(
            "Consider increasing min_value_score to avoid low-value calls"
        )
    if analytics.total_cost > HIGH_TOTAL_COST:
        recommendations.append(
            "High cost detected - consider using local LLM alternatives"
        )
    if analytics.success_rate < LOW_SUCCESS_RATE:
        recommendations.append("Low success rate - check API keys and rate limits")
    expensive = [
        stat.purpose
        for stat in analytics.top_purposes
        if stat.cost > EXPENSIVE_PURPOSE_COST
    ]
    if expensive:
        recommendations.append(f"Expensive purposes: {', '.join(expensive)}")
    return recommendations


def generate_usage_report(analytics: UsageAnalytics) -> str:
    lines = [
        "LLM Usage Report",
        "================",
        "",
        "Cost Summary:",
        f"- Total Cost: ${analytics.total_cost:.4f}",
        f"- Total Calls: {analytics.total_calls}",
        f"- Total Tokens: {analytics.total_tokens:,}",
        f"- Success Rate: {analytics.success_rate * 100:.1f}%",
        f"- Average Value Score: {analytics.average_value_score * 100:.1f}%",
        "",
        "Top Purposes (by cost):",
    ]
    lines.extend(
        f"- {stat.purpose}: ${stat.cost:.4f} ({stat.calls} calls)"
        for stat in analytics.top_purposes
    )
    lines += ["", "Provider Breakdown:"]
    lines.extend(
        f"- {stat.provider}: ${stat.cost:.4f} ({stat.calls} calls)"
        for stat in analytics.provider_breakdown
    )
    lines += ["", "Daily Cost Trend:"]
    lines.extend(
        f"- {day.date}: ${day.cost:.4f} ({day.calls} calls)"
        for day in analytics.cost_by_day
    )
    recommendations = generate_recommendations(analytics) or ["Usage looks good!"]
    lines += ["", "Recommendations:"]
    lines.extend(f"- {item}" for item in recommendations)
    return "\n".join(lines) + "\n"
