"""Provider selection driven by call intelligence and routing preference."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from fossil_router.domain.exceptions import NoProviderAvailableError
from fossil_router.domain.models import CallIntelligence, RoutingPreference
from fossil_router.providers.base import ProviderDescriptor, ProviderKind
from fossil_router.providers.registry import ProviderRegistry

AvailabilityProbe = Callable[[ProviderDescriptor], Awaitable[bool]]


class _RoutingDefaults(Protocol):
    prefer_local_llm: bool
    complexity_threshold: float


@dataclass(frozen=True)
class RoutingSettings:
    """Effective routing knobs for a single call."""

    prefer_local: bool
    complexity_threshold: float


def resolve_routing(
    config: _RoutingDefaults, preference: Optional[RoutingPreference | str]
) -> RoutingSettings:
    """Map a routing preference onto per-call settings without touching ``config``."""

    preference = RoutingPreference(preference) if preference else RoutingPreference.AUTO
    if preference is RoutingPreference.LOCAL:
        return RoutingSettings(prefer_local=True, complexity_threshold=1.0)
    if preference is RoutingPreference.CLOUD:
        return RoutingSettings(prefer_local=False, complexity_threshold=0.0)
    return RoutingSettings(
        prefer_local=config.prefer_local_llm,
        complexity_threshold=config.complexity_threshold,
    )


@dataclass(frozen=True)
class RoutingDecision:
    """Ordered provider candidates plus a human-readable explanation."""

    candidates: Tuple[ProviderDescriptor, ...]
    reasoning: str

    @property
    def primary(self) -> Optional[ProviderDescriptor]:
        return self.candidates[0] if self.candidates else None

    def names(self) -> List[str]:
        return [candidate.name for candidate in self.candidates]


async def probe_descriptor(descriptor: ProviderDescriptor) -> bool:
    return await descriptor.is_available()


class ProviderSelector:
    """Orders available providers: local when preferred, cloud for hard calls, rest."""

    def __init__(
        self,
        registry: ProviderRegistry,
        cost_sensitivity: float = 0.8,
        *,
        probe: Optional[AvailabilityProbe] = None,
    ) -> None:
        if not 0 <= cost_sensitivity <= 1:
            raise ValueError("cost_sensitivity must be between 0 and 1")
        self._registry = registry
        self._cost_sensitivity = cost_sensitivity
        self._probe = probe or probe_descriptor

    async def select(
        self, intelligence: CallIntelligence, settings: RoutingSettings
    ) -> RoutingDecision:
        availability: Dict[str, bool] = {}

        async def available(descriptor: ProviderDescriptor) -> bool:
            if descriptor.name not in availability:
                availability[descriptor.name] = await self._probe(descriptor)
            return availability[descriptor.name]

        candidates: List[ProviderDescriptor] = []
        rule = "fallback"

        if intelligence.can_use_local and settings.prefer_local:
            for descriptor in self._registry.of_kind(ProviderKind.LOCAL):
                if await available(descriptor):
                    candidates.append(descriptor)
            if candidates:
                rule = "local-preferred"

        needs_cloud = (
            not intelligence.can_use_local
            or intelligence.complexity > settings.complexity_threshold
        )
        if needs_cloud:
            cloud = self._registry.first_of_kind(ProviderKind.CLOUD)
            if cloud is not None and cloud not in candidates and await available(cloud):
                if not candidates:
                    rule = "cloud-for-complex"
                candidates.append(cloud)

        for descriptor in self._registry:
            if descriptor in candidates:
                continue
            if await available(descriptor):
                candidates.append(descriptor)

        return RoutingDecision(
            candidates=tuple(candidates),
            reasoning=self._build_reasoning(rule, candidates, intelligence),
        )

    async def select_or_raise(
        self, intelligence: CallIntelligence, settings: RoutingSettings
    ) -> RoutingDecision:
        decision = await self.select(intelligence, settings)
        if not decision.candidates:
            raise NoProviderAvailableError(
                "No LLM providers available",
                context={"registered": self._registry.names()},
            )
        return decision

    def weighted_score(self, intelligence: CallIntelligence) -> float:
        sensitivity = self._cost_sensitivity
        return (
            intelligence.estimated_quality * (1 - sensitivity)
            + intelligence.cost_benefit * sensitivity
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _build_reasoning(
        self,
        rule: str,
        candidates: List[ProviderDescriptor],
        intelligence: CallIntelligence,
    ) -> str:
        if not candidates:
            return "No registered provider reported itself available"
        summary = (
            f"Rule {rule} selected {candidates[0].name} "
            f"(complexity={intelligence.complexity:.2f}, "
            f"score={self.weighted_score(intelligence):.2f})"
        )
        alternates = [candidate.name for candidate in candidates[1:]]
        alt_text = f". Fallbacks: {', '.join(alternates)}" if alternates else ""
        return summary + alt_text
