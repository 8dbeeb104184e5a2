"""Ordered registry of provider descriptors."""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional

from fossil_router.domain.exceptions import ProviderError

from .base import ProviderDescriptor, ProviderKind


class ProviderRegistry:
    """Keeps descriptors in registration order; names are unique."""

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderDescriptor] = {}

    def register(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        if descriptor.name in self._providers:
            raise ProviderError(
                f"Provider '{descriptor.name}' is already registered",
                context={"provider": descriptor.name},
            )
        self._providers[descriptor.name] = descriptor
        return descriptor

    def get(self, name: str) -> Optional[ProviderDescriptor]:
        return self._providers.get(name)

    def names(self) -> List[str]:
        return list(self._providers)

    def of_kind(self, kind: ProviderKind) -> List[ProviderDescriptor]:
        return [provider for provider in self if provider.kind == kind]

    def first_of_kind(self, kind: ProviderKind) -> Optional[ProviderDescriptor]:
        for provider in self:
            if provider.kind == kind:
                return provider
        return None

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers
