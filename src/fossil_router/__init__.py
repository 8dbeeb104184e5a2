"""Fossil Router: guarded LLM call orchestration with an auditable fossil trail."""

from .core.orchestrator import LLMOrchestrator
from .core.container import DIContainer

__all__ = [
    "LLMOrchestrator",
    "DIContainer",
    "domain",
    "routing",
    "core",
    "providers",
    "analytics",
    "fossils",
    "utils",
]
