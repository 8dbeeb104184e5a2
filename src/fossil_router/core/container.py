"""Dependency injection container for building fully-wired orchestrators."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import httpx

from fossil_router.analytics.aggregator import AnalyticsAggregator
from fossil_router.analytics.tracker import UsageTracker
from fossil_router.analytics.usage_log import JsonUsageLog
from fossil_router.core.config import OrchestratorConfig
from fossil_router.core.orchestrator import LLMOrchestrator
from fossil_router.fossils.exporter import SnapshotExporter
from fossil_router.fossils.pipeline import CommitRefResolver
from fossil_router.fossils.store import FossilStore
from fossil_router.providers.base import ProviderConfig
from fossil_router.providers.ollama_provider import OllamaProvider
from fossil_router.providers.openai_provider import OpenAIProvider
from fossil_router.providers.registry import ProviderRegistry
from fossil_router.utils.retry import SleepFn

OPENAI_KEY_ENV = "OPENAI_API_KEY"


class DIContainer:
    """Factory helpers that assemble an orchestrator with default wiring."""

    @staticmethod
    def create_orchestrator(
        *,
        openai_api_key: Optional[str] = None,
        config: Optional[OrchestratorConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_dir: str | Path = ".",
    ) -> LLMOrchestrator:
        cfg = config or OrchestratorConfig.from_env()
        root = Path(base_dir)

        owned_client: Optional[httpx.AsyncClient] = None
        if http_client is None:
            owned_client = httpx.AsyncClient(timeout=cfg.timeout_seconds)
            http_client = owned_client

        registry = DIContainer._build_registry(
            cfg,
            api_key=openai_api_key or os.getenv(OPENAI_KEY_ENV),
            http_client=http_client,
        )
        tracker = DIContainer._build_tracker(cfg, root)

        fossil_store: Optional[FossilStore] = None
        exporter: Optional[SnapshotExporter] = None
        if cfg.enable_fossilization:
            fossil_store = FossilStore(root / cfg.fossil_storage_path)
            if cfg.enable_snapshot_export:
                exporter = SnapshotExporter(fossil_store, root / cfg.snapshot_dir)

        orchestrator = LLMOrchestrator(
            cfg,
            registry,
            tracker=tracker,
            fossil_store=fossil_store,
            exporter=exporter,
        )
        if owned_client is not None:
            orchestrator.add_shutdown_hook(owned_client.aclose)
        return orchestrator

    @staticmethod
    def create_custom_orchestrator(
        *,
        config: OrchestratorConfig,
        registry: ProviderRegistry,
        tracker: Optional[UsageTracker] = None,
        fossil_store: Optional[FossilStore] = None,
        exporter: Optional[SnapshotExporter] = None,
        sleep: Optional[SleepFn] = None,
        commit_ref_resolver: Optional[CommitRefResolver] = None,
    ) -> LLMOrchestrator:
        return LLMOrchestrator(
            config,
            registry,
            tracker=tracker,
            fossil_store=fossil_store,
            exporter=exporter,
            sleep=sleep,
            commit_ref_resolver=commit_ref_resolver,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_registry(
        config: OrchestratorConfig,
        *,
        api_key: Optional[str],
        http_client: httpx.AsyncClient,
    ) -> ProviderRegistry:
        registry = ProviderRegistry()
        provider_config = ProviderConfig(
            api_key=api_key,
            base_url=config.openai_base_url,
            timeout=config.timeout_seconds,
        )
        registry.register(OpenAIProvider(http_client, provider_config).descriptor())
        if config.enable_local_llm:
            local = OllamaProvider(
                config.local_model, timeout=config.local_timeout_seconds
            )
            registry.register(local.descriptor())
        return registry

    @staticmethod
    def _build_tracker(config: OrchestratorConfig, root: Path) -> UsageTracker:
        if config.memory_only:
            return UsageTracker(aggregator=AnalyticsAggregator(), memory_only=True)
        return UsageTracker(
            JsonUsageLog(root / config.usage_log_path), AnalyticsAggregator()
        )
