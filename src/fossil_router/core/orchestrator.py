"""LLM call orchestrator: routing, guardrails, retries, usage and fossils."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from fossil_router.analytics.interfaces import (
    CallDisposition,
    UsageAnalytics,
    UsageMetric,
    utc_now,
)
from fossil_router.analytics.report import generate_usage_report
from fossil_router.analytics.tracker import UsageTracker
from fossil_router.core.config import OrchestratorConfig
from fossil_router.core.fallbacks import fallback_response
from fossil_router.core.guardrails import check_cost, check_tokens, check_value
from fossil_router.domain.exceptions import (
    NoProviderAvailableError,
    ProviderError,
    SnapshotExportError,
    TerminalProviderError,
)
from fossil_router.domain.models import (
    CallRequest,
    RawResponse,
    RoutingPreference,
    has_response_shape,
    response_content,
)
from fossil_router.fossils.exporter import (
    SnapshotExporter,
    SnapshotExportResult,
    SnapshotFormat,
    window_filters,
)
from fossil_router.fossils.pipeline import CommitRefResolver, FossilPipeline
from fossil_router.fossils.quality import QualitySummary, summarize_quality
from fossil_router.fossils.sanitizer import compute_input_hash
from fossil_router.fossils.store import FossilStore
from fossil_router.fossils.validator import InputValidator
from fossil_router.providers.base import (
    AvailabilityFn,
    CallFn,
    ProviderDescriptor,
    ProviderKind,
    zero_cost,
)
from fossil_router.providers.registry import ProviderRegistry
from fossil_router.routing.intelligence import analyze_call_intelligence
from fossil_router.routing.selector import ProviderSelector, resolve_routing
from fossil_router.utils.retry import RetryExecutor, SleepFn, is_rate_limit_error
from fossil_router.utils.token_counter import (
    count_tokens_approximate,
    estimate_message_tokens,
)

ShutdownHook = Callable[[], Awaitable[None]]

NO_PROVIDER = "none"
SKIPPED_TAG = "skipped"


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _short_id() -> str:
    return uuid.uuid4().hex[:9]


class LLMOrchestrator:
    """Single entry point for every LLM call made by the toolkit.

    A call never raises for provider, routing or persistence failures: the
    caller always receives a response shaped like
    ``{"choices": [{"message": {"content": ...}}]}``, either from a provider
    or from the static fallback table.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        registry: ProviderRegistry,
        *,
        tracker: Optional[UsageTracker] = None,
        fossil_store: Optional[FossilStore] = None,
        exporter: Optional[SnapshotExporter] = None,
        sleep: Optional[SleepFn] = None,
        clock: Optional[Callable[[], datetime]] = None,
        commit_ref_resolver: Optional[CommitRefResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._clock = clock or utc_now
        self._logger = logger or logging.getLogger(__name__)
        self._tracker = tracker or UsageTracker(memory_only=True)
        self._session_id = f"session-{_epoch_ms(self._clock())}-{_short_id()}"

        self._pipeline: Optional[FossilPipeline] = None
        if fossil_store is not None and config.enable_fossilization:
            self._pipeline = FossilPipeline(
                fossil_store,
                self._session_id,
                commit_ref_resolver=commit_ref_resolver,
                validator=(
                    InputValidator() if config.enable_input_validation else None
                ),
            )
        self._exporter = exporter if config.enable_snapshot_export else None

        self._retry = RetryExecutor(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_delay_seconds,
            rate_limit_delay=config.rate_limit_delay_seconds,
            sleep=sleep,
        )
        self._selector = ProviderSelector(
            registry, config.cost_sensitivity, probe=self._probe
        )
        self._routing_preference = RoutingPreference.AUTO
        self._local_availability: Dict[str, bool] = {}
        self._started = False
        self._export_task: Optional[asyncio.Task[None]] = None
        self._shutdown_hooks: List[ShutdownHook] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def tracker(self) -> UsageTracker:
        return self._tracker

    @property
    def local_llm_available(self) -> bool:
        return any(self._local_availability.values())

    async def start(self) -> None:
        """Probe local backends once and start periodic export if configured."""

        await self._probe_local_backends()
        if self._started:
            return
        self._started = True
        interval = self._config.snapshot_interval_seconds
        if interval > 0 and self._exporter is not None and self._export_task is None:
            self._export_task = asyncio.create_task(self._periodic_export(interval))
        self._logger.info(
            "orchestrator_started",
            extra={
                "session_id": self._session_id,
                "providers": self._registry.names(),
                "local_llm_available": self.local_llm_available,
            },
        )

    async def shutdown(self) -> None:
        """Stop periodic export, flush usage, and write one final snapshot."""

        if self._export_task is not None:
            self._export_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._export_task
            self._export_task = None

        await self._tracker.flush()
        await self.export_snapshot()
        await self._run_shutdown_hooks()

        analytics = self.get_usage_analytics()
        self._logger.info(
            "orchestrator_shutdown",
            extra={
                "session_id": self._session_id,
                "total_calls": analytics.total_calls,
                "total_cost": analytics.total_cost,
                "success_rate": analytics.success_rate,
                "fossils": self._tracker.fossil_count(),
            },
        )
        self._started = False

    def add_shutdown_hook(self, hook: ShutdownHook) -> None:
        """Run ``hook`` at the end of ``shutdown()``, e.g. to close an owned client."""

        self._shutdown_hooks.append(hook)

    # ------------------------------------------------------------------
    # Registration and routing controls
    # ------------------------------------------------------------------
    def set_routing_preference(self, preference: RoutingPreference | str) -> None:
        self._routing_preference = RoutingPreference(preference)

    @property
    def routing_preference(self) -> RoutingPreference:
        return self._routing_preference

    def register_provider(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        registered = self._registry.register(descriptor)
        self._logger.info(
            "provider_registered",
            extra={"provider": descriptor.name, "kind": descriptor.kind.value},
        )
        return registered

    def register_local_backend(
        self,
        name: str,
        call_fn: CallFn,
        is_available_fn: Optional[AvailabilityFn] = None,
    ) -> ProviderDescriptor:
        """Register a local runtime (vLLM, llama.cpp, ...); probed before next call."""

        kwargs: Dict[str, Any] = {}
        if is_available_fn is not None:
            kwargs["is_available"] = is_available_fn
        descriptor = ProviderDescriptor(
            name=name,
            call=call_fn,
            kind=ProviderKind.LOCAL,
            estimate_cost=zero_cost,
            **kwargs,
        )
        return self.register_provider(descriptor)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------
    async def call_llm(self, request: CallRequest | Mapping[str, Any]) -> RawResponse:
        if not isinstance(request, CallRequest):
            request = CallRequest.from_mapping(request)
        try:
            await self.start()
            return await self._dispatch(request)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception(
                "llm_call_unexpected_error",
                extra={"purpose": request.purpose, "model": request.model},
            )
            return fallback_response(request.purpose)

    # ------------------------------------------------------------------
    # Analytics and export
    # ------------------------------------------------------------------
    def get_usage_analytics(self) -> UsageAnalytics:
        return self._tracker.get_usage_analytics()

    def generate_usage_report(self) -> str:
        return generate_usage_report(self.get_usage_analytics())

    def quality_summary(self) -> QualitySummary:
        if self._pipeline is None:
            return QualitySummary()
        return summarize_quality(self._pipeline.store.load())

    async def export_snapshot(
        self,
        format: SnapshotFormat | str | None = None,
        window_seconds: Optional[float] = None,
    ) -> Optional[SnapshotExportResult]:
        """Export the recent fossil window; failures are logged, never raised."""

        if self._exporter is None:
            return None
        window = (
            self._config.snapshot_window_seconds
            if window_seconds is None
            else window_seconds
        )
        try:
            result = await self._exporter.export(
                format or self._config.snapshot_format,
                window_filters(window, now=self._clock()),
            )
        except asyncio.CancelledError:
            raise
        except SnapshotExportError as exc:
            self._logger.warning("snapshot_export_failed", extra={"error": str(exc)})
            return None
        except Exception as exc:
            self._logger.exception(
                "snapshot_export_failed", extra={"error": str(exc)}
            )
            return None
        self._logger.info(
            "snapshot_exported",
            extra={
                "path": str(result.output_path),
                "entries": result.entries_exported,
                "format": result.format.value,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _dispatch(self, request: CallRequest) -> RawResponse:
        payload = request.to_payload()
        input_hash = compute_input_hash(payload)
        purpose = request.purpose
        self._logger.info(
            "llm_call_started",
            extra={
                "model": request.model,
                "purpose": purpose,
                "context": request.context,
                "value_score": request.value_score,
                "input_hash": input_hash,
            },
        )

        value_check = check_value(request, self._config.min_value_score)
        if value_check.skipped:
            self._logger.warning(
                "guardrail_skip",
                extra={"guardrail": "value", "reason": value_check.reason},
            )
            return fallback_response(purpose)

        settings = resolve_routing(
            self._config, request.routing_preference or self._routing_preference
        )
        intelligence = analyze_call_intelligence(
            request,
            complexity_threshold=settings.complexity_threshold,
            local_available=self.local_llm_available,
        )
        try:
            decision = await self._selector.select_or_raise(intelligence, settings)
        except NoProviderAvailableError as exc:
            self._logger.warning("no_provider_available", extra={"error": str(exc)})
            await self._record_skip(request, payload, input_hash, NO_PROVIDER, str(exc))
            return fallback_response(purpose)

        primary = decision.candidates[0]
        self._logger.info(
            "provider_selected",
            extra={
                "provider": primary.name,
                "candidates": decision.names(),
                "reasoning": decision.reasoning,
            },
        )

        estimated_tokens = primary.estimate_tokens(request.messages)
        estimated_cost = primary.estimate_cost(estimated_tokens, request.model)
        cost_check = check_cost(estimated_cost, self._config.max_cost_per_call)
        if cost_check.skipped:
            self._logger.warning(
                "guardrail_skip",
                extra={"guardrail": "cost", "reason": cost_check.reason},
            )
            await self._record_skip(
                request, payload, input_hash, primary.name, cost_check.reason
            )
            return fallback_response(purpose)

        token_check = check_tokens(
            request.messages,
            self._config.max_tokens_per_call,
            estimate_tokens=primary.estimate_tokens,
        )
        outgoing = request
        changes: Sequence[str] = ()
        if token_check.truncated:
            self._logger.warning(
                "guardrail_truncate",
                extra={"guardrail": "tokens", "reason": token_check.reason},
            )
            outgoing = request.with_messages(token_check.messages)
            changes = (token_check.reason or "messages truncated",)

        for provider in decision.candidates:
            response = await self._attempt(
                provider, outgoing, payload, input_hash, changes
            )
            if response is not None:
                return response

        self._logger.warning(
            "all_providers_failed",
            extra={"purpose": purpose, "candidates": decision.names()},
        )
        return fallback_response(purpose)

    async def _attempt(
        self,
        provider: ProviderDescriptor,
        request: CallRequest,
        payload: Mapping[str, Any],
        input_hash: str,
        changes: Sequence[str],
    ) -> Optional[RawResponse]:
        """Run one provider through the retry executor; None when it gave up."""

        call_id = f"call-{_epoch_ms(self._clock())}-{_short_id()}"
        input_tokens = provider.estimate_tokens(request.messages)
        started = time.perf_counter()

        async def invoke() -> RawResponse:
            response = await provider.call(request)
            if not has_response_shape(response):
                raise ProviderError(
                    f"Malformed response from {provider.name}",
                    context={"provider": provider.name},
                )
            return dict(response)

        try:
            response = await self._retry.run(invoke, label=provider.name)
        except TerminalProviderError as exc:
            error = exc.last_error or exc
            metric = self._build_metric(
                request,
                provider=provider.name,
                call_id=call_id,
                input_hash=input_hash,
                input_tokens=input_tokens,
                output_tokens=0,
                cost=provider.estimate_cost(input_tokens, request.model),
                duration=self._elapsed_ms(started),
                disposition=CallDisposition.FAILED,
                error=str(error),
            )
            await self._record(metric, payload, changes)
            self._logger.warning(
                "provider_failed",
                extra={
                    "provider": provider.name,
                    "call_id": call_id,
                    "attempts": exc.attempts,
                    "error": str(error),
                },
            )
            if is_rate_limit_error(error):
                await self._retry.rate_limit_pause(label=provider.name)
            return None

        output_tokens = self._output_tokens(response)
        total_tokens = input_tokens + output_tokens
        metric = self._build_metric(
            request,
            provider=provider.name,
            call_id=call_id,
            input_hash=input_hash,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=provider.estimate_cost(total_tokens, request.model),
            duration=self._elapsed_ms(started),
            disposition=CallDisposition.SUCCESS,
        )
        await self._record(metric, payload, changes)
        self._logger.info(
            "llm_call_completed",
            extra={
                "provider": provider.name,
                "call_id": call_id,
                "tokens": metric.total_tokens,
                "cost": metric.cost,
                "duration_ms": metric.duration,
            },
        )
        return response

    async def _record_skip(
        self,
        request: CallRequest,
        payload: Mapping[str, Any],
        input_hash: str,
        provider_name: str,
        reason: Optional[str],
    ) -> None:
        if not self._config.track_skipped_calls:
            return
        metric = self._build_metric(
            request,
            provider=provider_name,
            call_id=f"call-{_epoch_ms(self._clock())}-{_short_id()}",
            input_hash=input_hash,
            input_tokens=estimate_message_tokens(request.messages),
            output_tokens=0,
            cost=0.0,
            duration=0.0,
            disposition=CallDisposition.SKIPPED,
            error=reason,
        )
        await self._record(metric, payload, (), extra_tags=(SKIPPED_TAG,))

    def _build_metric(
        self,
        request: CallRequest,
        *,
        provider: str,
        call_id: str,
        input_hash: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        duration: float,
        disposition: CallDisposition,
        error: Optional[str] = None,
    ) -> UsageMetric:
        return UsageMetric(
            timestamp=self._clock(),
            model=request.model,
            provider=provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=cost,
            duration=duration,
            success=disposition is CallDisposition.SUCCESS,
            error=error,
            context=request.context,
            purpose=request.purpose,
            value_score=request.value_score,
            call_id=call_id,
            input_hash=input_hash,
            session_id=self._session_id,
            disposition=disposition,
        )

    async def _record(
        self,
        metric: UsageMetric,
        payload: Mapping[str, Any],
        changes: Sequence[str],
        *,
        extra_tags: Sequence[str] = (),
    ) -> None:
        """Fossilize first so the appended metric can carry its fossil id."""

        if self._pipeline is not None:
            fossil_id = await self._pipeline.fossilize(
                metric,
                payload,
                preprocessing_changes=changes,
                extra_tags=extra_tags,
            )
            if fossil_id is not None:
                metric = metric.model_copy(update={"fossil_id": fossil_id})
        await self._tracker.record(metric)

    async def _probe(self, descriptor: ProviderDescriptor) -> bool:
        if descriptor.kind == ProviderKind.LOCAL:
            if descriptor.name not in self._local_availability:
                await self._probe_local_backends()
            return self._local_availability.get(descriptor.name, False)
        return await self._safe_probe(descriptor)

    async def _probe_local_backends(self) -> None:
        for descriptor in self._registry.of_kind(ProviderKind.LOCAL):
            if descriptor.name in self._local_availability:
                continue
            available = await self._safe_probe(descriptor)
            self._local_availability[descriptor.name] = available
            self._logger.info(
                "local_backend_probed",
                extra={"provider": descriptor.name, "available": available},
            )

    async def _safe_probe(self, descriptor: ProviderDescriptor) -> bool:
        try:
            return bool(await descriptor.is_available())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.warning(
                "provider_probe_failed",
                extra={"provider": descriptor.name, "error": str(exc)},
            )
            return False

    async def _periodic_export(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.export_snapshot()

    async def _run_shutdown_hooks(self) -> None:
        hooks, self._shutdown_hooks = self._shutdown_hooks, []
        for hook in hooks:
            try:
                await hook()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.warning("shutdown_hook_failed", extra={"error": str(exc)})

    @staticmethod
    def _output_tokens(response: Mapping[str, Any]) -> int:
        usage = response.get("usage")
        if isinstance(usage, Mapping):
            completion = usage.get("completion_tokens")
            if isinstance(completion, int) and completion >= 0:
                return completion
        return count_tokens_approximate(response_content(response))

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 3)
