import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from fossil_router.analytics.tracker import UsageTracker
from fossil_router.core.config import OrchestratorConfig
from fossil_router.core.fallbacks import DEFAULT_FALLBACK, FALLBACK_CONTENT
from fossil_router.core.orchestrator import LLMOrchestrator
from fossil_router.domain.exceptions import ProviderRateLimitError, ProviderUnavailableError
from fossil_router.fossils.exporter import SnapshotExporter
from fossil_router.fossils.store import FossilStore
from fossil_router.providers.base import ProviderDescriptor, ProviderKind
from fossil_router.providers.registry import ProviderRegistry


class _RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class _StubProvider:
    def __init__(self, content="4", errors=(), available=True, usage=None):
        self.content = content
        self.errors = list(errors)
        self.available = available
        self.usage = usage
        self.calls = []
        self.probes = 0

    async def call(self, request):
        self.calls.append(request)
        if self.errors:
            raise self.errors.pop(0)
        response = {"choices": [{"message": {"content": self.content}}]}
        if self.usage is not None:
            response["usage"] = self.usage
        return response

    async def is_available(self):
        self.probes += 1
        return self.available

    def descriptor(self, name, kind):
        return ProviderDescriptor(
            name=name, call=self.call, kind=kind, is_available=self.is_available
        )


async def _commit():
    return "deadbeef"


def _request(**overrides):
    payload = {
        "model": "gpt-3.5-turbo",
        "messages": [{"role": "user", "content": "2+2"}],
        "valueScore": 0.9,
        "context": "test",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def sleep():
    return _RecordingSleep()


@pytest.fixture
def build(tmp_path: Path, sleep):
    def factory(*providers, **config_overrides):
        config = OrchestratorConfig(**config_overrides)
        registry = ProviderRegistry()
        for stub, name, kind in providers:
            registry.register(stub.descriptor(name, kind))
        store = FossilStore(tmp_path / "fossils")
        return LLMOrchestrator(
            config,
            registry,
            tracker=UsageTracker(memory_only=True),
            fossil_store=store,
            exporter=SnapshotExporter(store, tmp_path / "snapshots"),
            sleep=sleep,
            commit_ref_resolver=_commit,
        )

    return factory


@pytest.mark.asyncio
async def test_cloud_success_records_one_metric_and_fossil(build):
    cloud = _StubProvider(content="4")
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))

    response = await orchestrator.call_llm(_request())

    assert response["choices"][0]["message"]["content"] == "4"
    assert len(cloud.calls) == 1
    metrics = orchestrator.tracker.metrics
    assert len(metrics) == 1
    metric = metrics[0]
    assert metric.provider == "openai"
    assert metric.success is True
    assert metric.disposition == "success"
    assert metric.input_tokens == 1
    assert metric.output_tokens == 1
    assert metric.session_id == orchestrator.session_id
    assert metric.fossil_id == f"llm-validation-{int(metric.timestamp.timestamp() * 1000)}-{metric.call_id}"
    assert orchestrator.quality_summary().total_fossils == 1


@pytest.mark.asyncio
async def test_low_value_call_touches_nothing(build):
    cloud = _StubProvider()
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))

    response = await orchestrator.call_llm(
        _request(valueScore=0.05, purpose="excerpt-generation")
    )

    assert response == {
        "choices": [{"message": {"content": FALLBACK_CONTENT["excerpt-generation"]}}]
    }
    assert cloud.calls == []
    assert orchestrator.tracker.metrics == ()
    assert orchestrator.quality_summary().total_fossils == 0


@pytest.mark.asyncio
async def test_rate_limited_provider_retries_then_falls_back(build, sleep):
    errors = [ProviderRateLimitError("OpenAI API error: 429 slow down")] * 3
    cloud = _StubProvider(errors=errors)
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))

    response = await orchestrator.call_llm(_request())

    assert response["choices"][0]["message"]["content"] == DEFAULT_FALLBACK
    assert len(cloud.calls) == 3
    assert sleep.delays == [1.0, 2.0, 60.0]
    (metric,) = orchestrator.tracker.metrics
    assert metric.success is False
    assert metric.disposition == "failed"
    assert "429" in metric.error
    assert metric.output_tokens == 0


@pytest.mark.asyncio
async def test_failure_advances_to_next_provider(build, sleep):
    cloud = _StubProvider(errors=[ProviderUnavailableError("down")] * 3)
    backup = _StubProvider(content="from backup")
    orchestrator = build(
        (cloud, "openai", ProviderKind.CLOUD),
        (backup, "backup", ProviderKind.CUSTOM),
    )

    response = await orchestrator.call_llm(_request())

    assert response["choices"][0]["message"]["content"] == "from backup"
    assert [m.provider for m in orchestrator.tracker.metrics] == ["openai", "backup"]
    assert [m.success for m in orchestrator.tracker.metrics] == [False, True]
    call_ids = {m.call_id for m in orchestrator.tracker.metrics}
    assert len(call_ids) == 2
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_no_provider_returns_fallback_and_records_skip(build):
    cloud = _StubProvider(available=False)
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))

    response = await orchestrator.call_llm(_request(purpose="goal-decomposition"))

    assert response["choices"][0]["message"]["content"] == FALLBACK_CONTENT[
        "goal-decomposition"
    ]
    (metric,) = orchestrator.tracker.metrics
    assert metric.disposition == "skipped"
    assert metric.provider == "none"
    assert cloud.calls == []


@pytest.mark.asyncio
async def test_skips_are_not_tracked_when_disabled(build):
    cloud = _StubProvider(available=False)
    orchestrator = build(
        (cloud, "openai", ProviderKind.CLOUD), track_skipped_calls=False
    )

    await orchestrator.call_llm(_request())

    assert orchestrator.tracker.metrics == ()


@pytest.mark.asyncio
async def test_cost_ceiling_skips_call(build):
    cloud = _StubProvider()
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD), max_cost_per_call=0.0001)

    response = await orchestrator.call_llm(
        _request(model="gpt-4", messages=[{"role": "user", "content": "x" * 400}])
    )

    assert response["choices"][0]["message"]["content"] == DEFAULT_FALLBACK
    assert cloud.calls == []
    (metric,) = orchestrator.tracker.metrics
    assert metric.disposition == "skipped"
    assert metric.cost == 0.0
    assert "exceeds limit" in metric.error


@pytest.mark.asyncio
async def test_token_ceiling_truncates_before_dispatch(build, tmp_path):
    cloud = _StubProvider()
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD), max_tokens_per_call=20)

    await orchestrator.call_llm(
        _request(
            messages=[
                {"role": "system", "content": "Be brief."},
                {"role": "user", "content": "y" * 400},
            ]
        )
    )

    (sent,) = cloud.calls
    assert sent.messages[0].content == "Be brief."
    assert sent.messages[1].content.endswith("...")
    (fossil,) = FossilStore(tmp_path / "fossils").load()
    assert fossil.preprocessing.changes
    assert "truncated" in fossil.preprocessing.changes[0]


@pytest.mark.asyncio
async def test_output_tokens_prefer_reported_usage(build):
    cloud = _StubProvider(content="ok", usage={"completion_tokens": 42})
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))

    await orchestrator.call_llm(_request())

    (metric,) = orchestrator.tracker.metrics
    assert metric.output_tokens == 42
    assert metric.total_tokens == 43


@pytest.mark.asyncio
async def test_malformed_response_is_treated_as_failure(build):
    async def broken(request):
        return {"unexpected": True}

    orchestrator = build()
    orchestrator.register_provider(
        ProviderDescriptor(name="broken", call=broken, kind=ProviderKind.CLOUD)
    )

    response = await orchestrator.call_llm(_request())

    assert response["choices"][0]["message"]["content"] == DEFAULT_FALLBACK
    (metric,) = orchestrator.tracker.metrics
    assert "Malformed response" in metric.error


@pytest.mark.asyncio
async def test_local_preference_routes_to_registered_backend(build):
    cloud = _StubProvider(content="cloud")
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))
    local = _StubProvider(content="local")
    orchestrator.register_local_backend("vllm", local.call, local.is_available)

    response = await orchestrator.call_llm(_request(routingPreference="local"))

    assert response["choices"][0]["message"]["content"] == "local"
    assert orchestrator.local_llm_available is True
    (metric,) = orchestrator.tracker.metrics
    assert metric.provider == "vllm"
    assert metric.cost == 0.0
    assert cloud.calls == []


@pytest.mark.asyncio
async def test_default_routing_preference_and_cloud_override(build):
    cloud = _StubProvider(content="cloud")
    local = _StubProvider(content="local")
    orchestrator = build(
        (cloud, "openai", ProviderKind.CLOUD),
        (local, "local-ollama", ProviderKind.LOCAL),
    )
    orchestrator.set_routing_preference("local")

    first = await orchestrator.call_llm(_request())
    second = await orchestrator.call_llm(_request(routingPreference="cloud"))

    assert first["choices"][0]["message"]["content"] == "local"
    assert second["choices"][0]["message"]["content"] == "cloud"
    assert local.probes == 1
    assert orchestrator.config.complexity_threshold == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_invalid_request_raises_validation_error(build):
    orchestrator = build()
    with pytest.raises(ValidationError):
        await orchestrator.call_llm({"model": "gpt-4", "messages": []})


@pytest.mark.asyncio
async def test_concurrent_calls_each_record_metrics(build):
    cloud = _StubProvider()
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))

    await asyncio.gather(*(orchestrator.call_llm(_request()) for _ in range(5)))

    assert len(orchestrator.tracker.metrics) == 5
    assert len({m.call_id for m in orchestrator.tracker.metrics}) == 5


@pytest.mark.asyncio
async def test_shutdown_exports_snapshot_and_report(build, tmp_path):
    cloud = _StubProvider()
    orchestrator = build((cloud, "openai", ProviderKind.CLOUD))
    await orchestrator.call_llm(_request())

    await orchestrator.shutdown()

    snapshots = list((tmp_path / "snapshots").glob("llm-snapshot-*.yml"))
    assert len(snapshots) == 1
    report = orchestrator.generate_usage_report()
    assert "- openai:" in report


@pytest.mark.asyncio
async def test_export_failure_is_swallowed(build, tmp_path):
    (tmp_path / "snapshots").write_text("blocking file")
    orchestrator = build((_StubProvider(), "openai", ProviderKind.CLOUD))

    assert await orchestrator.export_snapshot("json") is None


def test_session_id_format(build):
    orchestrator = build()
    prefix, millis, suffix = orchestrator.session_id.split("-")
    assert prefix == "session"
    assert millis.isdigit()
    assert len(suffix) == 9


@pytest.mark.asyncio
async def test_corrupt_fossil_file_does_not_break_export_or_shutdown(build, tmp_path):
    orchestrator = build((_StubProvider(), "openai", ProviderKind.CLOUD))
    await orchestrator.call_llm(_request())
    (tmp_path / "fossils" / "entries" / "corrupt.json").write_bytes(
        b"\xff\xfe\x00garbage"
    )

    result = await orchestrator.export_snapshot("json")
    await orchestrator.shutdown()

    assert result is not None
    assert result.entries_exported == 1


class _ExplodingExporter:
    async def export(self, format, filters):
        raise RuntimeError("disk on fire")


@pytest.mark.asyncio
async def test_unexpected_export_error_is_swallowed():
    orchestrator = LLMOrchestrator(
        OrchestratorConfig(),
        ProviderRegistry(),
        exporter=_ExplodingExporter(),
    )

    assert await orchestrator.export_snapshot() is None
    await orchestrator.shutdown()


class _SteppingClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.mark.asyncio
async def test_zero_second_window_is_not_replaced_by_default(tmp_path, sleep):
    store = FossilStore(tmp_path / "fossils")
    cloud = _StubProvider()
    registry = ProviderRegistry()
    registry.register(cloud.descriptor("openai", ProviderKind.CLOUD))
    orchestrator = LLMOrchestrator(
        OrchestratorConfig(),
        registry,
        fossil_store=store,
        exporter=SnapshotExporter(store, tmp_path / "snapshots"),
        sleep=sleep,
        clock=_SteppingClock(),
        commit_ref_resolver=_commit,
    )
    await orchestrator.call_llm(_request())

    empty = await orchestrator.export_snapshot("json", window_seconds=0)
    default = await orchestrator.export_snapshot("csv")

    assert empty.entries_exported == 0
    assert default.entries_exported == 1


@pytest.mark.asyncio
async def test_fossils_carry_input_findings_by_default(build, tmp_path):
    orchestrator = build((_StubProvider(), "openai", ProviderKind.CLOUD))

    await orchestrator.call_llm(_request(model="gpt-4"))

    (fossil,) = FossilStore(tmp_path / "fossils").load()
    assert "Message 1 is very short (3 chars) - consider adding more detail" in (
        fossil.validation.warnings
    )
    assert fossil.validation.performance_issues


@pytest.mark.asyncio
async def test_input_validation_can_be_disabled(build, tmp_path):
    orchestrator = build(
        (_StubProvider(), "openai", ProviderKind.CLOUD), enable_input_validation=False
    )

    await orchestrator.call_llm(_request())

    (fossil,) = FossilStore(tmp_path / "fossils").load()
    assert fossil.validation.warnings == []
    assert fossil.validation.recommendations == []
    assert fossil.quality.overall == pytest.approx(0.9)
