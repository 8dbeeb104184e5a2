"""Orchestrator configuration management helpers."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

ENV_PREFIX = "LLM_"

_ALLOWED_SNAPSHOT_FORMATS = {"json", "yaml", "csv"}


def _str_to_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _str_to_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value: {value}") from exc


def _str_to_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid float value: {value}") from exc


@dataclass(frozen=True)
class OrchestratorConfig:
    """Immutable configuration object loaded from env or files."""

    max_tokens_per_call: int = 4000
    max_cost_per_call: float = 0.10
    min_value_score: float = 0.3
    enable_local_llm: bool = False
    prefer_local_llm: bool = False
    complexity_threshold: float = 0.6
    cost_sensitivity: float = 0.8
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    rate_limit_delay_seconds: float = 60.0
    memory_only: bool = False
    enable_fossilization: bool = True
    enable_snapshot_export: bool = True
    track_skipped_calls: bool = True
    enable_input_validation: bool = True
    fossil_storage_path: str = "fossils/llm_insights/"
    usage_log_path: str = ".llm-usage-log.json"
    snapshot_dir: str = "."
    snapshot_format: str = "yaml"
    snapshot_window_seconds: float = 60.0
    snapshot_interval_seconds: float = 0.0
    local_model: str = "llama3"
    local_timeout_seconds: float = 60.0
    timeout_seconds: float = 30.0
    openai_base_url: str = "https://api.openai.com"

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OrchestratorConfig":
        """Build a config from ``LLM_*`` variables, e.g. ``LLM_MAX_COST_PER_CALL``."""

        env = os.environ if environ is None else environ
        defaults = cls()
        values: Dict[str, Any] = {}
        for item in fields(cls):
            raw = env.get(f"{ENV_PREFIX}{item.name.upper()}")
            default = getattr(defaults, item.name)
            if isinstance(default, bool):
                values[item.name] = _str_to_bool(raw, default)
            elif isinstance(default, int):
                values[item.name] = _str_to_int(raw, default)
            elif isinstance(default, float):
                values[item.name] = _str_to_float(raw, default)
            else:
                values[item.name] = raw if raw is not None else default
        return cls(**values)

    @classmethod
    def from_file(cls, path: str | Path) -> "OrchestratorConfig":
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        raw = file_path.read_text()
        data: Dict[str, Any]
        suffix = file_path.suffix.lower()
        if suffix == ".json":
            data = json.loads(raw)
        elif suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw) or {}
        else:
            raise ValueError("Unsupported config format. Use JSON or YAML.")
        if not isinstance(data, dict):
            raise ValueError("Configuration file must contain a mapping")
        return cls(**cls._merge_with_defaults(data))

    def validate(self) -> None:
        if self.max_tokens_per_call <= 0:
            raise ValueError("max_tokens_per_call must be greater than zero")
        if self.max_cost_per_call < 0:
            raise ValueError("max_cost_per_call must be non-negative")
        for name in ("min_value_score", "complexity_threshold", "cost_sensitivity"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be between 0 and 1")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.retry_delay_seconds < 0 or self.rate_limit_delay_seconds < 0:
            raise ValueError("retry delays must be non-negative")
        if self.snapshot_format not in _ALLOWED_SNAPSHOT_FORMATS:
            raise ValueError(
                f"snapshot_format must be one of {sorted(_ALLOWED_SNAPSHOT_FORMATS)}"
            )
        if self.snapshot_window_seconds <= 0:
            raise ValueError("snapshot_window_seconds must be greater than zero")
        if self.snapshot_interval_seconds < 0:
            raise ValueError("snapshot_interval_seconds must be non-negative")
        if self.timeout_seconds <= 0 or self.local_timeout_seconds <= 0:
            raise ValueError("timeouts must be greater than zero")

    @classmethod
    def _merge_with_defaults(cls, data: Mapping[str, Any]) -> Dict[str, Any]:
        defaults = cls()
        return {
            item.name: data.get(item.name, getattr(defaults, item.name))
            for item in fields(cls)
        }
