"""JSON-file usage log with a single serialized writer."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Sequence

from pydantic import ValidationError

from fossil_router.domain.exceptions import PersistenceError

from .interfaces import IUsageRepository, UsageMetric

logger = logging.getLogger(__name__)


class JsonUsageLog(IUsageRepository):
    """Durable flat JSON array of usage metrics.

    Every save rewrites the whole array, but writes are serialized through one
    lock and land via an atomic rename, so the file always holds the most
    recent complete snapshot of the in-memory list.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[UsageMetric]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "usage_log_unreadable",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return []
        if not isinstance(raw, list):
            logger.warning("usage_log_not_a_list", extra={"path": str(self._path)})
            return []
        metrics: List[UsageMetric] = []
        for entry in raw:
            try:
                metrics.append(UsageMetric.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "usage_log_entry_skipped",
                    extra={"path": str(self._path), "error": str(exc)},
                )
        return metrics

    async def save(self, metrics: Sequence[UsageMetric]) -> None:
        async with self._lock:
            # Snapshot inside the lock so the newest writer always sees every append.
            payload = [
                metric.model_dump(mode="json", by_alias=True) for metric in metrics
            ]
            try:
                await asyncio.to_thread(self._write, payload)
            except OSError as exc:
                raise PersistenceError(
                    "Failed to write usage log", context={"path": str(self._path)}
                ) from exc

    def _write(self, payload: list) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)
