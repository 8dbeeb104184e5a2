"""Time-windowed snapshot export of fossils as JSON, YAML, or CSV."""

from __future__ import annotations

import asyncio
import csv
import io
import json
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field

from fossil_router.domain.exceptions import SnapshotExportError

from .models import FossilRecord
from .store import FossilFilters, FossilStore

SNAPSHOT_DESCRIPTION = "LLM interaction snapshot for cross-platform sharing"

SNAPSHOT_FIELDS = (
    "id",
    "type",
    "timestamp",
    "status",
    "inputHash",
    "callId",
    "sessionId",
    "tags",
    "validation",
    "metadata",
)


class SnapshotFormat(str, Enum):
    JSON = "json"
    YAML = "yaml"
    CSV = "csv"

    @property
    def extension(self) -> str:
        return "yml" if self is SnapshotFormat.YAML else self.value


class SnapshotExportResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    output_path: Path
    entries_exported: int
    format: SnapshotFormat
    metadata: Dict[str, Any] = Field(default_factory=dict)


def fossil_to_row(fossil: FossilRecord) -> Dict[str, Any]:
    document = fossil.to_document()
    document["id"] = document.pop("fossilId")
    return {name: document.get(name) for name in SNAPSHOT_FIELDS}


class SnapshotExporter:
    """Reads fossils from a store and serializes a filtered window to one file."""

    def __init__(
        self,
        store: FossilStore,
        output_dir: str | Path = ".",
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._output_dir = Path(output_dir)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def export(
        self,
        format: SnapshotFormat | str = SnapshotFormat.YAML,
        filters: Optional[FossilFilters] = None,
    ) -> SnapshotExportResult:
        try:
            snapshot_format = SnapshotFormat(format)
        except ValueError as exc:
            raise SnapshotExportError(
                f"Unsupported export format: {format}"
            ) from exc

        fossils = await asyncio.to_thread(self._store.load, filters)
        exported_at = self._clock()
        rows = [fossil_to_row(fossil) for fossil in fossils]
        header = {
            "exportedAt": exported_at.isoformat(),
            "fossilCount": len(rows),
            "format": snapshot_format.value,
            "description": SNAPSHOT_DESCRIPTION,
        }
        content = self.render(snapshot_format, header, rows)

        stamp = int(exported_at.timestamp() * 1000)
        output_path = self._output_dir / f"llm-snapshot-{stamp}.{snapshot_format.extension}"
        try:
            await asyncio.to_thread(self._write, output_path, content)
        except OSError as exc:
            raise SnapshotExportError(
                "Failed to write snapshot", context={"path": str(output_path)}
            ) from exc

        return SnapshotExportResult(
            output_path=output_path,
            entries_exported=len(rows),
            format=snapshot_format,
            metadata={
                "exportedAt": header["exportedAt"],
                "totalSize": output_path.stat().st_size,
                "fossilTypes": sorted({fossil.type for fossil in fossils}),
            },
        )

    def render(
        self,
        snapshot_format: SnapshotFormat,
        header: Dict[str, Any],
        rows: Sequence[Dict[str, Any]],
    ) -> str:
        if snapshot_format is SnapshotFormat.JSON:
            return json.dumps({"metadata": header, "fossils": list(rows)}, indent=2)
        if snapshot_format is SnapshotFormat.YAML:
            return yaml.safe_dump(
                {"metadata": header, "fossils": list(rows)},
                indent=2,
                width=120,
                sort_keys=False,
            )
        return self._render_csv(rows)

    @staticmethod
    def _render_csv(rows: Sequence[Dict[str, Any]]) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(SNAPSHOT_FIELDS))
        writer.writeheader()
        for row in rows:
            writer.writerow(
                {
                    name: json.dumps(value) if isinstance(value, (dict, list)) else value
                    for name, value in row.items()
                }
            )
        return buffer.getvalue()

    @staticmethod
    def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def window_filters(
    window_seconds: float, *, now: Optional[datetime] = None
) -> FossilFilters:
    end = now or datetime.now(timezone.utc)
    return FossilFilters(start=end - timedelta(seconds=window_seconds), end=end)

