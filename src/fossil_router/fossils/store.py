"""One-file-per-record fossil storage."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from fossil_router.domain.exceptions import PersistenceError

from .models import FossilRecord

logger = logging.getLogger(__name__)

ENTRIES_DIR = "entries"


@dataclass(frozen=True)
class FossilFilters:
    """Criteria applied when reading fossils back for export or analysis."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    model: Optional[str] = None
    purpose: Optional[str] = None
    status: Optional[str] = None
    tags: Sequence[str] = field(default_factory=tuple)

    def matches(self, fossil: FossilRecord) -> bool:
        timestamp = _as_utc(fossil.timestamp)
        if self.start is not None and timestamp < _as_utc(self.start):
            return False
        if self.end is not None and timestamp > _as_utc(self.end):
            return False
        if self.model is not None and fossil.metadata.model != self.model:
            return False
        if self.purpose is not None and fossil.metadata.purpose != self.purpose:
            return False
        if self.status is not None and fossil.status != self.status:
            return False
        if self.tags and not any(tag in fossil.tags for tag in self.tags):
            return False
        return True


class FossilStore:
    """Writes each fossil to ``<root>/entries/<fossil_id>.json``, never overwriting."""

    def __init__(self, root: str | Path):
        self._root = Path(root)

    @property
    def entries_dir(self) -> Path:
        return self._root / ENTRIES_DIR

    async def save(self, fossil: FossilRecord) -> Path:
        path = self.entries_dir / f"{fossil.fossil_id}.json"
        document = json.dumps(fossil.to_document(), indent=2)
        try:
            await asyncio.to_thread(self._write_exclusive, path, document)
        except FileExistsError as exc:
            raise PersistenceError(
                "Fossil already exists", context={"fossil_id": fossil.fossil_id}
            ) from exc
        except OSError as exc:
            raise PersistenceError(
                "Failed to write fossil", context={"path": str(path)}
            ) from exc
        return path

    def load(self, filters: Optional[FossilFilters] = None) -> List[FossilRecord]:
        """Return matching fossils, newest first; unreadable files are skipped."""

        if not self.entries_dir.is_dir():
            return []
        fossils: List[FossilRecord] = []
        for path in sorted(self.entries_dir.glob("*.json")):
            try:
                fossil = FossilRecord.model_validate_json(path.read_text("utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning(
                    "fossil_unreadable", extra={"path": str(path), "error": str(exc)}
                )
                continue
            if filters is None or filters.matches(fossil):
                fossils.append(fossil)
        fossils.sort(key=lambda item: _as_utc(item.timestamp), reverse=True)
        return fossils

    def find_by_input_hash(self, input_hash: str) -> List[FossilRecord]:
        return [fossil for fossil in self.load() if fossil.input_hash == input_hash]

    @staticmethod
    def _write_exclusive(path: Path, document: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("x", encoding="utf-8") as handle:
            handle.write(document)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
