"""Builds and persists one fossil per call attempt."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from fossil_router.analytics.interfaces import UsageMetric
from fossil_router.domain.exceptions import PersistenceError

from .models import (
    DEFAULT_TAGS,
    FossilMetadata,
    FossilPreprocessing,
    FossilQuality,
    FossilRecord,
    FossilStatus,
    FossilValidation,
    make_fossil_id,
)
from .sanitizer import sanitize_request
from .store import FossilStore
from .validator import InputReport, InputValidator

CommitRefResolver = Callable[[], Awaitable[str]]

UNKNOWN_COMMIT = "unknown"


async def git_commit_ref() -> str:
    """Return ``git rev-parse HEAD`` for the working directory, or ``"unknown"``."""

    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            "rev-parse",
            "HEAD",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return UNKNOWN_COMMIT
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=5)
    except asyncio.TimeoutError:
        process.kill()
        return UNKNOWN_COMMIT
    if process.returncode != 0:
        return UNKNOWN_COMMIT
    return stdout.decode().strip() or UNKNOWN_COMMIT


class FossilPipeline:
    """Turns a usage metric plus its sanitized request into a stored fossil."""

    def __init__(
        self,
        store: FossilStore,
        session_id: str,
        *,
        commit_ref_resolver: Optional[CommitRefResolver] = None,
        validator: Optional[InputValidator] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._validator = validator
        self._session_id = session_id
        self._resolve_commit_ref = commit_ref_resolver or git_commit_ref
        self._commit_ref: Optional[str] = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def store(self) -> FossilStore:
        return self._store

    async def commit_ref(self) -> str:
        if self._commit_ref is None:
            self._commit_ref = await self._resolve_commit_ref()
        return self._commit_ref

    async def build(
        self,
        metric: UsageMetric,
        request_payload: Mapping[str, Any],
        *,
        preprocessing_changes: Sequence[str] = (),
        extra_tags: Sequence[str] = (),
    ) -> FossilRecord:
        failed = not metric.success
        errors = [metric.error] if failed and metric.error else []

        report: Optional[InputReport] = None
        validation_time = 0.0
        if self._validator is not None:
            started = time.perf_counter()
            report = self._validator.inspect(request_payload)
            validation_time = round((time.perf_counter() - started) * 1000, 3)

        if report is not None:
            validation = FossilValidation(
                is_valid=not failed and not report.errors,
                errors=[*errors, *report.errors],
                warnings=list(report.warnings),
                recommendations=list(report.recommendations),
                quality_score=metric.value_score,
                security_issues=list(report.security_issues),
                performance_issues=list(report.performance_issues),
            )
            quality = report.quality
        else:
            validation = FossilValidation(
                is_valid=not failed,
                errors=errors,
                quality_score=metric.value_score,
            )
            if failed:
                quality = FossilQuality()
            else:
                quality = FossilQuality(
                    overall=metric.value_score,
                    clarity=0.8,
                    specificity=0.7,
                    completeness=0.9,
                )
        preprocessing = (
            FossilPreprocessing(changes=list(preprocessing_changes))
            if preprocessing_changes
            else None
        )
        return FossilRecord(
            timestamp=metric.timestamp,
            commit_ref=await self.commit_ref(),
            input_hash=metric.input_hash,
            call_id=metric.call_id,
            session_id=self._session_id,
            input=sanitize_request(dict(request_payload)),
            validation=validation,
            preprocessing=preprocessing,
            quality=quality,
            metadata=FossilMetadata(
                model=metric.model,
                context=metric.context,
                purpose=metric.purpose,
                value_score=metric.value_score,
                validation_time=validation_time,
                total_time=metric.duration,
                provider=metric.provider,
                input_tokens=metric.input_tokens,
                output_tokens=metric.output_tokens,
                total_tokens=metric.total_tokens,
                cost=metric.cost,
            ),
            fossil_id=make_fossil_id(metric.timestamp, metric.call_id),
            status=FossilStatus.REJECTED if failed else FossilStatus.APPROVED,
            tags=[*DEFAULT_TAGS, *extra_tags],
        )

    async def fossilize(
        self,
        metric: UsageMetric,
        request_payload: Mapping[str, Any],
        *,
        preprocessing_changes: Sequence[str] = (),
        extra_tags: Sequence[str] = (),
    ) -> Optional[str]:
        """Persist a fossil for ``metric``; returns its id, or None on failure."""

        fossil = await self.build(
            metric,
            request_payload,
            preprocessing_changes=preprocessing_changes,
            extra_tags=extra_tags,
        )
        try:
            await self._store.save(fossil)
        except PersistenceError as exc:
            self._logger.warning(
                "fossil_write_failed",
                extra={"fossil_id": fossil.fossil_id, "error": str(exc)},
            )
            return None
        self._logger.info(
            "llm_call_fossilized",
            extra={
                "fossil_id": fossil.fossil_id,
                "model": metric.model,
                "provider": metric.provider,
                "cost": metric.cost,
                "tokens": metric.total_tokens,
                "status": fossil.status,
            },
        )
        return fossil.fossil_id
