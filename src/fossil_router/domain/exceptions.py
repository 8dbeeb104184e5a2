"""Exception hierarchy for orchestrator, provider, and persistence failures."""

from __future__ import annotations

from typing import Any, Mapping


class FossilRouterError(Exception):
    """Base class for all domain-level errors in the orchestrator."""

    default_message = "Fossil router error occurred"

    def __init__(
        self, message: str | None = None, *, context: Mapping[str, Any] | None = None
    ):
        self.message = message or self.default_message
        self.context: Mapping[str, Any] = dict(context or {})
        formatted = self._format_message()
        super().__init__(formatted)

    def _format_message(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


class ProviderError(FossilRouterError):
    """Generic provider-related issues (HTTP failures, malformed payloads)."""

    default_message = "Provider error"


class ProviderUnavailableError(ProviderError):
    """Provider service is down or unreachable."""

    default_message = "Provider is unavailable"


class ProviderTimeoutError(ProviderUnavailableError):
    """Provider did not answer within its wall-clock budget."""

    default_message = "Provider timed out"


class ProviderRateLimitError(ProviderError):
    """Provider refuses request due to rate limiting."""

    default_message = "Provider rate limit exceeded"


class TerminalProviderError(ProviderError):
    """Every retry for a single provider has been exhausted."""

    default_message = "Provider retries exhausted"

    def __init__(
        self,
        message: str | None = None,
        *,
        last_error: BaseException | None = None,
        attempts: int = 0,
        context: Mapping[str, Any] | None = None,
    ):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(message, context=context)


class RoutingError(FossilRouterError):
    """Failures while evaluating routing logic."""

    default_message = "Routing error"


class NoProviderAvailableError(RoutingError):
    """Raised when no registered provider passes its availability probe."""

    default_message = "No provider available"


class PersistenceError(FossilRouterError):
    """Usage log or fossil write failed."""

    default_message = "Persistence failure"


class SnapshotExportError(FossilRouterError):
    """Snapshot export could not be produced."""

    default_message = "Snapshot export failed"
