"""OpenAI provider adapter built on top of ``BaseProvider``."""

from __future__ import annotations

from typing import Any, Dict

import httpx

from fossil_router.domain.exceptions import (
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from fossil_router.domain.models import CallRequest, RawResponse

from .base import BaseProvider, ProviderConfig, ProviderKind

OPENAI_CHAT_COMPLETIONS_PATH = "/v1/chat/completions"

# Chat Completions body keys; everything else on a request stays local.
_WIRE_FIELDS = ("model", "messages", "temperature", "max_tokens")


class OpenAIProvider(BaseProvider):
    """Cloud provider that speaks to OpenAI's chat completions API."""

    NAME = "openai"
    KIND = ProviderKind.CLOUD

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        config: ProviderConfig,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.config = config
        self._http = http_client
        self._endpoint = (
            f"{self.config.base_url.rstrip('/')}{OPENAI_CHAT_COMPLETIONS_PATH}"
        )

    async def is_available(self) -> bool:
        return bool(self.config.api_key)

    async def _make_api_call(self, request: CallRequest) -> RawResponse:
        api_key = request.api_key or self.config.api_key
        if not api_key:
            raise ProviderError("OpenAI API key not configured")

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        try:
            http_response = await self._http.post(
                self._endpoint,
                json=self._build_payload(request),
                timeout=self.config.timeout,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                "OpenAI request timed out", context={"timeout": self.config.timeout}
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(f"OpenAI transport error: {exc}") from exc

        return self._map_response(http_response)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_payload(request: CallRequest) -> Dict[str, Any]:
        payload = request.to_payload()
        return {key: payload[key] for key in _WIRE_FIELDS if key in payload}

    @staticmethod
    def _map_response(http_response: httpx.Response) -> RawResponse:
        status = http_response.status_code
        if status == 429:
            raise ProviderRateLimitError(
                f"OpenAI API error: {status} {http_response.text}",
                context={"status_code": status},
            )
        if status >= 500:
            raise ProviderUnavailableError(
                f"OpenAI API error: {status} {http_response.text}",
                context={"status_code": status},
            )
        if status >= 400:
            raise ProviderError(
                f"OpenAI API error: {status} {http_response.text}",
                context={"status_code": status},
            )

        try:
            data = http_response.json()
        except ValueError as exc:
            raise ProviderError(
                "Malformed OpenAI response", context={"status_code": status}
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError("Malformed OpenAI response", context={"data": data})
        return data

