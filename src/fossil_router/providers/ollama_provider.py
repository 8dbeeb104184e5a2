"""Local provider that shells out to the ``ollama`` CLI."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from fossil_router.domain.exceptions import ProviderError, ProviderTimeoutError
from fossil_router.domain.models import CallRequest, ChatMessage, RawResponse

from .base import BaseProvider, ProviderKind

OLLAMA_EXECUTABLE = "ollama"
PROBE_TIMEOUT_SECONDS = 10.0


def render_prompt(messages: Sequence[ChatMessage]) -> str:
    return "\n".join(f"{message.role}: {message.content}" for message in messages)


class OllamaProvider(BaseProvider):
    """Runs one prompt per call through ``ollama run``; local calls cost nothing."""

    NAME = "local-ollama"
    KIND = ProviderKind.LOCAL

    def __init__(
        self,
        model: str = "llama3",
        *,
        timeout: float = 60.0,
        executable: str = OLLAMA_EXECUTABLE,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if timeout <= 0:
            raise ValueError("timeout must be greater than zero")
        self.model = model
        self.timeout = timeout
        self.executable = executable

    async def is_available(self) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                "--version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return False
        try:
            return_code = await asyncio.wait_for(
                process.wait(), timeout=PROBE_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return False
        return return_code == 0

    def estimate_cost(self, tokens: int, model: str) -> float:
        return 0.0

    async def _make_api_call(self, request: CallRequest) -> RawResponse:
        prompt = render_prompt(request.messages)
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                "run",
                self.model,
                prompt,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProviderError(
                f"Failed to start {self.executable}: {exc}",
                context={"model": self.model},
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ProviderTimeoutError(
                f"Local model timed out after {self.timeout}s",
                context={"model": self.model},
            ) from exc

        if process.returncode != 0:
            raise ProviderError(
                f"Local model exited with status {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}",
                context={"model": self.model},
            )
        content = stdout.decode(errors="replace").strip()
        return {"choices": [{"message": {"content": content}}]}
