from __future__ import annotations

from typing import Protocol

import httpx
import msgspec

from .config import NetworkFamily
from .logging import get_logger
from .net import make_transport

logger = get_logger(__name__)

DEFAULT_URL = "http://localhost:11434"
DEFAULT_MODEL = "gemma3:1b"
GENERATE_TIMEOUT_S = 480.0


class BackendError(RuntimeError):
    """Generation failed. The message is for logs, never for chat users."""


class Backend(Protocol):
    async def generate(self, prompt: str) -> str: ...


class GenerateRequest(msgspec.Struct):
    model: str
    prompt: str
    stream: bool = False


class GenerateResponse(msgspec.Struct, forbid_unknown_fields=False):
    model: str = ""
    created_at: str = ""
    response: str = ""
    done: bool = False
    error: str | None = None


class OllamaClient:
    def __init__(
        self,
        url: str = DEFAULT_URL,
        model: str = DEFAULT_MODEL,
        *,
        network_family: NetworkFamily = "ipv4",
        timeout_s: float = GENERATE_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.model = model
        self._client = client or httpx.AsyncClient(
            transport=make_transport(network_family),
            timeout=timeout_s,
        )
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def generate(self, prompt: str) -> str:
        body = msgspec.json.encode(GenerateRequest(model=self.model, prompt=prompt))
        logger.debug("ollama.request", model=self.model, prompt_len=len(prompt))
        try:
            resp = await self._client.post(
                f"{self.url}/api/generate",
                content=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise BackendError(
                f"ollama request failed: {e.__class__.__name__}: {e}"
            ) from e

        if resp.status_code != httpx.codes.OK:
            raise BackendError(
                f"ollama returned status {resp.status_code}: {resp.text}"
            )

        try:
            payload = msgspec.json.decode(resp.content, type=GenerateResponse)
        except msgspec.DecodeError as e:
            raise BackendError(f"ollama returned malformed JSON: {e}") from e

        if payload.error:
            raise BackendError(f"ollama error: {payload.error}")
        if not payload.done:
            raise BackendError("ollama response is incomplete")

        logger.debug(
            "ollama.response", model=payload.model, response_len=len(payload.response)
        )
        return payload.response
