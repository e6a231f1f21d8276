from __future__ import annotations

from typing import Any, Protocol

import httpx
import msgspec

from ..config import NetworkFamily
from ..logging import get_logger
from ..net import make_transport
from .api_models import Update

logger = get_logger(__name__)

API_BASE = "https://api.telegram.org"
MAX_RESPONSE_BYTES = 10 * 1024 * 1024
LONG_POLL_TIMEOUT_S = 30
# Client-side slack on top of the server-side long poll wait.
FETCH_TIMEOUT_SLACK_S = 10.0
SEND_TIMEOUT_S = 10.0


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = LONG_POLL_TIMEOUT_S,
    ) -> list[Update] | None: ...

    async def send_message(self, chat_id: int, text: str) -> dict | None: ...


def _retry_after_from_payload(payload: Any) -> float | None:
    if not isinstance(payload, dict):
        return None
    params = payload.get("parameters")
    if isinstance(params, dict):
        retry_after = params.get("retry_after")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
    return None


def _parse_update(item: Any) -> Update | None:
    """Decode one update; a malformed one keeps only its id so polling moves past it."""
    try:
        return msgspec.convert(item, type=Update)
    except msgspec.ValidationError as e:
        update_id = item.get("update_id") if isinstance(item, dict) else None
        logger.error("telegram.invalid_update", update_id=update_id, error=str(e))
        if isinstance(update_id, int) and not isinstance(update_id, bool):
            return Update(update_id=update_id)
        return None


class TelegramClient:
    def __init__(
        self,
        token: str,
        *,
        network_family: NetworkFamily = "ipv4",
        client: httpx.AsyncClient | None = None,
        base_url: str = API_BASE,
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._token = token
        self._base = f"{base_url}/bot{token}"
        self._client = client or httpx.AsyncClient(
            transport=make_transport(network_family),
            timeout=SEND_TIMEOUT_S,
        )
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _sanitize(self, text: str) -> str:
        return text.replace(self._token, "[REDACTED]")

    async def _post(
        self, method: str, json_data: dict[str, Any], *, timeout_s: float
    ) -> Any | None:
        logger.debug("telegram.request", method=method, payload=json_data)
        try:
            resp = await self._client.post(
                f"{self._base}/{method}", json=json_data, timeout=timeout_s
            )
        except httpx.HTTPError as e:
            logger.error(
                "telegram.network_error",
                method=method,
                error=self._sanitize(str(e)),
                error_type=e.__class__.__name__,
            )
            return None

        if len(resp.content) > MAX_RESPONSE_BYTES:
            logger.error(
                "telegram.response_too_large",
                method=method,
                status=resp.status_code,
                size=len(resp.content),
            )
            return None

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            logger.error(
                "telegram.http_error",
                method=method,
                status=resp.status_code,
                error=self._sanitize(str(e)),
                body=self._sanitize(resp.text),
                retry_after=_retry_after_from_payload(payload),
            )
            return None

        try:
            payload = resp.json()
        except ValueError as e:
            logger.error(
                "telegram.bad_response",
                method=method,
                status=resp.status_code,
                error=str(e),
                error_type=e.__class__.__name__,
                body=self._sanitize(resp.text),
            )
            return None

        if not isinstance(payload, dict):
            logger.error(
                "telegram.invalid_payload",
                method=method,
                payload=payload,
            )
            return None

        if not payload.get("ok"):
            logger.error(
                "telegram.api_error",
                method=method,
                description=payload.get("description"),
                retry_after=_retry_after_from_payload(payload),
            )
            return None

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = LONG_POLL_TIMEOUT_S,
    ) -> list[Update] | None:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        result = await self._post(
            "getUpdates", params, timeout_s=timeout_s + FETCH_TIMEOUT_SLACK_S
        )
        if result is None:
            return None
        if not isinstance(result, list):
            logger.error("telegram.invalid_updates", result_type=type(result).__name__)
            return None
        updates: list[Update] = []
        for item in result:
            update = _parse_update(item)
            if update is not None:
                updates.append(update)
        return updates

    async def send_message(self, chat_id: int, text: str) -> dict | None:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        result = await self._post("sendMessage", params, timeout_s=SEND_TIMEOUT_S)
        return result if isinstance(result, dict) else None
