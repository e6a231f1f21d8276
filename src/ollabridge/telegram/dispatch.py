from __future__ import annotations

from collections.abc import Awaitable, Callable

import anyio

from ..access import AccessGuard
from ..config import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_PROMPT_LENGTH
from ..logging import get_logger
from ..ollama import Backend, BackendError
from ..ratelimit import SlidingWindowLimiter
from ..segment import CONTINUATION_MARKER, format_reply
from .client import BotClient
from .types import InboundEvent

logger = get_logger(__name__)

CHUNK_PACING_S = 0.1

START_TEXT = (
    "Hi! I relay your messages to a local Ollama model.\n\n"
    "Just send me a message and I will pass it to the model and reply "
    "with its answer.\n\n"
    "Use /help for more information."
)
HELP_TEXT = (
    "Available commands:\n\n"
    "/start - welcome message\n"
    "/help - this help\n\n"
    "Any other message is sent to Ollama as a prompt."
)
RATE_LIMITED_TEXT = "Too many requests. Please wait a little and try again."
TOO_LONG_TEXT = "Your message is too long. Maximum length: {limit} characters."
PROCESSING_TEXT = "Processing your request..."
FAILURE_TEXT = "Something went wrong while processing your request. Try again later."


def command_name(text: str) -> str:
    """`/help@my_bot extra` -> `/help`."""
    parts = text.split(maxsplit=1)
    if not parts:
        return ""
    return parts[0].split("@", 1)[0]


class Dispatcher:
    def __init__(
        self,
        *,
        bot: BotClient,
        backend: Backend,
        guard: AccessGuard,
        limiter: SlidingWindowLimiter,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        continuation_marker: str = CONTINUATION_MARKER,
        pacing_s: float = CHUNK_PACING_S,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._bot = bot
        self._backend = backend
        self._guard = guard
        self._limiter = limiter
        self._max_prompt_length = max_prompt_length
        self._chunk_size = chunk_size
        self._continuation_marker = continuation_marker
        self._pacing_s = pacing_s
        self._sleep = sleep
        self._commands: dict[str, str] = {
            "/start": START_TEXT,
            "/help": HELP_TEXT,
        }

    async def __call__(self, event: InboundEvent) -> None:
        await self.handle(event)

    async def handle(self, event: InboundEvent) -> None:
        if not event.chat_destination or not event.raw_text:
            return

        if not self._guard.is_allowed(event.sender_identity):
            logger.warning(
                "dispatch.unauthorized",
                sender_id=event.sender_identity,
                chat_id=event.chat_destination,
            )
            return

        text = event.raw_text
        if text.startswith("/"):
            reply = self._commands.get(command_name(text))
            if reply is not None:
                await self._send(event.chat_destination, reply)
                return
        await self._handle_prompt(event, text)

    async def _handle_prompt(self, event: InboundEvent, text: str) -> None:
        chat_id = event.chat_destination
        if not await self._limiter.check_and_record(event.sender_identity):
            logger.info("dispatch.rate_limited", sender_id=event.sender_identity)
            await self._send(chat_id, RATE_LIMITED_TEXT)
            return

        if len(text) > self._max_prompt_length:
            logger.info(
                "dispatch.prompt_too_long",
                sender_id=event.sender_identity,
                length=len(text),
                limit=self._max_prompt_length,
            )
            await self._send(
                chat_id, TOO_LONG_TEXT.format(limit=self._max_prompt_length)
            )
            return

        await self._send(chat_id, PROCESSING_TEXT)

        try:
            response = await self._backend.generate(text)
        except BackendError as exc:
            logger.error(
                "dispatch.backend_failed",
                chat_id=chat_id,
                error=str(exc),
            )
            await self._send(chat_id, FAILURE_TEXT)
            return

        chunks = format_reply(
            response, self._chunk_size, marker=self._continuation_marker
        )
        for index, chunk in enumerate(chunks):
            if index > 0:
                await self._sleep(self._pacing_s)
            await self._send(chat_id, chunk.text)
        logger.info(
            "dispatch.replied",
            chat_id=chat_id,
            response_len=len(response),
            parts=len(chunks),
        )

    async def _send(self, chat_id: int, text: str) -> None:
        result = await self._bot.send_message(chat_id=chat_id, text=text)
        if result is None:
            logger.error("dispatch.send_failed", chat_id=chat_id, text_len=len(text))
