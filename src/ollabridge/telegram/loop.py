from __future__ import annotations

from collections.abc import Awaitable, Callable

import anyio

from ..logging import get_logger
from .client import LONG_POLL_TIMEOUT_S, BotClient
from .types import InboundEvent, event_from_update

logger = get_logger(__name__)

__all__ = ["UpdatePoller", "run_intake_loop"]

FETCH_BACKOFF_S = 5.0


class UpdatePoller:
    """Long-poll cursor over getUpdates.

    The watermark is the highest update id seen so far. It only moves
    forward and lives in memory, so a restart fetches from offset 1 again.
    """

    def __init__(
        self,
        bot: BotClient,
        *,
        poll_timeout_s: int = LONG_POLL_TIMEOUT_S,
        watermark: int = 0,
    ) -> None:
        self._bot = bot
        self._poll_timeout_s = poll_timeout_s
        self.watermark = watermark

    @property
    def next_offset(self) -> int:
        return self.watermark + 1

    def advance(self, event: InboundEvent) -> None:
        if event.sequence_id > self.watermark:
            self.watermark = event.sequence_id

    async def fetch(self) -> list[InboundEvent] | None:
        updates = await self._bot.get_updates(
            offset=self.next_offset, timeout_s=self._poll_timeout_s
        )
        if updates is None:
            return None
        return [event_from_update(update) for update in updates]


async def _wait_or_stop(stop: anyio.Event, delay: float) -> None:
    if delay <= 0:
        return
    with anyio.move_on_after(delay):
        await stop.wait()


async def run_intake_loop(
    poller: UpdatePoller,
    dispatch: Callable[[InboundEvent], Awaitable[None]],
    *,
    stop: anyio.Event,
    backoff_s: float = FETCH_BACKOFF_S,
) -> None:
    """Fetch and dispatch events until stop is set.

    Stop is checked before every fetch; an in-flight fetch is allowed to
    finish. Each event advances the watermark before it is dispatched.
    """
    logger.info("intake.started", offset=poller.next_offset)
    while not stop.is_set():
        try:
            events = await poller.fetch()
        except Exception:
            logger.exception("intake.fetch_crashed", offset=poller.next_offset)
            events = None
        if events is None:
            logger.warning(
                "intake.fetch_failed",
                offset=poller.next_offset,
                backoff_s=backoff_s,
            )
            await _wait_or_stop(stop, backoff_s)
            continue

        for event in events:
            poller.advance(event)
            try:
                await dispatch(event)
            except Exception:
                logger.exception(
                    "intake.dispatch_failed",
                    sequence_id=event.sequence_id,
                    chat_id=event.chat_destination,
                )
    logger.info("intake.stopped", watermark=poller.watermark)
