from __future__ import annotations

import signal
from collections.abc import Awaitable, Callable

import anyio

from .access import AccessGuard
from .config import BridgeSettings
from .logging import get_logger
from .ollama import Backend, OllamaClient
from .ratelimit import SlidingWindowLimiter
from .telegram.client import (
    FETCH_TIMEOUT_SLACK_S,
    LONG_POLL_TIMEOUT_S,
    BotClient,
    TelegramClient,
)
from .telegram.dispatch import Dispatcher
from .telegram.loop import UpdatePoller, run_intake_loop
from .telegram.types import InboundEvent

logger = get_logger(__name__)

# Long enough for an in-flight getUpdates to hit its client-side timeout.
SHUTDOWN_TIMEOUT_S = LONG_POLL_TIMEOUT_S + FETCH_TIMEOUT_SLACK_S + 1.0


def build_dispatcher(
    settings: BridgeSettings, *, bot: BotClient, backend: Backend
) -> Dispatcher:
    guard = AccessGuard(settings.allowed_user_ids)
    if guard.open_mode:
        logger.warning(
            "access.open_mode",
            hint="ALLOWED_USER_IDS is not set; the bot answers everyone",
        )
    else:
        logger.info("access.allow_list", users=len(guard.allowed_ids))
    limiter = SlidingWindowLimiter(
        max_requests=settings.rate_limit_max,
        window_s=settings.rate_limit_window_s,
    )
    return Dispatcher(
        bot=bot,
        backend=backend,
        guard=guard,
        limiter=limiter,
        max_prompt_length=settings.max_prompt_length,
        chunk_size=settings.chunk_size,
    )


async def serve(
    poller: UpdatePoller,
    dispatch: Callable[[InboundEvent], Awaitable[None]],
    *,
    stop: anyio.Event,
    shutdown_timeout_s: float = SHUTDOWN_TIMEOUT_S,
) -> None:
    """Run the intake loop until stop is set, then give it time to wind down."""
    done = anyio.Event()

    async def _intake() -> None:
        try:
            await run_intake_loop(poller, dispatch, stop=stop)
        finally:
            done.set()

    async with anyio.create_task_group() as tg:
        tg.start_soon(_intake)
        await stop.wait()
        with anyio.move_on_after(shutdown_timeout_s):
            await done.wait()
        if not done.is_set():
            logger.warning("shutdown.forced", timeout_s=shutdown_timeout_s)
        tg.cancel_scope.cancel()


async def _stop_on_signal(stop: anyio.Event) -> None:
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("shutdown.signal", signal=signal.Signals(signum).name)
            stop.set()
            return


async def run_bridge(settings: BridgeSettings) -> None:
    bot = TelegramClient(settings.bot_token, network_family=settings.network_family)
    backend = OllamaClient(
        settings.ollama_url,
        settings.ollama_model,
        network_family=settings.network_family,
    )
    dispatcher = build_dispatcher(settings, bot=bot, backend=backend)
    poller = UpdatePoller(bot)
    stop = anyio.Event()
    logger.info(
        "bridge.starting",
        ollama_url=settings.ollama_url,
        model=settings.ollama_model,
        network_family=settings.network_family,
    )
    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(_stop_on_signal, stop)
            await serve(poller, dispatcher, stop=stop)
            tg.cancel_scope.cancel()
    finally:
        await bot.close()
        await backend.close()
        logger.info("bridge.stopped")
