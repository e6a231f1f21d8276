from __future__ import annotations

from .client import BotClient, TelegramClient
from .dispatch import Dispatcher
from .loop import UpdatePoller, run_intake_loop
from .types import InboundEvent, event_from_update

__all__ = [
    "BotClient",
    "Dispatcher",
    "InboundEvent",
    "TelegramClient",
    "UpdatePoller",
    "event_from_update",
    "run_intake_loop",
]
