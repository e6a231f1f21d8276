from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from .api_models import Update


@dataclass(frozen=True, slots=True)
class InboundEvent:
    sequence_id: int
    sender_identity: int
    chat_destination: int
    raw_text: str
    received_at: datetime


def event_from_update(update: Update) -> InboundEvent:
    """Flatten an update; non-message updates keep only their sequence id."""
    msg = update.message
    if msg is None:
        return InboundEvent(
            sequence_id=update.update_id,
            sender_identity=0,
            chat_destination=0,
            raw_text="",
            received_at=datetime.now(timezone.utc),
        )
    sender = msg.from_.id if msg.from_ is not None else msg.chat.id
    received_at = (
        datetime.fromtimestamp(msg.date, tz=timezone.utc)
        if msg.date
        else datetime.now(timezone.utc)
    )
    return InboundEvent(
        sequence_id=update.update_id,
        sender_identity=sender,
        chat_destination=msg.chat.id,
        raw_text=msg.text or "",
        received_at=received_at,
    )
