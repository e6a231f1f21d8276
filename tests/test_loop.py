from collections import deque

import anyio
import pytest

from ollabridge.telegram.api_models import Update
from ollabridge.telegram.loop import UpdatePoller, run_intake_loop
from ollabridge.telegram.types import InboundEvent
from tests.fakes import FakeBot, make_event, make_update


@pytest.mark.anyio
async def test_out_of_order_batch_advances_to_max() -> None:
    stop = anyio.Event()
    bot = FakeBot(batches=deque([[make_update(3), make_update(1), make_update(4)]]))
    bot.stop = stop
    poller = UpdatePoller(bot)
    seen: list[int] = []

    async def dispatch(event: InboundEvent) -> None:
        seen.append(event.sequence_id)

    await run_intake_loop(poller, dispatch, stop=stop, backoff_s=0)

    assert seen == [3, 1, 4]
    assert poller.watermark == 4
    assert poller.next_offset == 5
    assert bot.offsets == [1]


@pytest.mark.anyio
async def test_offsets_follow_watermark_across_batches() -> None:
    stop = anyio.Event()
    bot = FakeBot(batches=deque([[make_update(10)], [make_update(11), make_update(12)]]))
    bot.stop = stop

    async def dispatch(event: InboundEvent) -> None:
        return None

    poller = UpdatePoller(bot)
    await run_intake_loop(poller, dispatch, stop=stop, backoff_s=0)
    assert bot.offsets == [1, 11]
    assert poller.watermark == 12


@pytest.mark.anyio
async def test_id_only_update_moves_watermark_past_it() -> None:
    stop = anyio.Event()
    bot = FakeBot(
        batches=deque([[Update(update_id=20), make_update(21)], [make_update(22)]])
    )
    bot.stop = stop
    poller = UpdatePoller(bot)
    texts: list[str] = []

    async def dispatch(event: InboundEvent) -> None:
        texts.append(event.raw_text)

    await run_intake_loop(poller, dispatch, stop=stop, backoff_s=0)
    assert texts == ["", "hi", "hi"]
    assert bot.offsets == [1, 22]
    assert poller.watermark == 22


@pytest.mark.anyio
async def test_watermark_advances_before_dispatch() -> None:
    stop = anyio.Event()
    bot = FakeBot(batches=deque([[make_update(7)]]))
    bot.stop = stop
    poller = UpdatePoller(bot)
    watermarks: list[int] = []

    async def dispatch(event: InboundEvent) -> None:
        watermarks.append(poller.watermark)

    await run_intake_loop(poller, dispatch, stop=stop, backoff_s=0)
    assert watermarks == [7]


@pytest.mark.anyio
async def test_fetch_failure_backs_off_and_keeps_offset() -> None:
    stop = anyio.Event()
    batches: deque[list[Update] | None] = deque([None, [make_update(2)]])
    bot = FakeBot(batches=batches)
    bot.stop = stop
    poller = UpdatePoller(bot)
    seen: list[int] = []

    async def dispatch(event: InboundEvent) -> None:
        seen.append(event.sequence_id)

    await run_intake_loop(poller, dispatch, stop=stop, backoff_s=0)
    assert bot.offsets == [1, 1]
    assert seen == [2]


@pytest.mark.anyio
async def test_dispatch_error_does_not_stop_batch() -> None:
    stop = anyio.Event()
    bot = FakeBot(batches=deque([[make_update(1), make_update(2)], [make_update(3)]]))
    bot.stop = stop
    poller = UpdatePoller(bot)
    seen: list[int] = []

    async def dispatch(event: InboundEvent) -> None:
        seen.append(event.sequence_id)
        if event.sequence_id == 1:
            raise RuntimeError("boom")

    await run_intake_loop(poller, dispatch, stop=stop, backoff_s=0)
    assert seen == [1, 2, 3]
    assert bot.offsets == [1, 3]


@pytest.mark.anyio
async def test_stop_checked_before_fetch() -> None:
    stop = anyio.Event()
    stop.set()
    bot = FakeBot(batches=deque([[make_update(1)]]))

    async def dispatch(event: InboundEvent) -> None:
        raise AssertionError("should not dispatch")

    await run_intake_loop(UpdatePoller(bot), dispatch, stop=stop)
    assert bot.offsets == []


@pytest.mark.anyio
async def test_stop_interrupts_backoff() -> None:
    stop = anyio.Event()

    class FailingBot(FakeBot):
        async def get_updates(self, offset, timeout_s=30):
            self.offsets.append(offset)
            stop.set()
            return None

    bot = FailingBot()

    async def dispatch(event: InboundEvent) -> None:
        return None

    with anyio.fail_after(5):
        await run_intake_loop(UpdatePoller(bot), dispatch, stop=stop, backoff_s=60)
    assert bot.offsets == [1]


def test_advance_never_moves_backwards() -> None:
    poller = UpdatePoller(FakeBot(), watermark=9)
    poller.advance(make_event(sequence_id=3))
    assert poller.watermark == 9
    poller.advance(make_event(sequence_id=12))
    assert poller.watermark == 12


def test_update_without_message_still_has_sequence_id() -> None:
    from ollabridge.telegram.types import event_from_update

    event = event_from_update(Update(update_id=44))
    assert event.sequence_id == 44
    assert event.chat_destination == 0
    assert event.raw_text == ""


def test_sender_falls_back_to_chat_id() -> None:
    from ollabridge.telegram.api_models import Chat, Message
    from ollabridge.telegram.types import event_from_update

    update = Update(
        update_id=1,
        message=Message(message_id=1, chat=Chat(id=-555), text="hi"),
    )
    event = event_from_update(update)
    assert event.sender_identity == -555
    assert event.chat_destination == -555
