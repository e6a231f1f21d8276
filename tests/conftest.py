from collections.abc import Callable

import pytest

from ollabridge.access import AccessGuard
from ollabridge.ratelimit import SlidingWindowLimiter
from ollabridge.telegram.dispatch import Dispatcher
from tests.fakes import FakeBackend, FakeBot


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_dispatcher(
    fake_bot: FakeBot, fake_backend: FakeBackend, sleeps: list[float]
) -> Callable[..., Dispatcher]:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    def _factory(
        *,
        allowed: tuple[int, ...] = (),
        max_requests: int = 10,
        max_prompt_length: int = 4096,
        chunk_size: int = 4000,
    ) -> Dispatcher:
        return Dispatcher(
            bot=fake_bot,
            backend=fake_backend,
            guard=AccessGuard(allowed),
            limiter=SlidingWindowLimiter(max_requests=max_requests),
            max_prompt_length=max_prompt_length,
            chunk_size=chunk_size,
            sleep=_sleep,
        )

    return _factory
