import logging
import random

import pytest

from idemcore.infra.memory.database import MemoryDatabase
from idemcore.infra.memory.uow import MemoryIdempotencyUnitOfWork
from idemcore.schemas.retry import Backoff, RetryPolicy
from idemcore.services.idempotency import IdempotentExecutor
from idemcore.services.retry import ConflictRetryController


class SideEffectLog:
    """Records every committed side effect, i.e. every "real" charge."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def record(self, key: str, response: str) -> None:
        self.calls.append((key, response))

    def keys(self) -> list[str]:
        return [key for key, _ in self.calls]


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("idemcore.tests")


@pytest.fixture
def database() -> MemoryDatabase:
    return MemoryDatabase(predicate_pages=16)


@pytest.fixture
def uow(database: MemoryDatabase, logger) -> MemoryIdempotencyUnitOfWork:
    return MemoryIdempotencyUnitOfWork(database, logger=logger)


@pytest.fixture
def side_effects() -> SideEffectLog:
    return SideEffectLog()


@pytest.fixture
def executor(uow, side_effects: SideEffectLog, logger) -> IdempotentExecutor:
    return IdempotentExecutor(uow, on_committed=side_effects.record, logger=logger)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=50,
        initial_delay=0.001,
        max_delay=0.01,
        jitter=0.002,
        unavailable=Backoff(
            max_retries=10, initial_delay=0.002, max_delay=0.02, jitter=0.002
        ),
    )


@pytest.fixture
def controller(executor, fast_policy, logger) -> ConflictRetryController:
    return ConflictRetryController(
        executor, policy=fast_policy, logger=logger, rng=random.Random(7)
    )
