import asyncio
import random
from collections import Counter
from collections.abc import Callable
from logging import Logger
from uuid import uuid4

from sentry_sdk import start_transaction

from idemcore.domains.idempotency import IsolationLevel
from idemcore.schemas.driver import InvocationOutcome
from idemcore.schemas.retry import RetryPolicy
from idemcore.services.idempotency import IdempotentExecutor
from idemcore.services.retry import ConflictRetryController

KeyGenerator = Callable[[int], str]
PayloadFactory = Callable[[str], str]


def unique_keys() -> KeyGenerator:
    return lambda _: uuid4().hex


def colliding_keys(max_id: int, rng: random.Random | None = None) -> KeyGenerator:
    """Keys drawn uniformly from `[0, max_id)`, so repeats are expected."""
    if max_id < 1:
        raise ValueError("max_id must be at least 1")
    rng = rng or random.Random()
    return lambda _: str(rng.randrange(max_id))


def default_payload(key: str) -> str:
    return f"value-{key}"


class ConcurrentInvocationDriver:
    """
    Fans logical calls out over a bounded pool of concurrent tasks.

    Every invocation runs to completion: a failing call is recorded as a
    failed `InvocationOutcome` and never cancels its siblings.
    """

    def __init__(
        self,
        executor: IdempotentExecutor,
        controller: ConflictRetryController,
        *,
        pool_size: int = 10,
        logger: Logger,
    ) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self._executor = executor
        self._controller = controller
        self._pool_size = pool_size
        self._logger = logger

    async def run_concurrently(
        self,
        num_invocations: int,
        key_generator: KeyGenerator,
        isolation_level: IsolationLevel,
        with_retry: bool,
        *,
        payload_factory: PayloadFactory = default_payload,
        policy: RetryPolicy | None = None,
    ) -> list[InvocationOutcome]:
        semaphore = asyncio.Semaphore(self._pool_size)
        keys = [key_generator(index) for index in range(num_invocations)]

        async def _invoke(index: int, key: str) -> InvocationOutcome:
            payload = payload_factory(key)
            async with semaphore:
                try:
                    if with_retry:
                        response = await self._controller.execute_with_retry(
                            key, payload, isolation_level, policy
                        )
                    else:
                        response = await self._executor.execute(
                            key, payload, isolation_level
                        )
                except Exception as e:
                    self._logger.warning(
                        f"Invocation {index} for idempotency key [{key}] failed: {e}"
                    )
                    return InvocationOutcome(
                        index=index, key=key, error=str(e), error_type=type(e).__name__
                    )
            return InvocationOutcome(index=index, key=key, response=response)

        self._logger.info(
            f"Running {num_invocations} invocations at {isolation_level} "
            f"(retry={with_retry}, pool_size={self._pool_size})..."
        )
        with start_transaction(op="driver", name="RUN concurrent invocations") as tx:
            tx.set_tag("isolation_level", isolation_level.value)
            tx.set_tag("with_retry", str(with_retry))
            outcomes = await asyncio.gather(
                *(_invoke(index, key) for index, key in enumerate(keys))
            )

        failures = Counter(o.error_type for o in outcomes if not o.ok)
        self._logger.info(
            f"Finished {num_invocations} invocations: "
            f"{num_invocations - failures.total()} succeeded, failures {dict(failures)}"
        )
        return list(outcomes)
