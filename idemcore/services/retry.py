import asyncio
import random
from collections import Counter
from collections.abc import Awaitable, Callable
from logging import Logger

from idemcore.domains.idempotency import AbortKind, IsolationLevel, RetryAttempt
from idemcore.schemas.retry import RetryPolicy
from idemcore.services.exceptions.idempotency import (
    OperationAbortedError,
    RetriesExhaustedError,
)
from idemcore.services.exceptions.store import StoreUnavailableError
from idemcore.services.idempotency import IdempotentExecutor


class ConflictRetryController:
    """
    Re-invokes the executor when its transaction is aborted by a transient
    conflict.

    Every retry is a fresh transaction with the same key and payload; nothing
    from the aborted attempt survives. Delays grow geometrically, are capped at
    `max_delay` and get uniform jitter so that callers aborted together do not
    retry together. An unreachable store consumes the `unavailable` budget of
    the policy, every other retryable abort the main one.
    """

    def __init__(
        self,
        executor: IdempotentExecutor,
        *,
        policy: RetryPolicy,
        logger: Logger,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        on_attempt: Callable[[RetryAttempt], None] | None = None,
    ) -> None:
        self._executor = executor
        self._policy = policy
        self._logger = logger
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._on_attempt = on_attempt

    async def execute_with_retry(
        self,
        key: str,
        payload: str,
        isolation_level: IsolationLevel,
        policy: RetryPolicy | None = None,
    ) -> str:
        """
        Raises:
            RetriesExhaustedError
                If the schedule of a retryable failure ran out of retries.
            StoreUnavailableError
                If the store is unreachable and that is not retryable under `policy`.
            OperationAbortedError
                On any other non-retryable abort.
        """
        policy = policy or self._policy
        attempts: list[RetryAttempt] = []
        retries: Counter[bool] = Counter()
        attempt = RetryAttempt(attempt_number=0, delay=0.0)

        while True:
            attempts.append(attempt)
            if self._on_attempt is not None:
                self._on_attempt(attempt)

            try:
                return await self._executor.execute(key, payload, isolation_level)
            except OperationAbortedError as e:
                error = e

            if (
                error.kind is AbortKind.CONSTRAINT_VIOLATION
                and policy.resolve_duplicates
            ):
                # A concurrent winner owns the key; its response is our answer.
                try:
                    response = await self._executor.replay(key)
                except OperationAbortedError as e:
                    error = e
                else:
                    if response is not None:
                        self._logger.info(
                            f"Idempotency key [{key}] completed concurrently, "
                            "returning stored response"
                        )
                        return response

            if not policy.is_retryable(error.kind):
                self._logger.warning(
                    f"Non-retryable abort for idempotency key [{key}]: {error.kind}"
                )
                if isinstance(error.cause, StoreUnavailableError):
                    raise error.cause
                raise error

            unavailable = error.kind is AbortKind.STORE_UNAVAILABLE
            backoff = policy.backoff_for(error.kind)
            if retries[unavailable] >= backoff.max_retries:
                self._logger.error(
                    f"Retries exhausted for idempotency key [{key}] "
                    f"after {len(attempts)} attempts"
                )
                raise RetriesExhaustedError(key, attempts, error) from error

            delay = backoff.compute_delay(retries[unavailable], self._rng)
            retries[unavailable] += 1
            self._logger.info(
                f"Retrying idempotency key [{key}] in {delay:.3f}s "
                f"(retry {retries[unavailable]}/{backoff.max_retries}): "
                f"{error.kind}"
            )
            await self._sleep(delay)
            attempt = RetryAttempt(
                attempt_number=attempt.attempt_number + 1,
                delay=delay,
                last_outcome=error.outcome,
            )
