from collections.abc import Awaitable, Callable
from functools import partial
from logging import Logger

from idemcore.contracts.uow import IdempotencyUnitOfWork, IdempotencyUOWContext
from idemcore.domains.idempotency import Committed, IsolationLevel
from idemcore.services.exceptions.idempotency import (
    IncompleteRecordError,
    OperationAbortedError,
)

Operation = Callable[[str], Awaitable[str]]
SideEffect = Callable[[str, str], Awaitable[None]]


async def echo_operation(payload: str) -> str:
    return f"response-{payload}"


class IdempotentExecutor:
    def __init__(
        self,
        uow: IdempotencyUnitOfWork[IdempotencyUOWContext],
        operation: Operation = echo_operation,
        *,
        on_committed: SideEffect | None = None,
        logger: Logger,
    ) -> None:
        self._uow = uow
        self._operation = operation
        self._on_committed = on_committed
        self._logger = logger

    async def execute(
        self, key: str, payload: str, isolation_level: IsolationLevel
    ) -> str:
        """
        Run the operation for `key` **at most once** and return its response.

        Behaviour (one transaction):
        - **Key already completed** -> stored response is returned, `payload`
          is ignored and the operation is *not* run again.
        - **Key unknown** -> request is inserted, the operation computes the
          response, the response is attached, and `on_committed` is scheduled
          to fire after `COMMIT`.

        The executor never retries: any abort is surfaced to the caller.

        Raises:
            OperationAbortedError
                If the transaction did not commit (concurrent winner, serialization
                failure, unavailable store, failing operation).
        """

        async def _unit_of_work(ctx: IdempotencyUOWContext) -> str:
            record = await ctx.records.lookup(key)
            if record is not None:
                if record.response is None:
                    raise IncompleteRecordError(key)
                self._logger.info(
                    f"Idempotency key [{key}] already exists, returning stored response"
                )
                return record.response

            self._logger.info(f"Idempotency key [{key}] does not exist, executing...")
            await ctx.records.insert_request(key, payload)
            response = await self._operation(payload)
            await ctx.records.attach_response(key, response)

            if self._on_committed is not None:
                ctx.after_commit(partial(self._on_committed, key, response))
            return response

        outcome = await self._uow.run(isolation_level, _unit_of_work)
        match outcome:
            case Committed(response):
                return response
            case aborted:
                self._logger.info(
                    f"Transaction for idempotency key [{key}] aborted: {aborted.kind}"
                )
                raise OperationAbortedError(key, aborted) from aborted.cause

    async def replay(
        self, key: str, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> str | None:
        """Stored response for `key`, or None if the key has not completed."""

        async def _unit_of_work(ctx: IdempotencyUOWContext) -> str | None:
            record = await ctx.records.lookup(key)
            return record.response if record is not None else None

        outcome = await self._uow.run(isolation_level, _unit_of_work)
        if isinstance(outcome, Committed):
            return outcome.result
        raise OperationAbortedError(key, outcome) from outcome.cause
