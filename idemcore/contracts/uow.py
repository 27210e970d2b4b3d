from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from logging import Logger
from typing import AsyncContextManager, Generic, TypeVar

from idemcore.contracts.repositories.idempotency import IdempotencyRepository
from idemcore.domains.idempotency import (
    AbortedConstraintViolation,
    AbortedOther,
    AbortedSerializationFailure,
    AbortKind,
    Committed,
    IsolationLevel,
    TransactionOutcome,
)
from idemcore.services.exceptions.store import (
    ConstraintViolationError,
    SerializationFailureError,
    StoreUnavailableError,
)

ResultT = TypeVar("ResultT")

AfterCommit = Callable[[], Awaitable[None]]


class IdempotencyUOWContext:
    """
    Handle passed to a unit of work.

    Exposes the `records` repository bound to the open transaction and
    lets the unit of work defer side effects until the transaction commits.
    """

    records: IdempotencyRepository

    def __init__(self) -> None:
        self._after_commit: list[AfterCommit] = []

    def after_commit(self, callback: AfterCommit) -> None:
        """Schedule `callback` to run once this transaction has committed."""
        self._after_commit.append(callback)

    def pull_after_commit(self) -> list[AfterCommit]:
        callbacks, self._after_commit = self._after_commit, []
        return callbacks


ContextT = TypeVar("ContextT", bound=IdempotencyUOWContext, covariant=True)


class IdempotencyUnitOfWork(ABC, Generic[ContextT]):
    """
    **Unit-of-Work** contract for the idempotency store.

    Everything executed inside `begin` either persists together (`COMMIT`)
    or not at all (`ROLLBACK`). Adapters translate storage-engine specific
    abort signals into `ConstraintViolationError`, `SerializationFailureError`
    and `StoreUnavailableError` so callers never see driver exceptions.
    """

    def __init__(self, *, logger: Logger) -> None:
        self._logger = logger

    @abstractmethod
    def begin(
        self, *, isolation_level: IsolationLevel
    ) -> AsyncContextManager[ContextT]: ...

    async def run(
        self,
        isolation_level: IsolationLevel,
        unit_of_work: Callable[[ContextT], Awaitable[ResultT]],
    ) -> TransactionOutcome:
        """
        Run `unit_of_work` in a fresh transaction and report how it ended.

        Never raises for storage failures: aborts come back as one of the
        `Aborted*` outcomes. Callbacks registered with `after_commit` run only
        when the outcome is `Committed`, in registration order. A failing
        callback is logged and the rest still run: the transaction has
        already committed, so the outcome stays `Committed`.
        """
        try:
            async with self.begin(isolation_level=isolation_level) as ctx:
                result = await unit_of_work(ctx)
        except ConstraintViolationError as e:
            return AbortedConstraintViolation(e)
        except SerializationFailureError as e:
            return AbortedSerializationFailure(e)
        except StoreUnavailableError as e:
            return AbortedOther(e, AbortKind.STORE_UNAVAILABLE)
        except Exception as e:
            return AbortedOther(e)

        for callback in ctx.pull_after_commit():
            try:
                await callback()
            except Exception:
                self._logger.error(
                    f"After-commit callback {callback!r} failed", exc_info=True
                )

        return Committed(result)

    async def count_entries(self) -> int:
        """Requests plus responses currently committed in the store."""
        async with self.begin(isolation_level=IsolationLevel.READ_COMMITTED) as ctx:
            return await ctx.records.count_entries()
