import asyncio
from collections.abc import Mapping
from contextlib import asynccontextmanager
from logging import Logger
from typing import AsyncIterator

from sentry_sdk import start_span
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    AsyncSessionTransaction,
    async_sessionmaker,
)

from idemcore.contracts.uow import IdempotencyUnitOfWork, IdempotencyUOWContext
from idemcore.domains.idempotency import IsolationLevel
from idemcore.infra.database.errors import DriverError, translate_error
from idemcore.infra.database.repositories.idempotency import PgIdempotencyRepository


def create_isolation_sessionmakers(
    engine: AsyncEngine,
) -> dict[IsolationLevel, async_sessionmaker[AsyncSession]]:
    """One sessionmaker per isolation level, all sharing the engine's pool."""
    return {
        level: async_sessionmaker(
            engine.execution_options(isolation_level=level.value),
            expire_on_commit=False,
        )
        for level in IsolationLevel
    }


class PgIdempotencyUOWContext(IdempotencyUOWContext):
    """Holder for a single DB transaction context.

    Contains the opened `AsyncSession`, the in-flight SQLAlchemy transaction
    and the `records` repository bound to that session.
    """

    def __init__(
        self, *, session: AsyncSession, transaction: AsyncSessionTransaction
    ) -> None:
        super().__init__()
        self._session = session
        self._transaction = transaction
        self.records = PgIdempotencyRepository(session)


class PgIdempotencyUnitOfWork(IdempotencyUnitOfWork[PgIdempotencyUOWContext]):
    """Demarcates a single PostgreSQL transaction at a chosen isolation level.

    What it provides
    - Opens a new AsyncSession from the sessionmaker bound to the requested
      isolation level and begins a transaction.
    - `begin()` yields a `PgIdempotencyUOWContext` and guarantees that all
      work inside the block commits atomically or rolls back on error.
    - Driver errors raised by statements or by `COMMIT` are re-raised as
      store errors (`ConstraintViolationError`, `SerializationFailureError`,
      `StoreUnavailableError`).

    Usage
    >>> async with uow.begin(isolation_level=IsolationLevel.SERIALIZABLE) as ctx:
    ...     await ctx.records.lookup("order-42")
    """

    def __init__(
        self,
        sessionmakers: Mapping[IsolationLevel, async_sessionmaker[AsyncSession]],
        *,
        logger: Logger,
    ) -> None:
        super().__init__(logger=logger)
        self._sessionmakers = sessionmakers

    async def _start(self, isolation_level: IsolationLevel) -> PgIdempotencyUOWContext:
        session = self._sessionmakers[isolation_level]()
        try:
            transaction = await session.begin()
        except DriverError as e:
            await session.close()
            raise translate_error(e) from e
        return PgIdempotencyUOWContext(session=session, transaction=transaction)

    async def _rollback(self, ctx: PgIdempotencyUOWContext) -> None:
        try:
            await ctx._session.rollback()
        except Exception as e:
            self._logger.warning(f"Rollback of idempotency transaction failed: {e!r}")

    async def _finish(
        self, exc: BaseException | None, *, ctx: PgIdempotencyUOWContext
    ) -> None:
        try:
            if exc is None:
                await ctx._transaction.commit()
            else:
                raise exc
        except DriverError as e:
            await self._rollback(ctx)
            raise translate_error(e) from e
        except BaseException:
            await self._rollback(ctx)
            raise
        finally:
            await ctx._session.close()

    @asynccontextmanager
    async def begin(
        self, *, isolation_level: IsolationLevel
    ) -> AsyncIterator[PgIdempotencyUOWContext]:
        """Open a transaction and yield a unit-of-work context.

        Guarantees commit on normal exit and rollback on exception, and always
        closes the session.
        """
        with start_span(op="db", name="idempotency transaction") as span:
            span.set_tag("isolation_level", isolation_level.value)
            ctx = await self._start(isolation_level)
            try:
                yield ctx
            except BaseException as ex:  # With CancelledError
                await asyncio.shield(self._finish(ex, ctx=ctx))
            else:
                await asyncio.shield(self._finish(None, ctx=ctx))
