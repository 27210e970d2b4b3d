from contextlib import asynccontextmanager
from logging import Logger
from typing import AsyncIterator

from idemcore.contracts.uow import IdempotencyUnitOfWork, IdempotencyUOWContext
from idemcore.domains.idempotency import IsolationLevel
from idemcore.infra.memory.database import MemoryDatabase, MemoryTransaction
from idemcore.infra.memory.repository import MemoryIdempotencyRepository


class MemoryIdempotencyUOWContext(IdempotencyUOWContext):
    def __init__(
        self, *, database: MemoryDatabase, transaction: MemoryTransaction
    ) -> None:
        super().__init__()
        self._transaction = transaction
        self.records = MemoryIdempotencyRepository(database, transaction)


class MemoryIdempotencyUnitOfWork(IdempotencyUnitOfWork[MemoryIdempotencyUOWContext]):
    """Unit of work over a shared `MemoryDatabase`."""

    def __init__(self, database: MemoryDatabase, *, logger: Logger) -> None:
        super().__init__(logger=logger)
        self._database = database

    @asynccontextmanager
    async def begin(
        self, *, isolation_level: IsolationLevel
    ) -> AsyncIterator[MemoryIdempotencyUOWContext]:
        transaction = self._database.begin(isolation_level)
        ctx = MemoryIdempotencyUOWContext(
            database=self._database, transaction=transaction
        )
        try:
            yield ctx
            await self._database.commit(transaction)
        finally:
            self._database.rollback(transaction)
