from idemcore.contracts.repositories.idempotency import IdempotencyRepository
from idemcore.domains.idempotency import IdempotencyRecord
from idemcore.infra.memory.database import MemoryDatabase, MemoryTransaction


class MemoryIdempotencyRepository(IdempotencyRepository):
    def __init__(
        self, database: MemoryDatabase, transaction: MemoryTransaction
    ) -> None:
        super().__init__()
        self._database = database
        self._transaction = transaction

    async def lookup(self, key: str) -> IdempotencyRecord | None:
        return await self._database.lookup(self._transaction, key)

    async def insert_request(self, key: str, request: str) -> None:
        await self._database.insert_request(self._transaction, key, request)

    async def attach_response(self, key: str, response: str) -> None:
        await self._database.attach_response(self._transaction, key, response)

    async def count_entries(self) -> int:
        return await self._database.count_entries(self._transaction)
