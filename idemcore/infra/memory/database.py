"""
Test and benchmark double for the transactional store.

PostgreSQL is the storage engine; `MemoryDatabase` only stands in for it in
tests and local benchmarks, where no server is around. It models the
behaviour the idempotency protocol depends on:

- a unique constraint on `key`, with inserts of a key claimed by another live
  transaction waiting for that transaction to finish;
- READ COMMITTED statements that see the latest committed rows;
- SERIALIZABLE transactions that read a snapshot taken at `begin` and are
  validated at commit: if a transaction that committed in the meantime wrote
  to a predicate page this one read, the commit aborts.

Predicate locks are held per *page* (`crc32(key) % predicate_pages`), not per
key, so transactions on different keys can still conflict. Real engines do
the same once their lock granularity gets coarser than a row.
"""

import asyncio
import zlib
from dataclasses import replace

from idemcore.domains.idempotency import IdempotencyRecord, IsolationLevel
from idemcore.services.exceptions.store import (
    ConstraintViolationError,
    RecordNotFoundError,
    SerializationFailureError,
    StoreError,
    StoreUnavailableError,
)


class MemoryTransaction:
    def __init__(
        self,
        *,
        isolation_level: IsolationLevel,
        start_seq: int,
        snapshot: dict[str, IdempotencyRecord] | None,
    ) -> None:
        self.isolation_level = isolation_level
        self.start_seq = start_seq
        self.snapshot = snapshot
        self.writes: dict[str, IdempotencyRecord] = {}
        self.read_pages: set[int] = set()
        self.write_pages: set[int] = set()
        self.active = True
        self.finished = asyncio.Event()

    @property
    def serializable(self) -> bool:
        return self.isolation_level is IsolationLevel.SERIALIZABLE


class MemoryDatabase:
    def __init__(
        self,
        *,
        predicate_pages: int = 16,
        statement_latency: float = 0.0,
        lock_timeout: float | None = 5.0,
    ) -> None:
        if predicate_pages < 1:
            raise ValueError("predicate_pages must be at least 1")
        self._predicate_pages = predicate_pages
        self._statement_latency = statement_latency
        self._lock_timeout = lock_timeout

        self._rows: dict[str, IdempotencyRecord] = {}
        self._claims: dict[str, MemoryTransaction] = {}
        self._commit_log: list[tuple[int, frozenset[int]]] = []
        self._seq = 0
        self._active: set[MemoryTransaction] = set()
        self._available = True

    def page_of(self, key: str) -> int:
        return zlib.crc32(key.encode()) % self._predicate_pages

    def set_available(self, available: bool) -> None:
        """Simulate the store going away (or coming back)."""
        self._available = available

    def records(self) -> dict[str, IdempotencyRecord]:
        """Committed rows, outside of any transaction."""
        return dict(self._rows)

    def committed_entries(self) -> int:
        return sum(1 + record.completed for record in self._rows.values())

    def _check_available(self) -> None:
        if not self._available:
            raise StoreUnavailableError()

    def begin(self, isolation_level: IsolationLevel) -> MemoryTransaction:
        self._check_available()
        snapshot = (
            dict(self._rows) if isolation_level is IsolationLevel.SERIALIZABLE else None
        )
        tx = MemoryTransaction(
            isolation_level=isolation_level, start_seq=self._seq, snapshot=snapshot
        )
        self._active.add(tx)
        return tx

    async def _statement(self, tx: MemoryTransaction) -> None:
        if not tx.active:
            raise StoreError("Transaction is already closed.")
        await asyncio.sleep(self._statement_latency)
        self._check_available()

    def _visible(self, tx: MemoryTransaction, key: str) -> IdempotencyRecord | None:
        if key in tx.writes:
            return tx.writes[key]
        rows = tx.snapshot if tx.snapshot is not None else self._rows
        return rows.get(key)

    async def _wait_for_claim(self, tx: MemoryTransaction, key: str) -> None:
        while (owner := self._claims.get(key)) is not None and owner is not tx:
            try:
                await asyncio.wait_for(owner.finished.wait(), self._lock_timeout)
            except TimeoutError as e:
                raise SerializationFailureError(
                    f"Lock wait on idempotency key [{key}] timed out."
                ) from e

    async def lookup(self, tx: MemoryTransaction, key: str) -> IdempotencyRecord | None:
        await self._statement(tx)
        if tx.serializable:
            tx.read_pages.add(self.page_of(key))
        return self._visible(tx, key)

    async def insert_request(
        self, tx: MemoryTransaction, key: str, request: str
    ) -> None:
        await self._statement(tx)
        if key in tx.writes:
            raise ConstraintViolationError(key)

        await self._wait_for_claim(tx, key)
        if key in self._rows:
            if tx.snapshot is not None and key not in tx.snapshot:
                raise SerializationFailureError(
                    f"Idempotency key [{key}] was inserted by a concurrent transaction."
                )
            raise ConstraintViolationError(key)

        self._claims[key] = tx
        tx.writes[key] = IdempotencyRecord(key=key, request=request)
        tx.write_pages.add(self.page_of(key))

    async def attach_response(
        self, tx: MemoryTransaction, key: str, response: str
    ) -> None:
        await self._statement(tx)
        if key not in tx.writes:
            await self._wait_for_claim(tx, key)
            if tx.snapshot is not None and self._rows.get(key) != tx.snapshot.get(key):
                raise SerializationFailureError(
                    f"Idempotency key [{key}] was updated by a concurrent transaction."
                )

        record = self._visible(tx, key)
        if record is None:
            raise RecordNotFoundError(key)

        self._claims[key] = tx
        tx.writes[key] = replace(record, response=response)
        tx.write_pages.add(self.page_of(key))

    async def count_entries(self, tx: MemoryTransaction) -> int:
        await self._statement(tx)
        if tx.serializable:
            tx.read_pages.update(range(self._predicate_pages))
        rows = tx.snapshot if tx.snapshot is not None else self._rows
        merged = {**rows, **tx.writes}
        return sum(1 + record.completed for record in merged.values())

    async def commit(self, tx: MemoryTransaction) -> None:
        await self._statement(tx)
        # Everything below runs without yielding, so the commit is atomic.
        try:
            if tx.serializable:
                for seq, pages in self._commit_log:
                    if seq > tx.start_seq and not pages.isdisjoint(tx.read_pages):
                        raise SerializationFailureError(
                            "Could not serialize access due to read/write "
                            "dependencies among transactions."
                        )
            if tx.writes:
                self._seq += 1
                self._rows.update(tx.writes)
                self._commit_log.append((self._seq, frozenset(tx.write_pages)))
        finally:
            self._close(tx)

    def rollback(self, tx: MemoryTransaction) -> None:
        if tx.active:
            self._close(tx)

    def _close(self, tx: MemoryTransaction) -> None:
        tx.active = False
        for key in tx.writes:
            if self._claims.get(key) is tx:
                del self._claims[key]
        self._active.discard(tx)
        tx.finished.set()

        # Log entries older than every live transaction can no longer conflict.
        horizon = min((t.start_seq for t in self._active), default=self._seq)
        self._commit_log = [
            (seq, pages) for seq, pages in self._commit_log if seq > horizon
        ]
