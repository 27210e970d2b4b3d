from sentry_sdk import start_span
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from idemcore.contracts.repositories.idempotency import IdempotencyRepository
from idemcore.domains.idempotency import IdempotencyRecord
from idemcore.infra.database.errors import UNIQUE_VIOLATION, sqlstate_of
from idemcore.infra.database.models import IdempotencyRecord as IdempotencyRecordModel
from idemcore.infra.utils.time import now_utc
from idemcore.services.exceptions.store import (
    ConstraintViolationError,
    RecordNotFoundError,
)


class PgIdempotencyRepository(IdempotencyRepository):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__()
        self._session = session

    async def lookup(self, key: str) -> IdempotencyRecord | None:
        with start_span(op="db", name="lookup_idempotency_record") as span:
            span.set_tag("idempotency.key", key)

            stmt = select(
                IdempotencyRecordModel.key,
                IdempotencyRecordModel.request,
                IdempotencyRecordModel.response,
            ).where(IdempotencyRecordModel.key == key)
            row = (await self._session.execute(stmt)).first()
            if row is None:
                return None

            return IdempotencyRecord(
                key=row.key, request=row.request, response=row.response
            )

    async def insert_request(self, key: str, request: str) -> None:
        """
        Record the request for `key` inside the **current transaction**.

        Plain INSERT without `ON CONFLICT`: a concurrent loser must observe
        the unique violation.
        """
        with start_span(op="db", name="insert_idempotency_request") as span:
            span.set_tag("idempotency.key", key)

            stmt = insert(IdempotencyRecordModel).values(key=key, request=request)
            try:
                await self._session.execute(stmt)
            except IntegrityError as e:
                if sqlstate_of(e) == UNIQUE_VIOLATION:
                    raise ConstraintViolationError(key) from e
                raise

    async def attach_response(self, key: str, response: str) -> None:
        with start_span(op="db", name="attach_idempotency_response") as span:
            span.set_tag("idempotency.key", key)

            stmt = (
                update(IdempotencyRecordModel)
                .where(IdempotencyRecordModel.key == key)
                .values(response=response, completed_at=now_utc())
                .returning(IdempotencyRecordModel.id)
            )
            if (await self._session.execute(stmt)).first() is None:
                raise RecordNotFoundError(key)

    async def count_entries(self) -> int:
        with start_span(op="db", name="count_idempotency_entries"):
            # COUNT(column) skips NULLs, so pending responses are not counted.
            stmt = select(
                func.count(IdempotencyRecordModel.request)
                + func.count(IdempotencyRecordModel.response)
            )
            return (await self._session.execute(stmt)).scalar_one()
