import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from idemcore.domains.idempotency import (
    AbortKind,
    AbortedConstraintViolation,
    AbortedSerializationFailure,
    Committed,
    IsolationLevel,
)
from idemcore.infra.database.errors import translate_error
from idemcore.infra.database.uow import PgIdempotencyUnitOfWork
from idemcore.services.exceptions.store import (
    ConstraintViolationError,
    SerializationFailureError,
    StoreError,
    StoreUnavailableError,
)


class FakeDriverError(Exception):
    def __init__(self, sqlstate: str | None) -> None:
        super().__init__(f"driver error {sqlstate}")
        self.sqlstate = sqlstate


def dbapi_error(sqlstate: str | None, cls=DBAPIError, **kwargs) -> DBAPIError:
    statement = "INSERT INTO idempotency_records ..."
    return cls(statement, {}, FakeDriverError(sqlstate), **kwargs)


@pytest.mark.parametrize(
    "error, expected",
    [
        (dbapi_error("23505", IntegrityError), ConstraintViolationError),
        (dbapi_error("40001"), SerializationFailureError),
        (dbapi_error("40P01"), SerializationFailureError),
        (dbapi_error("08006", OperationalError), StoreUnavailableError),
        (dbapi_error("57P01", OperationalError), StoreUnavailableError),
        (dbapi_error(None, connection_invalidated=True), StoreUnavailableError),
        (ConnectionRefusedError("refused"), StoreUnavailableError),
    ],
)
def test_translate_error(error, expected):
    assert type(translate_error(error)) is expected


def test_translate_error_keeps_key_and_unknown_states():
    violation = translate_error(dbapi_error("23505", IntegrityError), key="order-1")
    assert isinstance(violation, ConstraintViolationError)
    assert violation.key == "order-1"

    unknown = translate_error(dbapi_error("42P01"))
    assert type(unknown) is StoreError
    assert "42P01" in str(unknown)


def test_translate_error_passes_store_errors_through():
    error = SerializationFailureError()
    assert translate_error(error) is error


def _pg_uow(*, begin_error=None, commit_error=None):
    transaction = MagicMock()
    transaction.commit = AsyncMock(side_effect=commit_error)

    session = MagicMock()
    session.begin = AsyncMock(return_value=transaction, side_effect=begin_error)
    session.rollback = AsyncMock()
    session.close = AsyncMock()

    factory = MagicMock(return_value=session)
    uow = PgIdempotencyUnitOfWork(
        {level: factory for level in IsolationLevel},
        logger=logging.getLogger("idemcore.tests"),
    )
    return uow, session, transaction


async def _noop(ctx):
    return "ok"


@pytest.mark.asyncio
async def test_pg_uow_commits_and_closes():
    uow, session, transaction = _pg_uow()

    outcome = await uow.run(IsolationLevel.SERIALIZABLE, _noop)

    assert outcome == Committed("ok")
    transaction.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_pg_uow_translates_commit_serialization_failure():
    uow, session, _ = _pg_uow(commit_error=dbapi_error("40001"))

    outcome = await uow.run(IsolationLevel.SERIALIZABLE, _noop)

    assert isinstance(outcome, AbortedSerializationFailure)
    session.rollback.assert_awaited_once()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_pg_uow_translates_statement_errors():
    uow, session, transaction = _pg_uow()

    async def _work(ctx):
        raise dbapi_error("23505", IntegrityError)

    outcome = await uow.run(IsolationLevel.READ_COMMITTED, _work)

    assert isinstance(outcome, AbortedConstraintViolation)
    transaction.commit.assert_not_awaited()
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_pg_uow_reports_unreachable_store():
    uow, session, _ = _pg_uow(begin_error=ConnectionRefusedError("refused"))

    outcome = await uow.run(IsolationLevel.READ_COMMITTED, _noop)

    assert outcome.kind is AbortKind.STORE_UNAVAILABLE
    session.close.assert_awaited_once()
