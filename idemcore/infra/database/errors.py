from sqlalchemy.exc import DBAPIError, InterfaceError

from idemcore.services.exceptions.store import (
    ConstraintViolationError,
    SerializationFailureError,
    StoreError,
    StoreUnavailableError,
)

UNIQUE_VIOLATION = "23505"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
CONNECTION_EXCEPTION_CLASS = "08"
OPERATOR_INTERVENTION_CLASS = "57P"

DriverError = (DBAPIError, OSError)


def sqlstate_of(exc: DBAPIError) -> str | None:
    """SQLSTATE reported by the DBAPI driver (asyncpg and psycopg both expose it)."""
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_error(exc: BaseException, *, key: str | None = None) -> StoreError:
    """Map a driver-level exception onto the store error taxonomy."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, OSError):
        return StoreUnavailableError(f"Idempotency store is unreachable: {exc}")
    if not isinstance(exc, DBAPIError):
        return StoreError(str(exc))

    sqlstate = sqlstate_of(exc)
    if sqlstate == UNIQUE_VIOLATION:
        return ConstraintViolationError(key)
    if sqlstate in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
        return SerializationFailureError(str(exc.orig))
    if (
        exc.connection_invalidated
        or isinstance(exc, InterfaceError)
        or (
            sqlstate is not None
            and sqlstate.startswith(
                (CONNECTION_EXCEPTION_CLASS, OPERATOR_INTERVENTION_CLASS)
            )
        )
    ):
        return StoreUnavailableError(f"Idempotency store is unavailable: {exc.orig}")
    return StoreError(f"Idempotency store failed [{sqlstate}]: {exc.orig}")
