from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine

from idemcore.infra.database.errors import DriverError
from idemcore.infra.database.models import Base, IdempotencyRecord
from idemcore.infra.utils.retry import retry


@retry(max_attempts=5, delay=0.5, retry_on=DriverError)
async def create_schema(engine: AsyncEngine) -> None:
    """Create the idempotency table if missing (benchmarks and tests only)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def clear_records(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.execute(delete(IdempotencyRecord))
