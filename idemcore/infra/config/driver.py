from pydantic import BaseModel, Field

from idemcore.domains.idempotency import IsolationLevel


class DriverSettings(BaseModel):
    pool_size: int = Field(default=10, ge=1)
    isolation_level: IsolationLevel = Field(default=IsolationLevel.SERIALIZABLE)
