from typing import Literal

from pydantic import BaseModel, Field


class StoreSettings(BaseModel):
    backend: Literal["postgres", "memory"] = Field(default="postgres")


class MemoryStoreSettings(BaseModel):
    predicate_pages: int = Field(default=16, ge=1)
    statement_latency: float = Field(default=0.0, ge=0)
    lock_timeout: float | None = Field(default=5.0)
