import os

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from idemcore.infra.config.driver import DriverSettings
from idemcore.infra.config.postgres import PostgreSQLSettings
from idemcore.infra.config.retry import RetrySettings
from idemcore.infra.config.sentry import SentrySettings
from idemcore.infra.config.store import MemoryStoreSettings, StoreSettings


class Settings(BaseSettings):
    postgres: PostgreSQLSettings = Field(default_factory=PostgreSQLSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    memory: MemoryStoreSettings = Field(default_factory=MemoryStoreSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    driver: DriverSettings = Field(default_factory=DriverSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_prefix="IDEMCORE_", env_nested_delimiter="__")


def _generate_settings():
    load_dotenv(override=True, dotenv_path=os.getcwd() + "/.env")
    return Settings()


settings = _generate_settings()
