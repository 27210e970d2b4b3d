from dependency_injector import containers, providers
from sqlalchemy.ext.asyncio import create_async_engine

from idemcore.infra.database.uow import (
    PgIdempotencyUnitOfWork,
    create_isolation_sessionmakers,
)
from idemcore.infra.logging import logger
from idemcore.infra.memory.database import MemoryDatabase
from idemcore.infra.memory.uow import MemoryIdempotencyUnitOfWork
from idemcore.schemas.retry import Backoff, RetryPolicy
from idemcore.services.driver import ConcurrentInvocationDriver
from idemcore.services.idempotency import IdempotentExecutor, echo_operation
from idemcore.services.retry import ConflictRetryController


class Container(containers.DeclarativeContainer):
    config = providers.Configuration()
    logger = providers.Object(logger)

    tx_engine = providers.Singleton(
        create_async_engine,
        config.postgres.dsn,
        connect_args=providers.Dict(
            server_settings=providers.Dict(search_path=config.postgres.sql_schema)
        ),
        pool_size=config.postgres.pool_size,
        pool_pre_ping=False,
        pool_recycle=3600,
    )
    sessionmakers = providers.Singleton(create_isolation_sessionmakers, tx_engine)
    memory_database = providers.Singleton(
        MemoryDatabase,
        predicate_pages=config.memory.predicate_pages,
        statement_latency=config.memory.statement_latency,
        lock_timeout=config.memory.lock_timeout,
    )

    uow = providers.Selector(
        config.store.backend,
        postgres=providers.Factory(
            PgIdempotencyUnitOfWork, sessionmakers, logger=logger
        ),
        memory=providers.Factory(
            MemoryIdempotencyUnitOfWork, memory_database, logger=logger
        ),
    )

    operation = providers.Object(echo_operation)
    executor = providers.Factory(
        IdempotentExecutor,
        uow,
        operation,
        logger=logger,
    )
    retry_policy = providers.Factory(
        RetryPolicy,
        max_retries=config.retry.max_retries,
        initial_delay=config.retry.initial_delay,
        backoff_multiplier=config.retry.backoff_multiplier,
        max_delay=config.retry.max_delay,
        jitter=config.retry.jitter,
        retryable_failures=config.retry.retryable_failures,
        resolve_duplicates=config.retry.resolve_duplicates,
        unavailable=providers.Factory(
            Backoff,
            max_retries=config.retry.unavailable.max_retries,
            initial_delay=config.retry.unavailable.initial_delay,
            backoff_multiplier=config.retry.unavailable.backoff_multiplier,
            max_delay=config.retry.unavailable.max_delay,
            jitter=config.retry.unavailable.jitter,
        ),
    )
    retry_controller = providers.Factory(
        ConflictRetryController,
        executor,
        policy=retry_policy,
        logger=logger,
    )
    driver = providers.Factory(
        ConcurrentInvocationDriver,
        executor,
        retry_controller,
        pool_size=config.driver.pool_size,
        logger=logger,
    )
