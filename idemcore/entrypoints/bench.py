"""
Concurrency benchmark for the idempotency protocol.

    python -m idemcore.entrypoints.bench --runs 50 --max-id 10 \
        --isolation serializable --retry

Fires `--runs` concurrent invocations with keys drawn from `[0, --max-id)`
(or unique keys when `--max-id` is omitted), then reports how many succeeded
and how many entries the store holds. With every key completed exactly once
the store holds two entries per distinct key.
"""

import argparse
import asyncio
import random
import sys
from collections import Counter

from idemcore.container import Container
from idemcore.domains.idempotency import IsolationLevel
from idemcore.infra.config import settings
from idemcore.infra.database.schema import create_schema
from idemcore.infra.sentry import init_sentry
from idemcore.schemas.driver import InvocationOutcome
from idemcore.services.driver import colliding_keys, unique_keys

ISOLATION_LEVELS = {
    "read-committed": IsolationLevel.READ_COMMITTED,
    "serializable": IsolationLevel.SERIALIZABLE,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Idempotency concurrency benchmark")
    parser.add_argument("--runs", type=int, default=50, help="Concurrent invocations")
    parser.add_argument(
        "--max-id",
        type=int,
        default=None,
        help="Draw keys from [0, MAX_ID); unique keys when omitted",
    )
    parser.add_argument(
        "--isolation",
        choices=list(ISOLATION_LEVELS),
        default=next(
            name
            for name, level in ISOLATION_LEVELS.items()
            if level == settings.driver.isolation_level
        ),
    )
    parser.add_argument(
        "--retry",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Retry aborted transactions (default: on)",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "postgres"],
        default=settings.store.backend,
    )
    parser.add_argument("--pool-size", type=int, default=settings.driver.pool_size)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create the idempotency table before running (postgres only)",
    )
    return parser


async def run_bench(
    container: Container, args: argparse.Namespace
) -> tuple[list[InvocationOutcome], int]:
    postgres = args.backend == "postgres"
    if postgres and args.create_schema:
        await create_schema(container.tx_engine())

    if args.max_id is None:
        key_generator = unique_keys()
    else:
        key_generator = colliding_keys(args.max_id, random.Random(args.seed))

    try:
        outcomes = await container.driver().run_concurrently(
            args.runs,
            key_generator,
            ISOLATION_LEVELS[args.isolation],
            args.retry,
        )
        entries = await container.uow().count_entries()
    finally:
        if postgres:
            await container.tx_engine().dispose()
    return outcomes, entries


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    container = Container()
    container.config.from_pydantic(settings)
    container.config.store.backend.from_value(args.backend)
    container.config.driver.pool_size.from_value(args.pool_size)

    init_sentry()

    outcomes, entries = asyncio.run(run_bench(container, args))

    failures = Counter(o.error_type for o in outcomes if not o.ok)
    print(f"invocations: {len(outcomes)}")
    print(f"succeeded:   {len(outcomes) - failures.total()}")
    for error_type, count in sorted(failures.items()):
        print(f"failed:      {count} ({error_type})")
    print(f"entries:     {entries}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
