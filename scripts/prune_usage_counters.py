from __future__ import annotations

import argparse
import asyncio

from slanglab.core.logging import configure_logging
from slanglab.persistence.db import SessionLocal
from slanglab.services.usage import prune_usage_counters


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete usage counters for closed periods past retention.")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Override USAGE_COUNTER_RETENTION_DAYS; current periods are always kept.",
    )
    return parser.parse_args()


async def prune(retention_days: int | None) -> None:
    async with SessionLocal() as session:
        deleted = await prune_usage_counters(session, retention_days=retention_days)
        await session.commit()
    print(f"pruned_usage_counters={deleted}")


if __name__ == "__main__":
    configure_logging()
    args = _parse_args()
    asyncio.run(prune(args.retention_days))
