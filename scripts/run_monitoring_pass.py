from __future__ import annotations

import argparse
import asyncio
import json

from slanglab.core.logging import configure_logging
from slanglab.services.monitoring import run_monitoring_pass


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one monitoring pass over due tracked terms.")
    parser.add_argument("--record-id", type=int, action="append", dest="record_ids")
    parser.add_argument("--force", action="store_true", help="Check the given records even when not due.")
    return parser.parse_args()


async def run(record_ids: list[int] | None, force: bool) -> None:
    result = await run_monitoring_pass(record_ids, force=force)
    print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    configure_logging()
    args = _parse_args()
    asyncio.run(run(args.record_ids, args.force))
