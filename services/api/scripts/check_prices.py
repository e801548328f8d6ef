#!/usr/bin/env python3
"""One-shot price check for an external cron.

Runs exactly one reconciliation batch over every tracked product (the same
routine as POST /v1/scheduler/run), records the summary in Redis when it is
reachable, and prints the summary.

Run (local / cron):
  cd services/api
  python -m scripts.check_prices
"""

import asyncio
import os
import sys


# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pricewatch.container import build_services  # noqa: E402
from pricewatch.settings import get_settings  # noqa: E402
from pricewatch.stores.postgres import close_db, create_tables, init_db, ping_db  # noqa: E402
from pricewatch.stores.redis import close_redis, init_redis  # noqa: E402


async def main() -> None:
    settings = get_settings()

    # Initialize shared connections (same as API lifespan, but for a one-off run)
    await init_db()
    await ping_db()
    if settings.auto_create_tables:
        await create_tables()
    try:
        await init_redis()
    except Exception as e:
        # Summary just won't be recorded
        print({"redis": f"unavailable: {e!r}"})

    services = build_services(settings)
    try:
        summary = await services.scheduler.trigger_now()
        print({"ok": True, **summary})
    finally:
        await services.close()
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
