#!/usr/bin/env python3
"""Start tracking products by URL.

Scrapes each URL and creates the product with its seed price history row.
URLs that are already tracked are left as they are.

Usage:
    cd services/api
    python -m scripts.add_products https://www.amazon.in/dp/B0... https://www.flipkart.com/...
    python -m scripts.add_products --file urls.txt
"""

import argparse
import asyncio
import os
import sys

# Add parent to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pricewatch.container import build_services  # noqa: E402
from pricewatch.settings import get_settings  # noqa: E402
from pricewatch.stores.postgres import close_db, create_tables, init_db, ping_db  # noqa: E402


def _read_urls(args: argparse.Namespace) -> list[str]:
    urls = list(args.urls)
    if args.file:
        with open(args.file, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    urls.append(line)
    # Keep order, drop duplicates
    return list(dict.fromkeys(urls))


async def main() -> int:
    parser = argparse.ArgumentParser(description="Track products by URL")
    parser.add_argument("urls", nargs="*", help="Product page URLs")
    parser.add_argument("--file", help="Text file with one URL per line")
    args = parser.parse_args()

    urls = _read_urls(args)
    if not urls:
        parser.error("no URLs given")

    settings = get_settings()
    await init_db()
    await ping_db()
    if settings.auto_create_tables:
        await create_tables()

    services = build_services(settings, record_run=None)
    try:
        results = await services.products.create_products_by_urls(urls)
    finally:
        await services.close()
        await close_db()

    failed = 0
    for r in results:
        if r.success:
            p = r.product
            print(f"OK    {r.url} -> id={p.id} price={p.current_price} {p.currency}")
        else:
            failed += 1
            print(f"FAIL  {r.url}: {r.error}")
    print({"ok": failed == 0, "added": len(results) - failed, "failed": failed})
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
