"""Service wiring.

All long-lived components are built once here and handed to the app via
`app.state.services`. Routes read them from there, tests pass fakes in.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import Request

from pricewatch.services.fetcher import ContentFetcher
from pricewatch.services.products import ProductService
from pricewatch.services.reconciliation import PriceDropNotifier, Reconciler
from pricewatch.services.scheduler import BatchRecorder, PriceCheckScheduler
from pricewatch.services.scraper import ScrapeOrchestrator
from pricewatch.services.sites import SiteRegistry
from pricewatch.settings import Settings
from pricewatch.stores import redis as redis_store
from pricewatch.stores.products import ProductStore

RunHistoryFn = Callable[[int], Awaitable[list[dict[str, Any]]]]


@dataclass
class Services:
    registry: SiteRegistry
    fetcher: ContentFetcher
    scraper: ScrapeOrchestrator
    store: Any
    products: ProductService
    reconciler: Reconciler
    scheduler: PriceCheckScheduler
    run_history: RunHistoryFn

    async def close(self) -> None:
        self.scheduler.stop()
        await self.fetcher.close()


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's service container."""
    return request.app.state.services


def build_services(
    settings: Settings,
    *,
    store: Any = None,
    registry: SiteRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    record_run: BatchRecorder | None = redis_store.record_batch_run,
    run_history: RunHistoryFn = redis_store.get_recent_batch_runs,
    notifier: PriceDropNotifier | None = None,
) -> Services:
    """Construct the component graph from settings.

    Args:
        settings: Application settings.
        store: Product store; defaults to the PostgreSQL ProductStore.
        registry: Site registry; defaults to the configured JSON table.
        transport: Optional httpx transport for the fetcher (tests).
        record_run: Where batch summaries go; defaults to Redis.
        run_history: Reader for recorded summaries; defaults to Redis.
        notifier: Price-drop notifier; defaults to logging.
    """
    registry = registry or SiteRegistry(settings.site_config_path)
    store = store if store is not None else ProductStore()

    fetcher = ContentFetcher(
        registry,
        timeout=settings.scraper_timeout_seconds,
        max_retries=settings.scraper_max_retries,
        retry_delay=settings.scraper_retry_delay_seconds,
        backoff_multiplier=settings.scraper_backoff_multiplier,
        max_redirects=settings.scraper_max_redirects,
        transport=transport,
    )
    scraper = ScrapeOrchestrator(
        fetcher,
        registry,
        request_delay=settings.scraper_request_delay_seconds,
    )
    reconciler = Reconciler(scraper, store, notifier)
    scheduler = PriceCheckScheduler(
        reconciler,
        default_cron=settings.price_check_cron,
        record_run=record_run,
    )
    products = ProductService(store, scraper, default_currency=settings.default_currency)

    return Services(
        registry=registry,
        fetcher=fetcher,
        scraper=scraper,
        store=store,
        products=products,
        reconciler=reconciler,
        scheduler=scheduler,
        run_history=run_history,
    )
