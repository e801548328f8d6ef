"""Shared fixtures.

No test touches the network, Postgres or Redis:
- HTTP fetches go through httpx.MockTransport
- The product store is an in-memory fake with the ProductStore interface
- Sleeps are recorded instead of awaited
"""

import random
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from pricewatch.container import build_services
from pricewatch.main import create_app
from pricewatch.models import PriceHistory, Product
from pricewatch.schemas.product import NewProduct, ProductChanges
from pricewatch.services.extractor import Snapshot
from pricewatch.services.sites import SiteRegistry
from pricewatch.settings import Settings

BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)
AUTH = ("admin", "secret")


class FakeProductStore:
    """In-memory ProductStore."""

    def __init__(self) -> None:
        self.products: dict[int, Product] = {}
        self.history: dict[int, list[PriceHistory]] = {}
        self.bulk_last_checked_calls: list[list[int]] = []
        self._next_id = 1
        self._next_history_id = 1

    def _tick(self, n: int) -> datetime:
        return BASE_TIME + timedelta(seconds=n)

    def _add_history(self, product_id: int, price: Decimal, availability: str | None) -> PriceHistory:
        entry = PriceHistory(
            id=self._next_history_id,
            product_id=product_id,
            price=price,
            availability=availability,
            checked_at=self._tick(self._next_history_id),
        )
        self._next_history_id += 1
        self.history.setdefault(product_id, []).append(entry)
        return entry

    async def find_by_url(self, url: str) -> Product | None:
        return next((p for p in self.products.values() if p.url == url), None)

    async def find_by_id(self, product_id: int) -> Product | None:
        return self.products.get(product_id)

    async def list_all(self) -> list[Product]:
        return list(self.products.values())

    async def create(self, data: NewProduct) -> Product:
        existing = await self.find_by_url(data.url)
        if existing is not None:
            return existing
        now = self._tick(self._next_id)
        product = Product(id=self._next_id, created_at=now, updated_at=now, **data.model_dump())
        self._next_id += 1
        self.products[product.id] = product
        self._add_history(product.id, product.current_price, product.availability)
        return product

    async def update(self, product_id: int, changes: ProductChanges) -> Product | None:
        product = self.products.get(product_id)
        if product is None:
            return None
        for field, value in changes.values().items():
            setattr(product, field, value)
        return product

    async def append_price_history(
        self, product_id: int, price: Decimal, availability: str | None = None
    ) -> PriceHistory:
        return self._add_history(product_id, price, availability)

    async def record_price_check(
        self,
        product_id: int,
        changes: ProductChanges,
        new_price: Decimal | None = None,
        availability: str | None = None,
    ) -> Product | None:
        product = await self.update(product_id, changes)
        if product is not None and new_price is not None:
            self._add_history(product_id, new_price, availability)
        return product

    async def bulk_update_last_checked(self, product_ids: list[int]) -> int:
        self.bulk_last_checked_calls.append(list(product_ids))
        for pid in product_ids:
            if pid in self.products:
                self.products[pid].last_checked_at = BASE_TIME
        return len(product_ids)

    async def delete(self, product_id: int) -> bool:
        self.history.pop(product_id, None)
        return self.products.pop(product_id, None) is not None

    async def list_price_history(self, product_id: int, limit: int = 50) -> list[PriceHistory]:
        entries = sorted(self.history.get(product_id, []), key=lambda e: (e.checked_at, e.id), reverse=True)
        return entries[:limit]

    async def search(
        self,
        *,
        query: str | None = None,
        brand: str | None = None,
        domain: str | None = None,
        category: str | None = None,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        page: int = 1,
        limit: int = 50,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[Product], int]:
        def _has(value: str | None, needle: str) -> bool:
            return bool(value) and needle.lower() in value.lower()

        items = list(self.products.values())
        if query:
            items = [p for p in items if _has(p.name, query) or _has(p.brand, query)]
        if brand:
            items = [p for p in items if _has(p.brand, brand)]
        if domain:
            items = [p for p in items if _has(p.domain, domain)]
        if category:
            items = [
                p
                for p in items
                if _has(p.article_type, category)
                or _has(p.sub_category, category)
                or _has(p.master_category, category)
            ]
        if min_price is not None:
            items = [p for p in items if p.current_price >= min_price]
        if max_price is not None:
            items = [p for p in items if p.current_price <= max_price]

        items.sort(key=lambda p: (getattr(p, sort_by), p.id), reverse=sort_order == "desc")
        start = (page - 1) * limit
        return items[start : start + limit], len(items)


class FakeScraper:
    """Scraper returning canned snapshots (or raising canned errors) per URL."""

    def __init__(self, results: dict[str, Snapshot | Exception] | None = None) -> None:
        self.results: dict[str, Snapshot | Exception] = results or {}
        self.calls: list[str] = []

    async def scrape_product(self, url: str) -> Snapshot:
        self.calls.append(url)
        result = self.results[url]
        if isinstance(result, Exception):
            raise result
        return result


class SleepRecorder:
    """Async sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class PageServer:
    """httpx.MockTransport handler serving canned responses by URL."""

    def __init__(self) -> None:
        self.pages: dict[str, tuple[int, str]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, url: str, html: str, status_code: int = 200) -> None:
        self.pages[url] = (status_code, html)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, html = self.pages.get(str(request.url), (404, "not found"))
        return httpx.Response(status_code, text=html, headers={"content-type": "text/html"})


def make_product(
    product_id: int = 1,
    *,
    url: str = "https://www.example.com/p/1",
    price: str = "999",
    target_price: str | None = None,
    metadata_complete: bool = True,
    **overrides: Any,
) -> Product:
    """Stored product as the reconciler sees it."""
    values: dict[str, Any] = {
        "id": product_id,
        "url": url,
        "name": "Widget",
        "domain": "example.com",
        "currency": "INR",
        "current_price": Decimal(price),
        "target_price": Decimal(target_price) if target_price is not None else None,
        "availability": "InStock",
        "image": "https://www.example.com/widget.jpg",
        "metadata_complete": metadata_complete,
    }
    values.update(overrides)
    return Product(**values)


@pytest.fixture
def store() -> FakeProductStore:
    return FakeProductStore()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def registry() -> SiteRegistry:
    """Packaged site table with a deterministic user-agent pick."""
    return SiteRegistry(rng=random.Random(0))


@pytest.fixture
def page_server() -> PageServer:
    return PageServer()


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("BASIC_AUTH_USERNAME", AUTH[0])
    monkeypatch.setenv("BASIC_AUTH_PASSWORD", AUTH[1])
    monkeypatch.setenv("SCRAPER_MAX_RETRIES", "1")
    monkeypatch.setenv("SCRAPER_REQUEST_DELAY_SECONDS", "0")
    return Settings(_env_file=None)


@pytest.fixture
def recorded_runs() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def services(settings, store, registry, page_server, recorded_runs):
    """Real service graph over the fake store and a mocked HTTP transport."""

    async def record_run(summary: dict[str, Any]) -> None:
        recorded_runs.insert(0, summary)

    async def run_history(limit: int) -> list[dict[str, Any]]:
        return recorded_runs[:limit]

    return build_services(
        settings,
        store=store,
        registry=registry,
        transport=httpx.MockTransport(page_server),
        record_run=record_run,
        run_history=run_history,
    )


@pytest.fixture
async def client(settings, services):
    """Authenticated API client."""
    app = create_app(settings, services)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        auth=AUTH,
    ) as ac:
        yield ac
    await services.close()
