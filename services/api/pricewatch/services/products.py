"""Product service: API-facing operations on tracked products.

Flow (create by URL):
1. Validate the URL and return the existing product if it is already tracked
2. Scrape the page through the scrape orchestrator
3. Create the product together with its seed price history row

Explicit updates keep the price invariant: when current_price changes, a
history row with the new price is written in the same transaction.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pricewatch.models import Availability, PriceHistory, Product
from pricewatch.schemas.product import NewProduct, ProductChanges
from pricewatch.services.reconciliation import Scraper
from pricewatch.services.scraper import InvalidUrlError, get_domain, is_valid_url

logger = logging.getLogger("uvicorn.error")


class ProductNotFoundError(Exception):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class ScrapeIncompleteError(Exception):
    """The page was scraped but has no usable price."""

    def __init__(self, url: str):
        super().__init__(f"Could not extract a price from {url}")
        self.url = url


@dataclass
class ProductPageResult:
    items: list[Product]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass
class UrlCreateResult:
    url: str
    product: Product | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.product is not None


class ProductService:
    def __init__(self, store: Any, scraper: Scraper, *, default_currency: str = "INR"):
        self.store = store
        self.scraper = scraper
        self.default_currency = default_currency

    async def create_product(self, data: NewProduct) -> Product:
        """Create from explicit fields; an already tracked URL returns the existing product."""
        existing = await self.store.find_by_url(data.url)
        if existing is not None:
            logger.info(f"[products] url already tracked product_id={existing.id} url={data.url}")
            return existing
        product = await self.store.create(data)
        logger.info(f"[products] created product_id={product.id} url={product.url}")
        return product

    async def create_product_by_url(self, url: str) -> Product:
        """Scrape a page and start tracking it.

        Raises:
            InvalidUrlError: URL is not an absolute http(s) URL.
            FetchError: Page could not be retrieved.
            ScrapeIncompleteError: Page has no extractable price.
        """
        url = (url or "").strip()
        if not is_valid_url(url):
            raise InvalidUrlError(f"Invalid product URL: {url!r}")

        existing = await self.store.find_by_url(url)
        if existing is not None:
            return existing

        snapshot = await self.scraper.scrape_product(url)
        if snapshot.price is None:
            raise ScrapeIncompleteError(url)

        data = NewProduct(
            url=url,
            name=snapshot.name or "Unknown",
            domain=get_domain(url) or "unknown",
            currency=snapshot.currency or self.default_currency,
            current_price=snapshot.price,
            availability=snapshot.availability or Availability.IN_STOCK,
            image=snapshot.image,
            sku=snapshot.sku,
            mpn=snapshot.mpn,
            brand=snapshot.brand,
            metadata_complete=bool(snapshot.name and snapshot.image and snapshot.currency),
        )
        product = await self.store.create(data)
        logger.info(
            f"[products] created from url product_id={product.id} url={url} price={product.current_price}"
        )
        return product

    async def create_products_by_urls(self, urls: list[str]) -> list[UrlCreateResult]:
        """Create many products concurrently. Order of results matches `urls`."""

        async def _one(url: str) -> UrlCreateResult:
            try:
                product = await self.create_product_by_url(url)
            except Exception as e:
                logger.warning(f"[products] create from url failed url={url}: {e!r}")
                return UrlCreateResult(url=url, error=str(e) or e.__class__.__name__)
            return UrlCreateResult(url=url, product=product)

        return list(await asyncio.gather(*(_one(u) for u in urls)))

    async def get_product(self, product_id: int) -> Product:
        product = await self.store.find_by_id(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def list_products(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        query: str | None = None,
        brand: str | None = None,
        domain: str | None = None,
        category: str | None = None,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
    ) -> ProductPageResult:
        """Paginated listing; any filter given turns it into a search."""
        items, total = await self.store.search(
            query=query,
            brand=brand,
            domain=domain,
            category=category,
            min_price=min_price,
            max_price=max_price,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return ProductPageResult(items=items, total=total, page=page, limit=limit)

    async def update_product(self, product_id: int, changes: ProductChanges) -> Product:
        """Apply an explicit partial update."""
        product = await self.get_product(product_id)
        if changes.is_empty():
            return product

        values = changes.values()
        new_price = values.get("current_price")
        if new_price is not None and new_price != product.current_price:
            availability = values.get("availability") or product.availability
            updated = await self.store.record_price_check(
                product_id, changes, new_price=new_price, availability=availability
            )
        else:
            updated = await self.store.update(product_id, changes)

        if updated is None:
            raise ProductNotFoundError(product_id)
        logger.info(f"[products] updated product_id={product_id} fields={sorted(values)}")
        return updated

    async def delete_product(self, product_id: int) -> None:
        if not await self.store.delete(product_id):
            raise ProductNotFoundError(product_id)
        logger.info(f"[products] deleted product_id={product_id}")

    async def price_history(self, product_id: int, limit: int = 50) -> list[PriceHistory]:
        await self.get_product(product_id)
        return await self.store.list_price_history(product_id, limit)
