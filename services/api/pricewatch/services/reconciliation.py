"""Reconciliation service: fresh scrape -> stored product state.

For one product:
1. Scrape the product URL (any exception aborts this product, nothing written)
2. No price in the snapshot -> MissingPriceError (soft failure, nothing written)
3. Diff: price (exact Decimal comparison), availability, and one-time metadata
   backfill (name/image/currency) while metadata_complete is False
4. Persist the partial update and, if the price changed, a new history row.
   Both go through ProductStore.record_price_check in one transaction.
5. If a target price is set and the new price is at or below it, notify

For all products (reconcile_all):
- Every product runs concurrently; one failure never aborts the batch
- One bulk last_checked_at update for the products that succeeded

Notes:
- Reconciling the same product twice concurrently is not coordinated here;
  the later write wins and duplicate history rows with equal prices can occur.
- Nothing is retried inside a batch. A failing product fails again next run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from pricewatch.models import Product
from pricewatch.schemas.product import ProductChanges
from pricewatch.services.extractor import Snapshot

logger = logging.getLogger("uvicorn.error")

# Fields filled from the scrape until metadata_complete is set
BACKFILL_FIELDS = ("name", "image", "currency")


class MissingPriceError(Exception):
    """The scrape succeeded but produced no price."""

    def __init__(self, url: str):
        super().__init__(f"No price found on {url}")
        self.url = url


class Scraper(Protocol):
    async def scrape_product(self, url: str) -> Snapshot: ...


class PriceDropNotifier:
    """Delivers price-drop signals. This implementation only logs them."""

    async def notify(self, product: Product, price: Decimal) -> None:
        logger.info(
            f"[reconcile] price drop product_id={product.id} url={product.url} "
            f"price={price} target={product.target_price}"
        )


@dataclass
class ReconcileResult:
    product_id: int
    price_changed: bool
    old_price: Decimal
    new_price: Decimal
    updated_fields: list[str] = field(default_factory=list)
    price_drop: bool = False

    @property
    def updated(self) -> bool:
        return bool(self.updated_fields)


@dataclass
class BatchResult:
    success_count: int = 0
    failure_count: int = 0
    succeeded_ids: list[int] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)
    price_changes: int = 0
    duration_ms: int = 0
    last_checked_error: str | None = None


def build_changes(product: Product, snapshot: Snapshot) -> ProductChanges:
    """Decide which product fields a snapshot should update.

    Requires snapshot.price to be set.
    """
    values: dict[str, Any] = {}

    if snapshot.price != product.current_price:
        values["current_price"] = snapshot.price

    availability = snapshot.availability.value if snapshot.availability else None
    if availability and availability != product.availability:
        values["availability"] = availability

    if not product.metadata_complete:
        for name in BACKFILL_FIELDS:
            scraped = getattr(snapshot, name)
            if scraped and scraped != getattr(product, name):
                values[name] = scraped
        values["metadata_complete"] = True

    return ProductChanges(**values)


class Reconciler:
    """Apply scrape results to stored products."""

    def __init__(self, scraper: Scraper, store: Any, notifier: PriceDropNotifier | None = None):
        self.scraper = scraper
        self.store = store
        self.notifier = notifier or PriceDropNotifier()

    async def reconcile_one(self, product: Product) -> ReconcileResult:
        """Reconcile a single product.

        On success the passed product object reflects the persisted state,
        so reconciling it again against an unchanged page writes nothing.

        Raises:
            InvalidUrlError, FetchError: Propagated from the scraper.
            MissingPriceError: Snapshot had no price.
            PersistenceError: Propagated from the store.
        """
        snapshot = await self.scraper.scrape_product(product.url)
        if snapshot.price is None:
            raise MissingPriceError(product.url)

        new_price = snapshot.price
        old_price = product.current_price
        price_changed = new_price != old_price

        changes = build_changes(product, snapshot)
        values = changes.values()

        if values:
            await self.store.record_price_check(
                product.id,
                changes,
                new_price=new_price if price_changed else None,
                availability=snapshot.availability.value if snapshot.availability else None,
            )
            for name, value in values.items():
                setattr(product, name, value)

        result = ReconcileResult(
            product_id=product.id,
            price_changed=price_changed,
            old_price=old_price,
            new_price=new_price,
            updated_fields=sorted(values),
        )

        if product.target_price is not None and new_price <= product.target_price:
            result.price_drop = True
            await self.notifier.notify(product, new_price)

        if price_changed:
            logger.info(
                f"[reconcile] price changed product_id={product.id} {old_price} -> {new_price}"
            )
        else:
            logger.debug(f"[reconcile] price unchanged product_id={product.id} price={new_price}")
        return result

    async def reconcile_all(self) -> BatchResult:
        """Reconcile every tracked product concurrently.

        Per-product failures are counted, not raised. Only products that
        completed without error get last_checked_at stamped.
        """
        started = time.perf_counter()
        products = await self.store.list_all()
        logger.info(f"[reconcile] checking prices for {len(products)} products")

        batch = BatchResult()

        async def _run(product: Product) -> None:
            try:
                result = await self.reconcile_one(product)
            except Exception as e:
                batch.failure_count += 1
                batch.failures[product.id] = str(e) or e.__class__.__name__
                logger.warning(f"[reconcile] failed product_id={product.id} url={product.url}: {e!r}")
                return
            batch.success_count += 1
            batch.succeeded_ids.append(product.id)
            if result.price_changed:
                batch.price_changes += 1

        await asyncio.gather(*(_run(p) for p in products))

        if batch.succeeded_ids:
            # Product writes are already committed; a failed stamp must not lose the counts
            try:
                await self.store.bulk_update_last_checked(batch.succeeded_ids)
            except Exception as e:
                batch.last_checked_error = str(e) or e.__class__.__name__
                logger.exception(
                    f"[reconcile] last_checked update failed for {len(batch.succeeded_ids)} products"
                )

        batch.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"[reconcile] batch done success={batch.success_count} failure={batch.failure_count} "
            f"price_changes={batch.price_changes} duration_ms={batch.duration_ms}"
        )
        return batch
