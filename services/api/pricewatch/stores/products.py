"""Product repository on PostgreSQL.

Guarantees:
- One product per URL (unique index; a losing concurrent insert returns the winner)
- A product is created together with its seed PriceHistory row
- Deleting a product cascades to its history (ON DELETE CASCADE)
- History rows are only ever inserted

Every SQLAlchemy failure is surfaced as PersistenceError; nothing here retries.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Literal

from sqlalchemy import ColumnElement, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.models import PriceHistory, Product
from pricewatch.schemas.product import NewProduct, ProductChanges
from pricewatch.stores.postgres import get_session

SortField = Literal["created_at", "current_price", "name", "last_checked_at"]
SortOrder = Literal["asc", "desc"]


def search_conditions(
    *,
    query: str | None = None,
    brand: str | None = None,
    domain: str | None = None,
    category: str | None = None,
    min_price: Decimal | None = None,
    max_price: Decimal | None = None,
) -> list[ColumnElement[bool]]:
    """WHERE clauses for a product search.

    Text filters are case-insensitive substring matches; `%` and `_` in user
    input match literally.
    """
    conditions: list[ColumnElement[bool]] = []
    if query:
        conditions.append(or_(_contains(Product.name, query), _contains(Product.brand, query)))
    if brand:
        conditions.append(_contains(Product.brand, brand))
    if domain:
        conditions.append(_contains(Product.domain, domain))
    if category:
        conditions.append(
            or_(
                _contains(Product.article_type, category),
                _contains(Product.sub_category, category),
                _contains(Product.master_category, category),
            )
        )
    if min_price is not None:
        conditions.append(Product.current_price >= min_price)
    if max_price is not None:
        conditions.append(Product.current_price <= max_price)
    return conditions


def _contains(column, value: str) -> ColumnElement[bool]:
    return column.icontains(value, autoescape=True)


class PersistenceError(Exception):
    """Raised when the database rejects or fails an operation."""

    pass


class ProductStore:
    """Async repository for products and their price history."""

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with get_session() as session:
                yield session
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def find_by_url(self, url: str) -> Product | None:
        async with self._session() as session:
            res = await session.execute(select(Product).where(Product.url == url))
            return res.scalar_one_or_none()

    async def find_by_id(self, product_id: int) -> Product | None:
        async with self._session() as session:
            return await session.get(Product, product_id)

    async def list_all(self) -> list[Product]:
        """Every tracked product (used by the batch price check)."""
        async with self._session() as session:
            res = await session.execute(select(Product).order_by(Product.id))
            return list(res.scalars().all())

    async def create(self, data: NewProduct) -> Product:
        """Insert a product and its seed history row in one transaction.

        If the URL already exists (including a concurrent insert), the
        existing product is returned instead.
        """
        try:
            async with get_session() as session:
                product = Product(**data.model_dump())
                session.add(product)
                await session.flush()
                session.add(
                    PriceHistory(
                        product_id=product.id,
                        price=product.current_price,
                        availability=product.availability,
                    )
                )
                await session.flush()
                await session.refresh(product)
        except IntegrityError as e:
            existing = await self.find_by_url(data.url)
            if existing is not None:
                return existing
            raise PersistenceError(str(e)) from e
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return product

    async def update(self, product_id: int, changes: ProductChanges) -> Product | None:
        """Apply a partial update. Returns None if the product does not exist."""
        async with self._session() as session:
            return await self._apply_changes(session, product_id, changes)

    async def append_price_history(
        self,
        product_id: int,
        price: Decimal,
        availability: str | None = None,
    ) -> PriceHistory:
        async with self._session() as session:
            entry = PriceHistory(product_id=product_id, price=price, availability=availability)
            session.add(entry)
            await session.flush()
            await session.refresh(entry)
            return entry

    async def record_price_check(
        self,
        product_id: int,
        changes: ProductChanges,
        new_price: Decimal | None = None,
        availability: str | None = None,
    ) -> Product | None:
        """Persist one reconciliation result atomically.

        The product update and the history append (when new_price is given)
        commit together, so current_price never drifts from the newest row.
        """
        async with self._session() as session:
            product = await self._apply_changes(session, product_id, changes)
            if product is None:
                return None
            if new_price is not None:
                session.add(
                    PriceHistory(product_id=product_id, price=new_price, availability=availability)
                )
                await session.flush()
            return product

    async def bulk_update_last_checked(self, product_ids: list[int]) -> int:
        """Stamp last_checked_at=now() on the given products. Returns rows touched."""
        if not product_ids:
            return 0
        async with self._session() as session:
            res = await session.execute(
                update(Product)
                .where(Product.id.in_(product_ids))
                .values(last_checked_at=func.now())
            )
            return res.rowcount or 0

    async def delete(self, product_id: int) -> bool:
        async with self._session() as session:
            res = await session.execute(delete(Product).where(Product.id == product_id))
            return (res.rowcount or 0) > 0

    async def list_price_history(self, product_id: int, limit: int = 50) -> list[PriceHistory]:
        """Newest first."""
        async with self._session() as session:
            res = await session.execute(
                select(PriceHistory)
                .where(PriceHistory.product_id == product_id)
                .order_by(PriceHistory.checked_at.desc(), PriceHistory.id.desc())
                .limit(limit)
            )
            return list(res.scalars().all())

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
        sort_by: SortField = "created_at",
        sort_order: SortOrder = "desc",
    ) -> tuple[list[Product], int]:
        """Filtered, paginated listing. Returns (page items, total matches)."""
        conditions = search_conditions(
            query=query,
            brand=brand,
            domain=domain,
            category=category,
            min_price=min_price,
            max_price=max_price,
        )

        column = getattr(Product, sort_by)
        order = column.asc() if sort_order == "asc" else column.desc()

        async with self._session() as session:
            total = await session.scalar(select(func.count()).select_from(Product).where(*conditions))
            res = await session.execute(
                select(Product)
                .where(*conditions)
                .order_by(order, Product.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(res.scalars().all()), int(total or 0)

    async def _apply_changes(
        self,
        session: AsyncSession,
        product_id: int,
        changes: ProductChanges,
    ) -> Product | None:
        product = await session.get(Product, product_id)
        if product is None:
            return None
        values = changes.values()
        if values:
            for field, value in values.items():
                setattr(product, field, value)
            await session.flush()
            await session.refresh(product)
        return product
