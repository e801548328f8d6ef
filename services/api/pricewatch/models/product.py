"""Product model.

A tracked product page. The URL is the identity: one row per URL.
`current_price` always mirrors the newest PriceHistory row.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pricewatch.stores.postgres import Base

# Wide enough for any storefront price without rounding scraped values
PRICE_TYPE = Numeric(18, 6)


class Availability(str, Enum):
    """Stock state of a product page."""

    IN_STOCK = "InStock"
    OUT_OF_STOCK = "OutOfStock"
    LIMITED_STOCK = "LimitedStock"
    PRE_ORDER = "PreOrder"


class Product(Base):
    """Tracked product."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)

    url: Mapped[str] = mapped_column(Text, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(500))
    domain: Mapped[str] = mapped_column(String(255), index=True)

    # Pricing
    currency: Mapped[str] = mapped_column(String(8))
    current_price: Mapped[Decimal] = mapped_column(PRICE_TYPE)
    target_price: Mapped[Decimal | None] = mapped_column(PRICE_TYPE)

    # Stock state (Availability value)
    availability: Mapped[str] = mapped_column(String(20), default=Availability.IN_STOCK.value)

    image: Mapped[str | None] = mapped_column(Text)

    # Catalog identifiers
    sku: Mapped[str | None] = mapped_column(String(200))
    mpn: Mapped[str | None] = mapped_column(String(200))
    brand: Mapped[str | None] = mapped_column(String(200), index=True)
    article_type: Mapped[str | None] = mapped_column(String(200))
    sub_category: Mapped[str | None] = mapped_column(String(200))
    master_category: Mapped[str | None] = mapped_column(String(200))

    # Set once name/image/currency have been filled from a successful scrape
    metadata_complete: Mapped[bool] = mapped_column(default=False)

    # Timestamps
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.current_price} {self.currency}>"
