"""Price history model.

Append-only log of observed prices per product. Rows go away only when the
parent product is deleted (ON DELETE CASCADE).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pricewatch.models.product import PRICE_TYPE
from pricewatch.stores.postgres import Base


class PriceHistory(Base):
    """Observed price of a product at a point in time."""

    __tablename__ = "price_history"
    __table_args__ = (Index("ix_price_history_product_checked", "product_id", "checked_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)

    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"))

    price: Mapped[Decimal] = mapped_column(PRICE_TYPE)
    availability: Mapped[str | None] = mapped_column(String(20))

    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<PriceHistory product={self.product_id} {self.price}>"
