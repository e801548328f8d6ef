"""SQLAlchemy ORM models.

Models represent database tables:
- products: Tracked product pages (unique by URL)
- price_history: Append-only price observations per product
"""

from pricewatch.models.product import Availability, Product
from pricewatch.models.price_history import PriceHistory

__all__ = ["Availability", "Product", "PriceHistory"]
