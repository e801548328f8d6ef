"""API routes. Everything under /v1 requires HTTP Basic auth."""

from fastapi import APIRouter, Depends

from pricewatch.auth import require_basic_auth
from pricewatch.routes import products, scheduler, scrape

api_router = APIRouter(prefix="/v1", dependencies=[Depends(require_basic_auth)])

# Tracked products and their price history
api_router.include_router(products.router, prefix="/products", tags=["products"])

# Recurring and manual price checks
api_router.include_router(scheduler.router, prefix="/scheduler", tags=["scheduler"])

# Read-only scrape preview
api_router.include_router(scrape.router, prefix="/scrape", tags=["scrape"])
