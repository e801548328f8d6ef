"""Product endpoints.

POST   /v1/products                 explicit create (idempotent by URL)
POST   /v1/products/url             scrape-then-create for a list of URLs
GET    /v1/products                 paginated listing with search filters
GET    /v1/products/{id}            single product
PATCH  /v1/products/{id}            partial update (price change appends history)
DELETE /v1/products/{id}            delete with its history
GET    /v1/products/{id}/history    price history, newest first
"""

from decimal import Decimal
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Path, Query, status

from pricewatch.container import Services, get_services
from pricewatch.schemas.product import (
    Pagination,
    PriceHistoryOut,
    PriceHistoryResponse,
    ProductByUrlResult,
    ProductCreateRequest,
    ProductOut,
    ProductPage,
    ProductResponse,
    ProductsByUrlRequest,
    ProductsByUrlResponse,
    ProductUpdateRequest,
)

router = APIRouter()

ProductId = Annotated[int, Path(ge=1, description="Product ID")]


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductCreateRequest,
    services: Services = Depends(get_services),
) -> ProductResponse:
    """Track a product from explicit fields. A known URL returns the stored product."""
    data = body.to_new_product(default_currency=services.products.default_currency)
    product = await services.products.create_product(data)
    return ProductResponse(data=ProductOut.model_validate(product))


@router.post("/url", response_model=ProductsByUrlResponse, status_code=status.HTTP_201_CREATED)
async def create_products_by_url(
    body: ProductsByUrlRequest,
    services: Services = Depends(get_services),
) -> ProductsByUrlResponse:
    """Scrape each URL and track it. Failures are reported per URL."""
    results = await services.products.create_products_by_urls(body.urls)
    data = [
        ProductByUrlResult(
            url=r.url,
            success=r.success,
            data=ProductOut.model_validate(r.product) if r.product is not None else None,
            error=r.error,
        )
        for r in results
    ]
    return ProductsByUrlResponse(success=all(r.success for r in results), data=data)


@router.get("", response_model=ProductPage)
async def list_products(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    sort_by: Literal["created_at", "current_price", "name", "last_checked_at"] = Query(
        default="created_at", alias="sortBy"
    ),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    q: str | None = Query(default=None, max_length=200, description="Matches name or brand"),
    brand: str | None = Query(default=None, max_length=200),
    domain: str | None = Query(default=None, max_length=200),
    category: str | None = Query(default=None, max_length=200),
    min_price: Decimal | None = Query(default=None, ge=0, alias="minPrice"),
    max_price: Decimal | None = Query(default=None, ge=0, alias="maxPrice"),
    services: Services = Depends(get_services),
) -> ProductPage:
    result = await services.products.list_products(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        query=q,
        brand=brand,
        domain=domain,
        category=category,
        min_price=min_price,
        max_price=max_price,
    )
    return ProductPage(
        data=[ProductOut.model_validate(p) for p in result.items],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
            has_next=result.has_next,
            has_prev=result.has_prev,
        ),
    )


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: ProductId,
    services: Services = Depends(get_services),
) -> ProductResponse:
    product = await services.products.get_product(product_id)
    return ProductResponse(data=ProductOut.model_validate(product))


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    body: ProductUpdateRequest,
    product_id: ProductId,
    services: Services = Depends(get_services),
) -> ProductResponse:
    product = await services.products.update_product(product_id, body.to_changes())
    return ProductResponse(data=ProductOut.model_validate(product))


@router.delete("/{product_id}")
async def delete_product(
    product_id: ProductId,
    services: Services = Depends(get_services),
) -> dict:
    await services.products.delete_product(product_id)
    return {"success": True, "message": f"Product {product_id} deleted"}


@router.get("/{product_id}/history", response_model=PriceHistoryResponse)
async def get_price_history(
    product_id: ProductId,
    limit: int = Query(default=50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> PriceHistoryResponse:
    entries = await services.products.price_history(product_id, limit)
    return PriceHistoryResponse(
        product_id=product_id,
        data=[PriceHistoryOut.model_validate(e) for e in entries],
    )
