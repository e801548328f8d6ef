"""Schemas for products and price history.

`NewProduct` and `ProductChanges` are the store's write contracts.
`ProductChanges` is a partial update: a field is part of the update only if
it was explicitly set (None included), see `values()`.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

from pricewatch.models.product import Availability
from pricewatch.services.scraper import get_domain, is_valid_url

# Decimals go over the wire as JSON numbers
Price = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class NewProduct(BaseModel):
    """Everything needed to insert a product (plus its seed history row)."""

    model_config = ConfigDict(use_enum_values=True)

    url: str
    name: str
    domain: str
    currency: str
    current_price: Decimal = Field(gt=0)
    target_price: Decimal | None = Field(default=None, gt=0)
    availability: Availability = Field(default=Availability.IN_STOCK, validate_default=True)
    image: str | None = None
    sku: str | None = None
    mpn: str | None = None
    brand: str | None = None
    article_type: str | None = None
    sub_category: str | None = None
    master_category: str | None = None
    metadata_complete: bool = False


class ProductChanges(BaseModel):
    """Partial product update with explicit field presence."""

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    name: str | None = None
    currency: str | None = None
    availability: Availability | None = None
    current_price: Decimal | None = Field(default=None, gt=0)
    target_price: Decimal | None = Field(default=None, gt=0)
    image: str | None = None
    sku: str | None = None
    mpn: str | None = None
    brand: str | None = None
    article_type: str | None = None
    sub_category: str | None = None
    master_category: str | None = None
    metadata_complete: bool | None = None

    def values(self) -> dict[str, Any]:
        """Only the fields that were explicitly set."""
        return self.model_dump(exclude_unset=True)

    def is_empty(self) -> bool:
        return not self.model_fields_set


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ProductCreateRequest(ApiModel):
    """Request body for explicit product creation."""

    name: str = Field(min_length=1, max_length=500)
    url: str = Field(max_length=2048)
    current_price: Decimal = Field(gt=0)
    target_price: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=8)
    availability: Availability | None = None
    image: str | None = None
    product_id: str | None = Field(default=None, max_length=200)
    brand: str | None = Field(default=None, max_length=200)
    article_type: str | None = Field(default=None, max_length=200)
    sub_category: str | None = Field(default=None, max_length=200)
    master_category: str | None = Field(default=None, max_length=200)

    @field_validator("url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_url(v):
            raise ValueError("Invalid product URL")
        return v

    def to_new_product(self, *, default_currency: str) -> NewProduct:
        """`product_id` is the storefront identifier; it fills both sku and mpn."""
        return NewProduct(
            url=self.url,
            name=self.name,
            domain=get_domain(self.url) or "unknown",
            currency=(self.currency or default_currency).upper(),
            current_price=self.current_price,
            target_price=self.target_price,
            availability=self.availability or Availability.IN_STOCK,
            image=self.image,
            sku=self.product_id,
            mpn=self.product_id,
            brand=self.brand,
            article_type=self.article_type,
            sub_category=self.sub_category,
            master_category=self.master_category,
        )


class ProductsByUrlRequest(ApiModel):
    """Request body for scrape-then-create."""

    urls: list[str] = Field(min_length=1, max_length=50)


# Product columns a PATCH may change but never clear
NON_NULLABLE_FIELDS = ("name", "current_price", "currency", "availability")


class ProductUpdateRequest(ApiModel):
    """Request body for PATCH /v1/products/{id}. Omitted fields are untouched."""

    name: str | None = Field(default=None, min_length=1, max_length=500)
    current_price: Decimal | None = Field(default=None, gt=0)
    target_price: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=8)
    availability: Availability | None = None
    image: str | None = None
    brand: str | None = Field(default=None, max_length=200)
    article_type: str | None = Field(default=None, max_length=200)
    sub_category: str | None = Field(default=None, max_length=200)
    master_category: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _reject_null_required(self) -> "ProductUpdateRequest":
        # These columns are NOT NULL; omit a field to leave it unchanged
        nulled = sorted(
            f for f in NON_NULLABLE_FIELDS if f in self.model_fields_set and getattr(self, f) is None
        )
        if nulled:
            raise ValueError(f"Fields cannot be null: {', '.join(nulled)}")
        return self

    def to_changes(self) -> ProductChanges:
        return ProductChanges(**self.model_dump(exclude_unset=True))


class PriceHistoryOut(ApiModel):
    """One price observation."""

    id: int
    price: Price
    availability: str | None = None
    checked_at: datetime


class ProductOut(ApiModel):
    """Product as returned by the API."""

    id: int
    url: str
    name: str
    domain: str
    currency: str
    current_price: Price
    target_price: Price | None = None
    availability: str
    image: str | None = None
    sku: str | None = None
    mpn: str | None = None
    brand: str | None = None
    article_type: str | None = None
    sub_category: str | None = None
    master_category: str | None = None
    metadata_complete: bool
    last_checked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProductResponse(ApiModel):
    success: bool = True
    data: ProductOut


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ProductPage(ApiModel):
    """Paginated product listing."""

    success: bool = True
    data: list[ProductOut]
    pagination: Pagination


class ProductByUrlResult(ApiModel):
    """Outcome of creating one product from a URL."""

    url: str
    success: bool
    data: ProductOut | None = None
    error: str | None = None


class ProductsByUrlResponse(ApiModel):
    success: bool
    data: list[ProductByUrlResult]


class PriceHistoryResponse(ApiModel):
    success: bool = True
    product_id: int
    data: list[PriceHistoryOut]
