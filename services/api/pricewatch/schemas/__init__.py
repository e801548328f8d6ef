"""Pydantic schemas for API request/response validation and store writes."""

from pricewatch.schemas.common import ErrorDetail, ErrorResponse
from pricewatch.schemas.product import (
    NewProduct,
    PriceHistoryOut,
    PriceHistoryResponse,
    ProductByUrlResult,
    ProductChanges,
    ProductCreateRequest,
    ProductOut,
    ProductPage,
    ProductResponse,
    ProductsByUrlRequest,
    ProductsByUrlResponse,
    ProductUpdateRequest,
)
from pricewatch.schemas.scheduler import (
    BatchHistoryResponse,
    BatchRunResponse,
    BatchRunSummary,
    SchedulerActionResponse,
    SchedulerStartRequest,
    SchedulerStatusResponse,
    ScrapePreviewRequest,
    ScrapePreviewResponse,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "NewProduct",
    "PriceHistoryOut",
    "PriceHistoryResponse",
    "ProductByUrlResult",
    "ProductChanges",
    "ProductCreateRequest",
    "ProductOut",
    "ProductPage",
    "ProductResponse",
    "ProductsByUrlRequest",
    "ProductsByUrlResponse",
    "ProductUpdateRequest",
    "BatchHistoryResponse",
    "BatchRunResponse",
    "BatchRunSummary",
    "SchedulerActionResponse",
    "SchedulerStartRequest",
    "SchedulerStatusResponse",
    "ScrapePreviewRequest",
    "ScrapePreviewResponse",
]
