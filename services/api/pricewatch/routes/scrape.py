"""Scrape preview endpoint.

POST /v1/scrape/preview -> the snapshot a URL would produce. Nothing is stored.
"""

from fastapi import APIRouter, Depends

from pricewatch.container import Services, get_services
from pricewatch.schemas.scheduler import ScrapePreviewRequest, ScrapePreviewResponse
from pricewatch.services.scraper import get_domain

router = APIRouter()


@router.post("/preview", response_model=ScrapePreviewResponse)
async def preview_scrape(
    body: ScrapePreviewRequest,
    services: Services = Depends(get_services),
) -> ScrapePreviewResponse:
    snapshot = await services.scraper.scrape_product(body.url)
    return ScrapePreviewResponse(
        url=body.url.strip(),
        domain=get_domain(body.url.strip()),
        snapshot=snapshot.to_dict(),
    )
