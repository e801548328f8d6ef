"""Scrape orchestrator: URL in, Snapshot out.

Flow:
1. Validate the URL (http/https with a host)
2. Pause for the program-wide inter-request delay
3. Fetch HTML (retries live in the fetcher)
4. Resolve the site config from the domain
5. Run the extractor

This is the only way the rest of the service obtains fresh product data.
It writes nothing anywhere.
"""

import asyncio
import logging
from urllib.parse import urlparse

from pricewatch.services.extractor import Snapshot, extract
from pricewatch.services.fetcher import ContentFetcher, SleepFn
from pricewatch.services.sites import SiteRegistry

logger = logging.getLogger("uvicorn.error")

ALLOWED_SCHEMES = {"http", "https"}


class InvalidUrlError(ValueError):
    """Raised for URLs that cannot be scraped."""

    pass


def is_valid_url(url: str) -> bool:
    """Only absolute http(s) URLs with a host are scrapeable."""
    try:
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ALLOWED_SCHEMES:
            return False
        if not parsed.hostname:
            return False
        return True
    except ValueError:
        return False


def get_domain(url: str) -> str | None:
    """Host of a URL without a leading "www." (e.g. "amazon.in")."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


class ScrapeOrchestrator:
    """Compose fetcher + registry + extractor into scrape_product()."""

    def __init__(
        self,
        fetcher: ContentFetcher,
        registry: SiteRegistry,
        *,
        request_delay: float = 0.5,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.registry = registry
        self.request_delay = request_delay
        self._sleep = sleep

    async def scrape_product(self, url: str) -> Snapshot:
        """Scrape one product page.

        Raises:
            InvalidUrlError: URL is not an absolute http(s) URL.
            FetchError: Propagated unchanged from the fetcher.
        """
        url = (url or "").strip()
        if not is_valid_url(url):
            raise InvalidUrlError(f"Invalid URL provided for scraping: {url!r}")

        if self.request_delay > 0:
            await self._sleep(self.request_delay)

        html = await self.fetcher.fetch_html(url)

        domain = get_domain(url) or ""
        site_config = self.registry.get_site_config(domain)
        snapshot = extract(html, site_config, base_url=url)

        logger.info(
            f"[scraper] scraped url={url} site={site_config.domain} "
            f"price={snapshot.price} currency={snapshot.currency} availability="
            f"{snapshot.availability.value if snapshot.availability else None}"
        )
        return snapshot
