"""Product snapshot extraction from raw HTML.

Two strategies:
1. Structured data: JSON-LD <script> blocks, first block of the configured
   @type wins (any block that yields data when no type is configured).
   Broken blocks are logged and skipped.
2. Selector lists: per field, first selector with a non-empty match wins.
   <meta> elements give their `content`, images give the first present
   attribute from the site's attribute list, everything else gives trimmed text.

If a site asks for structured data first and it yields nothing, selector
extraction runs instead.

Extraction never raises on bad markup: a miss is just an unset field.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from pricewatch.models.product import Availability
from pricewatch.services.sites import SiteConfig

logger = logging.getLogger("uvicorn.error")


class ExtractionError(Exception):
    """A structured-data block or selector could not be used."""

    pass


@dataclass
class Snapshot:
    """Result of one scrape. Every field may be missing."""

    name: str | None = None
    price: Decimal | None = None
    currency: str | None = None
    availability: Availability | None = None
    image: str | None = None
    sku: str | None = None
    mpn: str | None = None
    brand: str | None = None
    description: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["price"] = str(self.price) if self.price is not None else None
        data["availability"] = self.availability.value if self.availability else None
        return data


# ============================================================
# Value normalization
# ============================================================

CURRENCY_MAP = {
    "₹": "INR",
    "rs.": "INR",
    "rs": "INR",
    "inr": "INR",
    "€": "EUR",
    "eur": "EUR",
    "£": "GBP",
    "gbp": "GBP",
    "¥": "JPY",
    "chf": "CHF",
    "us$": "USD",
    "usd": "USD",
    "$": "USD",
}

SCHEMA_AVAILABILITY = {
    "instock": Availability.IN_STOCK,
    "instoreonly": Availability.IN_STOCK,
    "onlineonly": Availability.IN_STOCK,
    "outofstock": Availability.OUT_OF_STOCK,
    "soldout": Availability.OUT_OF_STOCK,
    "discontinued": Availability.OUT_OF_STOCK,
    "limitedavailability": Availability.LIMITED_STOCK,
    "limitedstock": Availability.LIMITED_STOCK,
    "preorder": Availability.PRE_ORDER,
    "presale": Availability.PRE_ORDER,
}

# Order matters: "unavailable" contains "available"
AVAILABILITY_PATTERNS: list[tuple[re.Pattern[str], Availability]] = [
    (re.compile(r"pre[\s-]?order|coming soon"), Availability.PRE_ORDER),
    (
        re.compile(r"out of stock|sold out|unavailable|not available|not in stock|no longer available"),
        Availability.OUT_OF_STOCK,
    ),
    (re.compile(r"only \d+ left|few left|limited|low stock|hurry"), Availability.LIMITED_STOCK),
    (re.compile(r"in stock|available|add to (cart|bag)|buy now"), Availability.IN_STOCK),
]


def parse_price(value: Any) -> Decimal | None:
    """Parse a price from text or a JSON number.

    Everything but digits and dots is dropped first ("₹1,299.00" -> 1299.00).
    Unparseable or non-positive results give None.
    """
    if value is None or isinstance(value, bool):
        return None
    cleaned = re.sub(r"[^0-9.]", "", str(value)).strip(".")
    if not cleaned:
        return None
    try:
        price = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def normalize_currency(value: Any) -> str | None:
    """Map a currency code or symbol to an ISO 4217 code."""
    if not value:
        return None
    text = str(value).strip()
    if re.fullmatch(r"[A-Za-z]{3}", text):
        return text.upper()
    lowered = text.lower()
    for symbol, code in CURRENCY_MAP.items():
        if re.search(rf"(?<![a-z]){re.escape(symbol)}(?![a-z])", lowered):
            return code
    return None


def normalize_availability(value: Any) -> Availability | None:
    """Map schema.org availability URLs or storefront text onto Availability."""
    if not value:
        return None
    text = str(value).strip()
    token = re.sub(r"[\s_-]", "", text.rsplit("/", 1)[-1]).lower()
    if token in SCHEMA_AVAILABILITY:
        return SCHEMA_AVAILABILITY[token]
    lowered = text.lower()
    for pattern, availability in AVAILABILITY_PATTERNS:
        if pattern.search(lowered):
            return availability
    return None


def _clean_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _first_image(value: Any) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl")
    return _clean_str(value)


# ============================================================
# Strategy 1: structured data (JSON-LD)
# ============================================================


def _parse_json_ld_block(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"invalid JSON-LD block: {e}") from e


def _iter_nodes(data: Any):
    """Yield every dict node of a JSON-LD payload (lists and @graph flattened)."""
    if isinstance(data, list):
        for item in data:
            yield from _iter_nodes(item)
    elif isinstance(data, dict):
        yield data
        graph = data.get("@graph")
        if isinstance(graph, list):
            yield from _iter_nodes(graph)


def _type_matches(node: dict[str, Any], target_type: str) -> bool:
    declared = node.get("@type")
    types = declared if isinstance(declared, list) else [declared]
    target = target_type.lower()
    return any(isinstance(t, str) and t.lower() == target for t in types)


def _snapshot_from_node(node: dict[str, Any]) -> Snapshot:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = next((o for o in offers if isinstance(o, dict)), None)
    if not isinstance(offers, dict):
        offers = {}

    price_value = offers.get("price")
    if price_value is None:
        price_value = offers.get("lowPrice")
    if price_value is None and isinstance(offers.get("priceSpecification"), dict):
        price_value = offers["priceSpecification"].get("price")

    brand = node.get("brand")
    if isinstance(brand, dict):
        brand = brand.get("name")

    return Snapshot(
        name=_clean_str(node.get("name")),
        price=parse_price(price_value),
        currency=normalize_currency(offers.get("priceCurrency")),
        availability=normalize_availability(offers.get("availability")),
        image=_first_image(node.get("image")),
        sku=_clean_str(node.get("sku")),
        mpn=_clean_str(node.get("mpn")),
        brand=_clean_str(brand),
        description=_clean_str(node.get("description")),
    )


def extract_structured_data(soup: BeautifulSoup, target_type: str | None = None) -> Snapshot:
    """Build a snapshot from the first matching JSON-LD node.

    Args:
        soup: Parsed page.
        target_type: Required @type (e.g. "Product"); None accepts the first
            node that yields any data.

    Returns:
        Snapshot (empty if no block matched).
    """
    for index, script in enumerate(soup.find_all("script", type=lambda t: t and "ld+json" in t.lower())):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = _parse_json_ld_block(raw)
        except ExtractionError as e:
            logger.warning(f"[extractor] skipping JSON-LD block #{index}: {e}")
            continue

        for node in _iter_nodes(data):
            if target_type and not _type_matches(node, target_type):
                continue
            snapshot = _snapshot_from_node(node)
            if target_type or not snapshot.is_empty():
                return snapshot
    return Snapshot()


# ============================================================
# Strategy 2: selector lists
# ============================================================


def _select_first(soup: BeautifulSoup, selector: str) -> Tag | None:
    try:
        return soup.select_one(selector)
    except SelectorSyntaxError as e:
        logger.warning(f"[extractor] bad selector {selector!r}: {e}")
        return None


def extract_first_text(soup: BeautifulSoup, selectors: list[str]) -> str | None:
    """First non-empty value among the selectors (meta -> content, else text)."""
    for selector in selectors:
        el = _select_first(soup, selector)
        if el is None:
            continue
        if el.name == "meta":
            value = _clean_str(el.get("content"))
        else:
            value = _clean_str(el.get_text(" ", strip=True))
        if value:
            return value
    return None


def extract_first_attr(soup: BeautifulSoup, selectors: list[str], attrs: list[str]) -> str | None:
    """First present attribute, in attrs order, of the first matching element per selector."""
    for selector in selectors:
        el = _select_first(soup, selector)
        if el is None:
            continue
        for attr in attrs:
            value = _clean_str(el.get(attr))
            if value:
                return value
    return None


def extract_with_selectors(soup: BeautifulSoup, config: SiteConfig) -> Snapshot:
    """Build a snapshot from the site's ordered selector lists."""
    selectors = config.selectors
    price_text = extract_first_text(soup, selectors.price)
    return Snapshot(
        name=extract_first_text(soup, selectors.name),
        price=parse_price(price_text),
        currency=normalize_currency(extract_first_text(soup, selectors.currency))
        or normalize_currency(price_text),
        availability=normalize_availability(extract_first_text(soup, selectors.availability)),
        image=extract_first_attr(soup, selectors.image, config.image_attributes),
        description=extract_first_text(soup, selectors.description),
    )


# ============================================================
# Entry point
# ============================================================


def extract(html: str, site_config: SiteConfig, *, base_url: str | None = None) -> Snapshot:
    """Extract a product snapshot from a page.

    Args:
        html: Raw page markup.
        site_config: Rules from the site registry.
        base_url: Page URL, used to absolutize relative image links.

    Returns:
        Snapshot with whatever could be found.
    """
    soup = BeautifulSoup(html, "lxml")

    snapshot = Snapshot()
    if site_config.use_json_ld:
        snapshot = extract_structured_data(soup, site_config.json_ld_type)
        if snapshot.is_empty():
            logger.debug(f"[extractor] no structured data for {site_config.domain}, using selectors")

    if snapshot.is_empty():
        snapshot = extract_with_selectors(soup, site_config)

    if snapshot.currency is None and site_config.default_currency:
        snapshot.currency = site_config.default_currency
    if snapshot.image and base_url:
        snapshot.image = urljoin(base_url, snapshot.image)
    return snapshot
