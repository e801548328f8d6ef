"""Site selector registry.

Maps a domain to extraction rules (CSS selector lists and structured-data
hints) and owns the user-agent rotation pool.

The table is plain JSON (see config/sites.json) so supporting a new shop
is a data change. The file is re-read whenever its mtime changes; a broken
edit is logged and the previous table stays in effect.

Matching rules:
- Registered keys are matched as case-insensitive substrings of the domain
- First key in file order wins
- "generic" is the fallback and never matched by substring
"""

import json
import logging
import random
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger("uvicorn.error")

DEFAULT_SITE_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "sites.json"
GENERIC_KEY = "generic"

# src-equivalent attributes before lazy-load ones
DEFAULT_IMAGE_ATTRIBUTES = ["src", "content", "data-src", "data-old-hires", "data-lazy-src"]


class SiteSelectors(BaseModel):
    """Ordered selector lists per snapshot field."""

    name: list[str] = Field(default_factory=list)
    price: list[str] = Field(default_factory=list)
    currency: list[str] = Field(default_factory=list)
    availability: list[str] = Field(default_factory=list)
    image: list[str] = Field(default_factory=list)
    description: list[str] = Field(default_factory=list)


class SiteConfig(BaseModel):
    """Extraction rules for one shop."""

    domain: str
    selectors: SiteSelectors = Field(default_factory=SiteSelectors)
    use_json_ld: bool = False
    json_ld_type: str | None = None
    default_currency: str | None = None
    image_attributes: list[str] = Field(default_factory=lambda: list(DEFAULT_IMAGE_ATTRIBUTES))


class SiteTable(BaseModel):
    """The whole registry file."""

    user_agents: list[str] = Field(min_length=1)
    sites: dict[str, SiteConfig]

    @model_validator(mode="after")
    def _require_generic(self) -> "SiteTable":
        if GENERIC_KEY not in self.sites:
            raise ValueError(f"site table must define a '{GENERIC_KEY}' entry")
        return self


class SiteRegistryError(Exception):
    """Raised when the site table cannot be loaded at all."""

    pass


def load_site_table(path: Path) -> SiteTable:
    """Read and validate a site table file.

    Raises:
        SiteRegistryError: If the file is missing, not JSON, or fails validation.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return SiteTable.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise SiteRegistryError(f"Cannot load site table from {path}: {e}") from e


class SiteRegistry:
    """Domain -> SiteConfig lookup backed by a hot-reloadable JSON file."""

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        table: SiteTable | None = None,
        rng: random.Random | None = None,
    ):
        """Create a registry.

        Args:
            path: JSON file to load (default: packaged config/sites.json).
            table: In-memory table; disables file reloading when given.
            rng: Random source for user-agent rotation.
        """
        self._path = None if table is not None else Path(path or DEFAULT_SITE_CONFIG_PATH)
        self._rng = rng or random.Random()
        self._mtime: float | None = None
        self._table: SiteTable | None = table
        if self._path is not None:
            self._reload_if_changed()

    @classmethod
    def from_dict(cls, data: dict, *, rng: random.Random | None = None) -> "SiteRegistry":
        """Build a registry from an already-parsed table."""
        return cls(table=SiteTable.model_validate(data), rng=rng)

    @property
    def table(self) -> SiteTable:
        self._reload_if_changed()
        if self._table is None:
            raise SiteRegistryError("Site table not loaded")
        return self._table

    def _reload_if_changed(self) -> None:
        if self._path is None:
            return
        try:
            mtime = self._path.stat().st_mtime
        except OSError as e:
            if self._table is None:
                raise SiteRegistryError(f"Site table not found: {self._path}") from e
            logger.warning(f"[sites] cannot stat {self._path}: {e}; keeping previous table")
            return

        if self._mtime is not None and mtime == self._mtime:
            return

        try:
            table = load_site_table(self._path)
        except SiteRegistryError:
            if self._table is None:
                raise
            logger.exception(f"[sites] reload failed for {self._path}; keeping previous table")
            self._mtime = mtime
            return

        first_load = self._table is None
        self._table = table
        self._mtime = mtime
        if not first_load:
            logger.info(f"[sites] reloaded {self._path} sites={list(table.sites)}")

    def get_site_config(self, domain: str) -> SiteConfig:
        """Resolve the extraction rules for a domain.

        Args:
            domain: Host or host fragment (e.g. "www.amazon.in").

        Returns:
            First registered config whose key is a substring of the domain,
            or the generic config.
        """
        table = self.table
        needle = (domain or "").lower()
        for key, config in table.sites.items():
            if key == GENERIC_KEY:
                continue
            if key.lower() in needle:
                return config
        return table.sites[GENERIC_KEY]

    def random_user_agent(self) -> str:
        """Pick a user agent uniformly at random from the pool."""
        return self._rng.choice(self.table.user_agents)
