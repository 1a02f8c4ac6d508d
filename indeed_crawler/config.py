"""Indeed Crawler — Configuration Loader.

Loads and validates application configuration from YAML files.
Resolves environment variables referenced via ${VAR_NAME} syntax.
Uses frozen dataclasses for type-safe configuration access.

The `search:` section is the crawl input. It accepts both the
snake_case keys used throughout this package and the camelCase keys
of the hosted actor input (position, maxItems, parseCompanyDetails...).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from indeed_crawler.errors import ConfigError
from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)

# ── Path Constants ────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
SETTINGS_PATH = CONFIG_DIR / "settings.yaml"

# ── Environment Variable Pattern ─────────────────────────
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)}")
PROXY_ENV_VAR = "INDEED_PROXY_URLS"

# ── Crawl Limits ──────────────────────────────────────────
DEFAULT_MAX_ITEMS = 50
DEFAULT_MAX_PAGES = 5
PAGE_CEILING = 10
PAGINATION_MODES = ("offset", "next_link")

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
]


# ═══════════════════════════════════════════════════════════
# Configuration Dataclasses
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SearchRequest:
    """One crawl's input. Created once, never mutated.

    Attributes:
        query_term: Job title / keywords (the `q` parameter).
        location: Free-text location (the `l` parameter).
        country: Two-letter country code selecting the Indeed host.
        max_items: Upper bound on records saved in the run.
        max_pages: Upper bound on listing pages visited (≤ PAGE_CEILING).
        parse_company_details: Also visit company pages linked from jobs.
        save_only_unique_items: Skip records already in the store.
    """

    query_term: str
    location: str = ""
    country: str = "us"
    max_items: int = DEFAULT_MAX_ITEMS
    max_pages: int = DEFAULT_MAX_PAGES
    parse_company_details: bool = False
    save_only_unique_items: bool = False


@dataclass(frozen=True)
class CrawlerConfig:
    """Configuration for fetching, pacing and challenge handling."""

    listing_delay_seconds: tuple[float, float] = (5.0, 10.0)
    detail_delay_seconds: tuple[float, float] = (2.0, 5.0)
    challenge_backoff_multiplier: float = 2.5
    timeout_seconds: float = 45.0
    max_retries: int = 2
    pagination_mode: str = "next_link"
    page_size: int = 10
    page_ceiling: int = PAGE_CEILING
    min_content_length: int = 512
    base_url: str = ""
    user_agents: list[str] = field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    proxy_urls: list[str] = field(default_factory=list)
    challenge_markers: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StorageConfig:
    """Configuration for the SQLite record store."""

    database_path: str = "data/indeed_jobs.db"
    max_consecutive_failures: int = 5


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration container."""

    crawler: CrawlerConfig
    storage: StorageConfig
    search: Optional[SearchRequest]
    log_level: str = "INFO"


# ═══════════════════════════════════════════════════════════
# YAML Loading & Environment Variable Resolution
# ═══════════════════════════════════════════════════════════


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${VAR_NAME} references in YAML values.

    Args:
        value: A string, dict, list, or primitive from parsed YAML.

    Returns:
        The same structure with all ${VAR_NAME} placeholders replaced.

    Raises:
        ConfigError: If a referenced environment variable is not set.
    """
    if isinstance(value, str):
        for var_name in ENV_VAR_PATTERN.findall(value):
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(
                    f"Environment variable '${{{var_name}}}' is required but not set. "
                    f"Add it to your .env file or export it in your shell."
                )
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file with UTF-8 encoding.

    Raises:
        ConfigError: If the file is missing, empty or not valid YAML.
    """
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ConfigError(f"Configuration file is empty: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {path}")

    logger.debug("Loaded configuration from %s", path)
    return data


def _validate_keys(data: dict[str, Any], required: list[str], section: str) -> None:
    """Validate that all required keys exist in a config section.

    Raises:
        ConfigError: If any required key is missing.
    """
    missing = [key for key in required if key not in data]
    if missing:
        raise ConfigError(
            f"Missing required configuration keys in '{section}': {', '.join(missing)}"
        )


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the value of the first key present in data."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_range(value: Any, section: str) -> tuple[float, float]:
    """Parse a [min, max] delay range.

    A single number is treated as a fixed delay.
    """
    if isinstance(value, (int, float)):
        low = high = float(value)
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = float(value[0]), float(value[1])
    else:
        raise ConfigError(f"'{section}' must be a number or a [min, max] pair, got {value!r}")
    if low < 0 or high < low:
        raise ConfigError(f"'{section}' must satisfy 0 <= min <= max, got {value!r}")
    return low, high


def _as_positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' must be an integer, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"'{name}' must be positive, got {number}")
    return number


# ═══════════════════════════════════════════════════════════
# Dataclass Builders
# ═══════════════════════════════════════════════════════════


def build_search_request(data: dict[str, Any]) -> SearchRequest:
    """Build a SearchRequest from raw crawl input.

    Args:
        data: The 'search' section of settings.yaml, or CLI overrides.

    Returns:
        A validated SearchRequest. max_pages is clamped to PAGE_CEILING.

    Raises:
        ConfigError: If the query term is missing or a limit is invalid.
    """
    query_term = str(_pick(data, "query_term", "position", "searchQuery", "query", default="")).strip()
    if not query_term:
        raise ConfigError("A search query is required (search.position / search.query_term)")

    max_items = _as_positive_int(
        _pick(data, "max_items", "maxItems", default=DEFAULT_MAX_ITEMS), "max_items"
    )
    max_pages = _as_positive_int(
        _pick(data, "max_pages", "maxPages", default=DEFAULT_MAX_PAGES), "max_pages"
    )
    if max_pages > PAGE_CEILING:
        logger.warning(
            "max_pages=%d exceeds the hard ceiling, using %d", max_pages, PAGE_CEILING,
        )
        max_pages = PAGE_CEILING

    country = str(_pick(data, "country", default="us")).strip().lower() or "us"
    if not re.fullmatch(r"[a-z]{2}", country):
        raise ConfigError(f"'country' must be a two-letter code, got {country!r}")

    return SearchRequest(
        query_term=query_term,
        location=str(_pick(data, "location", default="")).strip(),
        country=country,
        max_items=max_items,
        max_pages=max_pages,
        parse_company_details=bool(
            _pick(data, "parse_company_details", "parseCompanyDetails", default=False)
        ),
        save_only_unique_items=bool(
            _pick(data, "save_only_unique_items", "saveOnlyUniqueItems", default=False)
        ),
    )


def _build_crawler_config(data: dict[str, Any]) -> CrawlerConfig:
    """Build a CrawlerConfig from the 'crawler' section of settings.yaml."""
    defaults = CrawlerConfig()

    pagination_mode = str(data.get("pagination_mode", defaults.pagination_mode)).lower()
    if pagination_mode not in PAGINATION_MODES:
        raise ConfigError(
            f"'crawler.pagination_mode' must be one of {PAGINATION_MODES}, got {pagination_mode!r}"
        )

    page_ceiling = min(
        _as_positive_int(data.get("page_ceiling", PAGE_CEILING), "crawler.page_ceiling"),
        PAGE_CEILING,
    )

    user_agents = [ua for ua in data.get("user_agents", []) if ua] or defaults.user_agents

    proxy_urls = [p for p in data.get("proxy_urls", []) if p]
    env_proxies = os.environ.get(PROXY_ENV_VAR, "")
    proxy_urls.extend(p.strip() for p in env_proxies.split(",") if p.strip())

    multiplier = float(data.get("challenge_backoff_multiplier", defaults.challenge_backoff_multiplier))
    if multiplier < 1.0:
        raise ConfigError("'crawler.challenge_backoff_multiplier' must be >= 1.0")

    return CrawlerConfig(
        listing_delay_seconds=_as_range(
            data.get("listing_delay_seconds", defaults.listing_delay_seconds),
            "crawler.listing_delay_seconds",
        ),
        detail_delay_seconds=_as_range(
            data.get("detail_delay_seconds", defaults.detail_delay_seconds),
            "crawler.detail_delay_seconds",
        ),
        challenge_backoff_multiplier=multiplier,
        timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
        max_retries=_as_positive_int(data.get("max_retries", defaults.max_retries), "crawler.max_retries"),
        pagination_mode=pagination_mode,
        page_size=_as_positive_int(data.get("page_size", defaults.page_size), "crawler.page_size"),
        page_ceiling=page_ceiling,
        min_content_length=int(data.get("min_content_length", defaults.min_content_length)),
        base_url=str(data.get("base_url", "") or "").rstrip("/"),
        user_agents=user_agents,
        proxy_urls=proxy_urls,
        challenge_markers=[m for m in data.get("challenge_markers", []) if m],
    )


def _build_storage_config(data: dict[str, Any]) -> StorageConfig:
    """Build a StorageConfig from the 'storage' section of settings.yaml."""
    _validate_keys(data, ["database_path"], "storage")
    return StorageConfig(
        database_path=str(data["database_path"]),
        max_consecutive_failures=_as_positive_int(
            data.get("max_consecutive_failures", 5), "storage.max_consecutive_failures",
        ),
    )


# ═══════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════


def load_config(
    settings_path: Path | None = None,
    env_path: Path | None = None,
    search_overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """Load the complete application configuration.

    Args:
        settings_path: Override path to settings.yaml. Defaults to config/settings.yaml.
        env_path: Override path to .env file. Defaults to project root .env.
        search_overrides: Search input values that take precedence over the
            file's 'search' section (e.g. from the command line).

    Returns:
        A fully validated AppConfig. `search` is None when neither the file
        nor the overrides provide a search section.

    Raises:
        ConfigError: If a config file is missing or a value is invalid.
    """
    env_file = env_path or (PROJECT_ROOT / ".env")
    load_dotenv(env_file)
    logger.debug("Loaded environment from %s", env_file)

    settings = _resolve_env_vars(_load_yaml(settings_path or SETTINGS_PATH))
    _validate_keys(settings, ["crawler", "storage"], "settings")

    raw_search = dict(settings.get("search") or {})
    overrides = {k: v for k, v in (search_overrides or {}).items() if v is not None}
    raw_search.update(overrides)

    config = AppConfig(
        crawler=_build_crawler_config(settings["crawler"] or {}),
        storage=_build_storage_config(settings["storage"] or {}),
        search=build_search_request(raw_search) if raw_search else None,
        log_level=str((settings.get("logging") or {}).get("level", "INFO")).upper(),
    )

    logger.info("Configuration loaded successfully")
    logger.debug("Pagination mode: %s", config.crawler.pagination_mode)
    logger.debug("Proxy identities configured: %d", len(config.crawler.proxy_urls))
    logger.debug("Database path: %s", config.storage.database_path)

    return config
