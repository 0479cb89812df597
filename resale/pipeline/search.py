"""Web search provider client and defensive result parsing.

SerpAPI is called in two modes: ``engine=google`` (organic + shopping
results) for platform and general queries, and ``engine=ebay`` with
``LH_Sold=1&LH_Complete=1`` for completed sales. Responses are treated as
untyped JSON; anything missing or malformed is skipped, never raised.
"""

from __future__ import annotations

import re
from typing import Any, Protocol

import httpx
import structlog

from resale.config import settings
from resale.errors import ConfigurationError, ProviderError
from resale.models.contracts import Listing
from resale.pipeline.catalog import ResearchCatalog
from resale.utils.retry import RetryOptions, with_retry

log = structlog.get_logger("search")

SERPAPI_URL = "https://serpapi.com/search"
SEARCH_RETRY = RetryOptions(max_retries=2, base_delay=2.0)
EBAY_SOLD_PLATFORM = "eBay (Sold)"

_DOLLAR_PRICE = re.compile(r"\$\s?([\d,]+(?:\.\d{1,2})?)")
_NUMBER = re.compile(r"[\d,]+(?:\.\d+)?")


class SearchProvider(Protocol):
    async def search(self, query: str, *, num: int = 15) -> dict[str, Any]: ...

    async def search_sold(self, query: str) -> dict[str, Any]: ...


class SerpApiClient:
    """SerpAPI over httpx, with retry on transient failures."""

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
        retry: RetryOptions = SEARCH_RETRY,
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError("SERPAPI_API_KEY not configured")
        self._api_key = api_key
        self._client = http_client
        self._retry = retry
        self._timeout = timeout

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient | None = None) -> SerpApiClient:
        return cls(settings.serpapi_api_key, http_client=http_client)

    async def search(self, query: str, *, num: int = 15) -> dict[str, Any]:
        return await self._get({"q": query, "engine": "google", "num": str(num)})

    async def search_sold(self, query: str) -> dict[str, Any]:
        return await self._get(
            {
                "q": query,
                "_nkw": query,
                "engine": "ebay",
                "ebay_domain": "ebay.com",
                "LH_Complete": "1",
                "LH_Sold": "1",
            }
        )

    async def _get(self, params: dict[str, str]) -> dict[str, Any]:
        params = {**params, "api_key": self._api_key}
        return await with_retry(lambda: self._request(params), self._retry)

    async def _request(self, params: dict[str, str]) -> dict[str, Any]:
        client = self._client or httpx.AsyncClient()
        try:
            response = await client.get(SERPAPI_URL, params=params, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise ProviderError("serpapi", f"SerpAPI request timed out: {type(exc).__name__}") from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "serpapi", f"SerpAPI network error: {type(exc).__name__}: {exc}"
            ) from exc
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code != 200:
            raise ProviderError(
                "serpapi",
                f"SerpAPI error ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )
        data = response.json()
        if not isinstance(data, dict):
            return {}
        if data.get("error"):
            log.warning("serpapi_error_payload", error=str(data["error"])[:200])
        return data


# === Parsing ===


def parse_price(value: Any) -> float | None:
    """A price from a number, a "$1,234.56" string, or a SerpAPI price object."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    if isinstance(value, dict):
        for key in ("extracted", "extracted_price", "value", "raw", "from"):
            price = parse_price(value.get(key))
            if price is not None:
                return price
        return None
    if isinstance(value, str):
        match = _NUMBER.search(value)
        if match is None:
            return None
        try:
            return float(match.group(0).replace(",", ""))
        except ValueError:
            return None
    return None


def price_from_text(text: str) -> float | None:
    match = _DOLLAR_PRICE.search(text)
    if match is None:
        return None
    try:
        return float(match.group(1).replace(",", ""))
    except ValueError:
        return None


def extract_condition(text: str) -> str | None:
    lower = text.lower()
    if "nwot" in lower or "new without tags" in lower:
        return "New without tags"
    if "nwt" in lower or "new with tags" in lower:
        return "New with tags"
    if "excellent" in lower:
        return "Excellent"
    if "good condition" in lower or "great condition" in lower:
        return "Good"
    if "fair" in lower:
        return "Fair"
    if "pre-owned" in lower or "preowned" in lower:
        return "Pre-owned"
    return None


_SOLD_WORD = re.compile(r"(?<![a-z])sold(?![a-z])", re.IGNORECASE)


def is_sold(title: str, url: str) -> bool:
    return bool(_SOLD_WORD.search(title) or _SOLD_WORD.search(url)) or "LH_Sold=1" in url


def _list(data: dict[str, Any], *keys: str) -> list[dict[str, Any]]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, list):
            return [v for v in value if isinstance(v, dict)]
    return []


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _organic_price(result: dict[str, Any]) -> float | None:
    price = parse_price(result.get("price"))
    if price is not None:
        return price
    snippet = result.get("rich_snippet")
    bottom = snippet.get("bottom") if isinstance(snippet, dict) else None
    extensions = bottom.get("detected_extensions") if isinstance(bottom, dict) else None
    if isinstance(extensions, dict):
        return parse_price(extensions.get("price"))
    return None


def parse_search_results(
    data: dict[str, Any],
    catalog: ResearchCatalog,
    target_platform: str | None = None,
) -> list[Listing]:
    """Listings from a google-engine response.

    Shopping results come first on untargeted queries (their prices are
    structured). Organic results are kept only when they point at a known
    resale platform, restricted to ``target_platform`` when one is given.
    """
    listings: list[Listing] = []

    if target_platform is None:
        for item in _list(data, "shopping_results", "shopping"):
            title, url = item.get("title"), item.get("link") or item.get("product_link")
            price = parse_price(item.get("extracted_price")) or parse_price(item.get("price"))
            if not title or not url or price is None:
                continue
            listings.append(
                Listing(
                    title=str(title),
                    price=price,
                    platform=str(item.get("source") or "Google Shopping"),
                    url=str(url),
                    image_url=_opt_str(item.get("thumbnail")),
                )
            )

    for item in _list(data, "organic_results", "organic"):
        title, url = item.get("title"), item.get("link")
        if not title or not url:
            continue
        title, url = str(title), str(url)
        platform = catalog.platform_for_url(url)
        if platform is None:
            continue
        if target_platform is not None and platform.name != target_platform:
            continue

        snippet = str(item.get("snippet") or "")
        price = _organic_price(item)
        if price is None:
            price = price_from_text(f"{title} {snippet}") or 0.0

        listings.append(
            Listing(
                title=title,
                price=price,
                platform=platform.name,
                url=url,
                condition=extract_condition(f"{title} {snippet}"),
                sold_date="sold" if is_sold(title, url) else None,
                image_url=_opt_str(item.get("thumbnail")),
            )
        )

    return listings


def parse_ebay_sold_results(data: dict[str, Any]) -> list[Listing]:
    """Priced listings from an ebay-engine sold search."""
    listings: list[Listing] = []
    for item in _list(data, "organic_results"):
        title, url = item.get("title"), item.get("link")
        price = parse_price(item.get("price"))
        if not title or not url or not price:
            continue
        listings.append(
            Listing(
                title=str(title),
                price=price,
                platform=EBAY_SOLD_PLATFORM,
                url=str(url),
                condition=_opt_str(item.get("condition")),
                sold_date=str(item.get("sold_date") or "sold"),
                image_url=_opt_str(item.get("thumbnail")),
            )
        )
    return listings


def result_sources(data: dict[str, Any], limit: int = 3) -> list[str]:
    links = [str(r["link"]) for r in _list(data, "organic_results", "organic") if r.get("link")]
    return links[:limit]
