"""Tests for the SerpAPI client and search result parsing."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from resale.errors import ConfigurationError, ProviderError
from resale.pipeline.catalog import ResearchCatalog, default_catalog
from resale.pipeline.search import (
    EBAY_SOLD_PLATFORM,
    SERPAPI_URL,
    SerpApiClient,
    extract_condition,
    is_sold,
    parse_ebay_sold_results,
    parse_price,
    parse_search_results,
    price_from_text,
    result_sources,
)
from resale.utils.retry import RetryOptions

NO_WAIT = RetryOptions(max_retries=2, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def catalog() -> ResearchCatalog:
    return default_catalog()


def _client(handler, retry: RetryOptions = NO_WAIT) -> SerpApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SerpApiClient("test-key", http_client=http, retry=retry)


class TestSerpApiClient:
    def test_missing_key_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="SERPAPI_API_KEY"):
            SerpApiClient("")

    @pytest.mark.asyncio
    async def test_google_search_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"organic_results": []})

        data = await _client(handler).search("patagonia 25455", num=10)

        assert data == {"organic_results": []}
        params = seen[0].url.params
        assert str(seen[0].url).startswith(SERPAPI_URL)
        assert params["q"] == "patagonia 25455"
        assert params["engine"] == "google"
        assert params["num"] == "10"
        assert params["api_key"] == "test-key"

    @pytest.mark.asyncio
    async def test_sold_search_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        await _client(handler).search_sold("patagonia fleece")

        params = seen[0].url.params
        assert params["engine"] == "ebay"
        assert params["_nkw"] == "patagonia fleece"
        assert params["LH_Sold"] == "1"
        assert params["LH_Complete"] == "1"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"ok": True})

        assert await _client(handler).search("q") == {"ok": True}
        assert calls == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, text="Invalid API key")

        with pytest.raises(ProviderError) as exc_info:
            await _client(handler).search("q")

        assert exc_info.value.status_code == 401
        assert exc_info.value.retryable is False
        assert calls == 1

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderError, match="timed out"):
            await _client(handler).search("q")
        assert calls == 3

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler, RetryOptions(max_retries=0))
        with pytest.raises(ProviderError, match="network error"):
            await client.search("q")

    @pytest.mark.asyncio
    async def test_non_object_body_becomes_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["unexpected"])

        assert await _client(handler).search("q") == {}

    @pytest.mark.asyncio
    async def test_error_payload_returned(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "Google hasn't returned any results"})

        data = await _client(handler).search("q")
        assert "error" in data


class TestParsePrice:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (45, 45.0),
            (45.5, 45.5),
            ("$1,234.56", 1234.56),
            ("US $89.99", 89.99),
            ({"extracted": 30.0, "raw": "$30.00"}, 30.0),
            ({"raw": "$72"}, 72.0),
            ({"from": {"extracted": 12}}, 12.0),
        ],
    )
    def test_valid(self, value: Any, expected: float) -> None:
        assert parse_price(value) == expected

    @pytest.mark.parametrize("value", [None, True, -5, "free", {}, ["$5"]])
    def test_invalid(self, value: Any) -> None:
        assert parse_price(value) is None

    def test_price_from_text(self) -> None:
        assert price_from_text("Sold for $ 1,200.00 last week") == 1200.0
        assert price_from_text("no price here") is None


class TestHelpers:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("NWT Patagonia fleece", "New with tags"),
            ("Patagonia NWOT", "New without tags"),
            ("Excellent used condition", "Excellent"),
            ("In great condition", "Good"),
            ("fair wear on cuffs", "Fair"),
            ("Pre-owned jacket", "Pre-owned"),
            ("Patagonia fleece", None),
        ],
    )
    def test_extract_condition(self, text: str, expected: str | None) -> None:
        assert extract_condition(text) == expected

    def test_is_sold(self) -> None:
        assert is_sold("SOLD Patagonia", "https://x.com/1")
        assert is_sold("Patagonia", "https://www.ebay.com/sch/i.html?LH_Sold=1")
        assert not is_sold("Patagonia", "https://www.ebay.com/itm/1")

    @pytest.mark.parametrize(
        "title", ["Vintage Soldier Field Jacket", "Unsold Patagonia stock", "Resold fleece"]
    )
    def test_sold_needs_whole_word(self, title: str) -> None:
        assert not is_sold(title, "https://www.ebay.com/itm/1")

    def test_sold_word_in_url(self) -> None:
        assert is_sold("Patagonia fleece", "https://www.poshmark.com/sold/listing/1")
        assert not is_sold("Patagonia fleece", "https://www.example.com/soldier-jacket")

    def test_result_sources(self) -> None:
        data = {"organic_results": [{"link": f"https://a.com/{i}"} for i in range(5)]}
        assert result_sources(data) == ["https://a.com/0", "https://a.com/1", "https://a.com/2"]
        assert result_sources({}) == []


class TestParseSearchResults:
    def test_shopping_then_organic(self, catalog: ResearchCatalog) -> None:
        data = {
            "shopping_results": [
                {
                    "title": "Patagonia Better Sweater",
                    "link": "https://shop.example/1",
                    "extracted_price": 79.0,
                    "source": "REI",
                },
                {"title": "No price", "link": "https://shop.example/2"},
            ],
            "organic_results": [
                {
                    "title": "Patagonia 25455 Fleece NWT",
                    "link": "https://www.ebay.com/itm/123",
                    "snippet": "Buy it now $65.00",
                },
                {"title": "Blog post", "link": "https://blog.example/patagonia"},
            ],
        }
        listings = parse_search_results(data, catalog)

        assert [listing.platform for listing in listings] == ["REI", "eBay"]
        assert listings[0].price == 79.0
        assert listings[1].price == 65.0
        assert listings[1].condition == "New with tags"
        assert listings[1].sold_date is None

    def test_targeted_query_skips_shopping_and_other_platforms(
        self, catalog: ResearchCatalog
    ) -> None:
        data = {
            "shopping_results": [
                {"title": "x", "link": "https://shop.example/1", "extracted_price": 10}
            ],
            "organic_results": [
                {"title": "Patagonia fleece", "link": "https://poshmark.com/listing/1"},
                {"title": "Patagonia fleece", "link": "https://www.ebay.com/itm/9"},
            ],
        }
        listings = parse_search_results(data, catalog, target_platform="Poshmark")

        assert len(listings) == 1
        assert listings[0].platform == "Poshmark"
        assert listings[0].price == 0.0

    def test_rich_snippet_price(self, catalog: ResearchCatalog) -> None:
        data = {
            "organic_results": [
                {
                    "title": "Patagonia Fleece",
                    "link": "https://www.mercari.com/us/item/m1",
                    "rich_snippet": {"bottom": {"detected_extensions": {"price": 42}}},
                }
            ]
        }
        [listing] = parse_search_results(data, catalog)
        assert listing.price == 42.0

    def test_malformed_entries_skipped(self, catalog: ResearchCatalog) -> None:
        data = {"organic_results": ["junk", {"title": None}, {"link": "https://ebay.com/1"}]}
        assert parse_search_results(data, catalog) == []
        assert parse_search_results({"organic_results": "nope"}, catalog) == []


class TestParseEbaySold:
    def test_priced_results_only(self) -> None:
        data = {
            "organic_results": [
                {
                    "title": "Patagonia 25455 Better Sweater",
                    "link": "https://www.ebay.com/itm/1",
                    "price": {"raw": "$58.00", "extracted": 58.0},
                    "condition": "Pre-Owned",
                    "sold_date": "Sold Feb 3, 2026",
                },
                {"title": "Unpriced", "link": "https://www.ebay.com/itm/2"},
                {"title": "Zero", "link": "https://www.ebay.com/itm/3", "price": 0},
            ]
        }
        [listing] = parse_ebay_sold_results(data)

        assert listing.platform == EBAY_SOLD_PLATFORM
        assert listing.price == 58.0
        assert listing.condition == "Pre-Owned"
        assert listing.sold_date == "Sold Feb 3, 2026"

    def test_missing_sold_date_defaults(self) -> None:
        data = {"organic_results": [{"title": "t", "link": "https://ebay.com/i/1", "price": 20}]}
        [listing] = parse_ebay_sold_results(data)
        assert listing.sold_date == "sold"
