"""Tests for search query planning."""

from __future__ import annotations

import pytest

from resale.pipeline.catalog import ResearchCatalog, default_catalog
from resale.pipeline.decoders import decode_style_code
from resale.pipeline.query_planner import (
    MAX_GENERAL_QUERIES,
    MAX_PLATFORM_QUERIES,
    build_queries,
    build_sold_query_cascade,
    core_search_term,
    format_exclusions,
)
from tests.factories import make_item


@pytest.fixture
def catalog() -> ResearchCatalog:
    return default_catalog()


class TestFormatExclusions:
    def test_single_and_multi_word_terms(self) -> None:
        assert format_exclusions(("puffer", "down jacket")) == '-puffer -"down jacket"'

    def test_capped_at_four_terms(self) -> None:
        assert format_exclusions(("a", "b", "c", "d", "e")) == "-a -b -c -d"


class TestCoreSearchTerm:
    def test_brand_and_style_number(self) -> None:
        assert core_search_term(make_item(), None) == "PATAGONIA 25455"

    def test_brand_and_category_without_style(self) -> None:
        item = make_item(style_number=None)
        assert core_search_term(item, "fleece") == "PATAGONIA fleece"

    def test_unbranded_uses_style_and_category(self) -> None:
        item = make_item(brand=None, style_number=None, style="cable knit")
        assert core_search_term(item, "sweater") == "cable knit sweater"

    def test_nothing_known(self) -> None:
        item = make_item(brand=None, style_number=None)
        assert core_search_term(item, None) == ""


class TestSoldCascade:
    def test_branded_cascade_narrowest_first(self, catalog: ResearchCatalog) -> None:
        cascade = build_sold_query_cascade(make_item(), "fleece", catalog)

        assert [q.level for q in cascade] == ["style", "category_exclusions", "category", "brand"]
        assert cascade[0].query == "PATAGONIA 25455"
        assert cascade[1].query.startswith("PATAGONIA fleece -")
        assert '-"down sweater"' in cascade[1].query
        assert cascade[2].query == "PATAGONIA fleece"
        assert cascade[3].query == "PATAGONIA"

    def test_category_without_exclusions_is_skipped(self, catalog: ResearchCatalog) -> None:
        cascade = build_sold_query_cascade(make_item(style_number=None), "widget", catalog)
        assert [q.level for q in cascade] == ["category", "brand"]

    def test_category_falls_back_to_item(self, catalog: ResearchCatalog) -> None:
        cascade = build_sold_query_cascade(make_item(category="fleece"), None, catalog)
        assert "PATAGONIA fleece" in [q.query for q in cascade]

    def test_unbranded_attribute_queries(self, catalog: ResearchCatalog) -> None:
        item = make_item(
            brand=None, style_number=None, style="fisherman", materials=["wool", "cotton"]
        )
        cascade = build_sold_query_cascade(item, "sweater", catalog)
        assert [q.query for q in cascade] == [
            "fisherman wool sweater",
            "fisherman sweater",
            "sweater",
        ]
        assert {q.level for q in cascade} == {"attributes"}

    def test_unbranded_falls_back_to_suggestion(self, catalog: ResearchCatalog) -> None:
        item = make_item(brand=None, style_number=None, search_suggestions=["vintage knit"])
        cascade = build_sold_query_cascade(item, None, catalog)
        assert [q.query for q in cascade] == ["vintage knit"]

    def test_entries_are_unique(self, catalog: ResearchCatalog) -> None:
        item = make_item(brand=None, style_number=None)
        cascade = build_sold_query_cascade(item, "sweater", catalog)
        assert [q.query for q in cascade] == ["sweater"]


class TestBuildQueries:
    def test_platform_queries_start_with_ebay(self, catalog: ResearchCatalog) -> None:
        plan = build_queries(make_item(brand_tier="premium"), "fleece", catalog)

        sites = [p.site for p in plan.platform_specific]
        assert sites[0] == "ebay.com"
        assert sites.count("ebay.com") == 1
        assert "poshmark.com" in sites
        assert len(plan.platform_specific) <= MAX_PLATFORM_QUERIES
        assert plan.platform_specific[0].query == "PATAGONIA 25455 site:ebay.com"

    def test_unknown_tier_platforms(self, catalog: ResearchCatalog) -> None:
        plan = build_queries(make_item(), None, catalog)
        assert [p.platform for p in plan.platform_specific] == ["eBay", "Poshmark", "Mercari"]

    def test_general_queries_ordered_and_capped(self, catalog: ResearchCatalog) -> None:
        item = make_item(
            search_suggestions=["patagonia better sweater", "patagonia fleece", "third"],
            sku="25455-NENA",
            rn_number="51884",
        )
        decoded = decode_style_code("PATAGONIA", "25455")
        plan = build_queries(item, "fleece", catalog, decoded)

        assert len(plan.general) == MAX_GENERAL_QUERIES
        assert plan.general[:2] == ("patagonia better sweater", "patagonia fleece")
        assert plan.general[2] == "Patagonia Better Sweater 25455"

    def test_sku_and_rn_queries(self, catalog: ResearchCatalog) -> None:
        plan = build_queries(make_item(sku="25455-NENA", rn_number="51884"), None, catalog)
        assert plan.general == ('"PATAGONIA" "25455-NENA"', "RN 51884 manufacturer clothing")

    def test_duplicate_suggestions_collapse(self, catalog: ResearchCatalog) -> None:
        item = make_item(search_suggestions=["Patagonia Fleece", "patagonia  fleece"])
        plan = build_queries(item, None, catalog)
        assert plan.general == ("Patagonia Fleece",)

    def test_unbranded_attribute_general_queries(self, catalog: ResearchCatalog) -> None:
        item = make_item(
            brand=None,
            style_number=None,
            style="fisherman",
            estimated_origin="Irish",
            notable_features=["cable pattern"],
        )
        plan = build_queries(item, "sweater", catalog)
        assert plan.general == (
            "fisherman sweater vintage resale",
            "Irish sweater handmade",
            "cable pattern sweater vintage",
        )

    def test_primary_query_is_narrowest_sold_query(self, catalog: ResearchCatalog) -> None:
        plan = build_queries(make_item(), "fleece", catalog)
        assert plan.primary_query == "PATAGONIA 25455"
        assert plan.all_queries[0] == "PATAGONIA 25455"

    def test_all_queries_unique(self, catalog: ResearchCatalog) -> None:
        plan = build_queries(make_item(), "fleece", catalog)
        lowered = [q.lower() for q in plan.all_queries]
        assert len(lowered) == len(set(lowered))

    def test_empty_plan(self, catalog: ResearchCatalog) -> None:
        plan = build_queries(make_item(brand=None, style_number=None), None, catalog)
        assert plan.is_empty
        assert plan.primary_query is None
        assert plan.all_queries == []
