"""Tests for the research catalog and brand validation/clarification."""

from __future__ import annotations

import pytest

from resale.models.contracts import ClarificationAnswer, ClarificationRequest
from resale.pipeline.brands import (
    apply_clarification,
    is_valid_brand_name,
    prepare_item,
    resolve_brand,
)
from resale.pipeline.catalog import default_catalog
from tests.factories import make_item


@pytest.fixture
def catalog():
    return default_catalog()


class TestResearchCatalog:
    def test_loaded_once(self) -> None:
        assert default_catalog() is default_catalog()

    def test_catalog_is_immutable(self, catalog) -> None:
        with pytest.raises(TypeError):
            catalog.platforms["new"] = catalog.platforms["ebay"]  # type: ignore[index]

    def test_platforms_for_tier(self, catalog) -> None:
        names = [p.name for p in catalog.platforms_for_tier("luxury")]
        assert names[:2] == ["TheRealReal", "Vestiaire Collective"]

    def test_unknown_tier_falls_back(self, catalog) -> None:
        assert [p.key for p in catalog.platforms_for_tier(None)] == ["ebay", "poshmark", "mercari"]
        assert [p.key for p in catalog.platforms_for_tier("bogus")] == [
            "ebay",
            "poshmark",
            "mercari",
        ]

    def test_platform_for_url(self, catalog) -> None:
        platform = catalog.platform_for_url("https://poshmark.com/listing/abc")
        assert platform is not None and platform.name == "Poshmark"
        assert catalog.platform_for_url("https://example.com/x") is None

    def test_category_lookup(self, catalog) -> None:
        fleece = catalog.category(" Fleece ")
        assert fleece is not None
        assert "down sweater" in fleece.exclude_terms
        assert catalog.category("spacesuit") is None
        assert catalog.category(None) is None

    def test_find_brand_by_alias(self, catalog) -> None:
        entry = catalog.find_brand("polo ralph lauren")
        assert entry is not None
        assert entry.name == "RALPH LAUREN"
        assert entry.tier == "premium"

    def test_find_brand_by_rn(self, catalog) -> None:
        entry = catalog.find_brand_by_rn("RN 51884")
        assert entry is not None and entry.name == "PATAGONIA"


class TestBrandValidation:
    @pytest.mark.parametrize("brand", ["Patagonia", "Polo Ralph Lauren", "J.Crew", "H&M"])
    def test_valid(self, brand: str) -> None:
        assert is_valid_brand_name(brand)

    @pytest.mark.parametrize(
        "brand",
        [
            "Appears to be a handmade wool sweater",
            "Unknown",
            "likely Pendleton",
            "A B C D E F",
            "X" * 41,
            "",
            None,
        ],
    )
    def test_invalid(self, brand: str | None) -> None:
        assert not is_valid_brand_name(brand)


class TestPrepareItem:
    def test_canonicalizes_alias_and_fills_tier(self, catalog) -> None:
        item = prepare_item(make_item(brand="tnf", style_number=None), catalog)
        assert item.brand == "THE NORTH FACE"
        assert item.brand_tier == "premium"

    def test_keeps_extracted_tier(self, catalog) -> None:
        item = prepare_item(make_item(brand="Patagonia", brand_tier="vintage"), catalog)
        assert item.brand == "PATAGONIA"
        assert item.brand_tier == "vintage"

    def test_rejected_brand_moves_to_notes(self, catalog) -> None:
        text = "Appears to be a vintage wool coat, likely handmade"
        item = prepare_item(make_item(brand=text, style_number=None), catalog)
        assert item.brand is None
        assert item.brand_notes == text

    def test_rn_number_resolves_missing_brand(self, catalog) -> None:
        item = prepare_item(make_item(brand=None, rn_number="51884"), catalog)
        assert item.brand == "PATAGONIA"

    def test_unknown_brand_kept(self, catalog) -> None:
        item = prepare_item(make_item(brand="Obscure Label Co"), catalog)
        assert item.brand == "Obscure Label Co"
        assert item.brand_tier == "unknown"
        assert resolve_brand(item, catalog) is None


class TestApplyClarification:
    def _pending(self, **overrides):
        request = ClarificationRequest(field="category", question="What is it?")
        return make_item(clarification_needed=request, **overrides)

    def test_sets_category_and_clears_request(self) -> None:
        item = apply_clarification(self._pending(), ClarificationAnswer(field="category", value="fleece"))
        assert item.category == "fleece"
        assert item.clarification_needed is None

    def test_era_alias(self) -> None:
        item = apply_clarification(self._pending(), ClarificationAnswer(field="era", value="1990s"))
        assert item.estimated_era == "1990s"

    def test_condition_alias(self) -> None:
        answer = ClarificationAnswer(field="overallGrade", value="Excellent")
        assert apply_clarification(self._pending(), answer).condition == "Excellent"

    def test_skip_leaves_values_unchanged(self) -> None:
        item = self._pending(category="jacket")
        updated = apply_clarification(item, ClarificationAnswer(field="category", value="skip"))
        assert updated.category == "jacket"
        assert updated.clarification_needed is None

    def test_generic_camel_case_field(self) -> None:
        answer = ClarificationAnswer(field="countryOfOrigin", value="Made in USA")
        assert apply_clarification(self._pending(), answer).country_of_origin == "Made in USA"

    def test_list_field_replaced(self) -> None:
        answer = ClarificationAnswer(field="materials", value="100% wool")
        assert apply_clarification(self._pending(), answer).materials == ["100% wool"]

    def test_unknown_field_ignored(self) -> None:
        item = self._pending()
        updated = apply_clarification(item, ClarificationAnswer(field="sleeveLength", value="long"))
        assert updated.model_dump(exclude={"clarification_needed"}) == item.model_dump(
            exclude={"clarification_needed"}
        )

    def test_non_text_field_ignored(self) -> None:
        updated = apply_clarification(self._pending(), ClarificationAnswer(field="confidence", value="high"))
        assert updated.confidence == 0.5
