"""Search query planning for one scan.

Two outputs:

- general and platform-specific web queries, in priority order (AI
  suggestions, decoded search term, one ``site:`` query per target platform,
  exact brand+SKU, RN lookup, garment attributes when the brand is unknown);
- the sold-listings cascade, narrowest first: brand+style number, brand+
  category with exclusion terms, brand+category, brand alone.

Lists are deduplicated and capped to bound external calls per scan.
"""

from __future__ import annotations

from dataclasses import dataclass

from resale.models.contracts import DecodedStyleInfo, ExtractedItem
from resale.pipeline.catalog import ResearchCatalog

MAX_GENERAL_QUERIES = 3
MAX_PLATFORM_QUERIES = 4
MAX_SUGGESTIONS = 2
MAX_EXCLUSION_TERMS = 4
TIER_PLATFORM_COUNT = 3


@dataclass(frozen=True)
class PlatformQuery:
    query: str
    platform: str
    site: str


@dataclass(frozen=True)
class SoldQuery:
    query: str
    level: str  # style | category_exclusions | category | brand | attributes


@dataclass(frozen=True)
class QueryPlan:
    general: tuple[str, ...]
    platform_specific: tuple[PlatformQuery, ...]
    primary_query: str | None
    sold_cascade: tuple[SoldQuery, ...]

    @property
    def all_queries(self) -> list[str]:
        """Every query the plan may run, for the audit trail."""
        return _unique(
            [q.query for q in self.sold_cascade]
            + [p.query for p in self.platform_specific]
            + list(self.general)
        )

    @property
    def is_empty(self) -> bool:
        return not (self.general or self.platform_specific or self.sold_cascade)


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        cleaned = " ".join(value.split())
        key = cleaned.lower()
        if cleaned and key not in seen:
            seen.add(key)
            out.append(cleaned)
    return out


def _join(*parts: str | None) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def format_exclusions(terms: tuple[str, ...] | list[str]) -> str:
    """``-term`` per exclusion, quoted when it has several words."""
    formatted = []
    for term in list(terms)[:MAX_EXCLUSION_TERMS]:
        formatted.append(f'-"{term}"' if " " in term else f"-{term}")
    return " ".join(formatted)


def core_search_term(item: ExtractedItem, category: str | None) -> str:
    category = category or item.category
    if item.brand:
        if item.style_number:
            return _join(item.brand, item.style_number)
        return _join(item.brand, category)
    return _join(item.style, category)


def build_queries(
    item: ExtractedItem,
    category: str | None,
    catalog: ResearchCatalog,
    decoded: DecodedStyleInfo | None = None,
) -> QueryPlan:
    general: list[str] = []
    platform_specific: list[PlatformQuery] = []

    general.extend(item.search_suggestions[:MAX_SUGGESTIONS])

    if decoded is not None and decoded.search_terms:
        general.append(decoded.search_terms[0])

    core = core_search_term(item, category)
    if core:
        # eBay first: best source of completed-sale prices
        targets = [catalog.platforms["ebay"]]
        for platform in catalog.platforms_for_tier(item.brand_tier)[:TIER_PLATFORM_COUNT]:
            if platform.key != "ebay":
                targets.append(platform)
        for platform in targets:
            platform_specific.append(
                PlatformQuery(
                    query=f"{core} site:{platform.domain}",
                    platform=platform.name,
                    site=platform.domain,
                )
            )

    if item.brand and item.sku:
        general.append(f'"{item.brand}" "{item.sku}"')

    if item.rn_number:
        general.append(f"RN {item.rn_number} manufacturer clothing")

    if not item.brand:
        general.extend(_attribute_queries(item, category))

    cascade = build_sold_query_cascade(item, category, catalog)
    return QueryPlan(
        general=tuple(_unique(general)[:MAX_GENERAL_QUERIES]),
        platform_specific=tuple(platform_specific[:MAX_PLATFORM_QUERIES]),
        primary_query=cascade[0].query if cascade else None,
        sold_cascade=tuple(cascade),
    )


def _attribute_queries(item: ExtractedItem, category: str | None) -> list[str]:
    category = category or item.category
    queries = []
    if item.style and category:
        queries.append(f"{item.style} {category} vintage resale")
    if item.estimated_origin:
        queries.append(f"{item.estimated_origin} {category or 'sweater'} handmade")
    if item.notable_features:
        queries.append(f"{item.notable_features[0]} {category or 'clothing'} vintage")
    return queries


def build_sold_query_cascade(
    item: ExtractedItem, category: str | None, catalog: ResearchCatalog
) -> list[SoldQuery]:
    """Sold-listing queries from most specific to broadest. Entries are unique."""
    category = category or item.category
    cascade: list[SoldQuery] = []

    if item.brand:
        if item.style_number:
            cascade.append(SoldQuery(_join(item.brand, item.style_number), "style"))
        if category:
            definition = catalog.category(category)
            if definition is not None and definition.exclude_terms:
                exclusions = format_exclusions(definition.exclude_terms)
                cascade.append(
                    SoldQuery(_join(item.brand, category, exclusions), "category_exclusions")
                )
            cascade.append(SoldQuery(_join(item.brand, category), "category"))
        cascade.append(SoldQuery(item.brand.strip(), "brand"))
    else:
        detailed = _join(item.style, item.materials[0] if item.materials else None, category)
        broad = _join(item.style, category)
        for query in (detailed, broad, category):
            if query:
                cascade.append(SoldQuery(query, "attributes"))
        if not cascade and item.search_suggestions:
            cascade.append(SoldQuery(item.search_suggestions[0], "attributes"))

    seen: set[str] = set()
    unique: list[SoldQuery] = []
    for entry in cascade:
        key = entry.query.lower()
        if entry.query and key not in seen:
            seen.add(key)
            unique.append(entry)
    return unique
