"""Listing relevance scoring.

Each candidate listing earns points per dimension (brand, style number,
category, gender, size) and the total is normalized by the maximum achievable
for the dimensions the extraction actually provided. A listing is never
penalized for a dimension we have no data for.

Weights and the keep/discard threshold were tuned empirically against real
scans; both are configurable.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from resale.config import settings
from resale.models.contracts import DecodedStyleInfo, ExtractedItem, Listing
from resale.pipeline.catalog import ResearchCatalog, default_catalog

Gender = Literal["male", "female", "unisex"]

MIN_PARTIAL_PREFIX = 4


@dataclass(frozen=True)
class RelevanceWeights:
    brand_match: float = 25
    brand_unknown: float = 12
    style_full: float = 35
    style_partial: float = 20
    style_missing: float = -10
    category_full: float = 25
    category_related: float = 15
    category_excluded: float = -30
    category_unknown: float = 5
    gender_match: float = 10
    gender_mismatch: float = -15
    size_match: float = 5
    # excluded listings end at least this far below the threshold
    exclusion_margin: float = 0.05


DEFAULT_WEIGHTS = RelevanceWeights()


@dataclass(frozen=True)
class RelevanceScore:
    score: float
    breakdown: tuple[str, ...]
    excluded: bool = False


# === Text helpers ===


def fold(text: str) -> str:
    """Lowercase, strip diacritics, normalize curly apostrophes."""
    text = text.replace("’", "'").replace("‘", "'")
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


@lru_cache(maxsize=1024)
def _term_pattern(term: str) -> re.Pattern[str]:
    return re.compile(r"(?<![a-z0-9])" + re.escape(term) + r"(?![a-z0-9])")


def contains_term(text: str, term: str) -> bool:
    """Whole-word (or whole-phrase) match on folded text."""
    return _term_pattern(fold(term)).search(text) is not None


def compact(text: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", fold(text).upper())


# === Detection ===


def detect_category(texts: Iterable[str | None], catalog: ResearchCatalog) -> str | None:
    """First category (most specific first) whose match terms hit any text."""
    folded = [fold(t) for t in texts if t]
    if not folded:
        return None
    for definition in catalog.categories:
        for term in definition.match_terms:
            if any(contains_term(text, term) for text in folded):
                return definition.name
    return None


def category_texts(item: ExtractedItem, decoded: DecodedStyleInfo | None = None) -> list[str]:
    """All item text worth scanning for a category, in trust order."""
    texts: list[str | None] = [item.category, item.style]
    if decoded is not None:
        texts.extend([decoded.category, decoded.product_line])
    texts.extend(item.search_suggestions)
    texts.extend(item.raw_text)
    return [t for t in texts if t]


def detect_gender(texts: Iterable[str | None], catalog: ResearchCatalog) -> Gender | None:
    found: set[str] = set()
    for text in texts:
        if not text:
            continue
        folded = fold(text)
        if "unisex" in folded:
            return "unisex"
        if any(contains_term(folded, t) for t in catalog.female_terms):
            found.add("female")
        if any(contains_term(folded, t) for t in catalog.male_terms):
            found.add("male")
    if len(found) == 1:
        return found.pop()  # type: ignore[return-value]
    return "unisex" if found else None


def _opposite(gender: Gender) -> Gender | None:
    return {"male": "female", "female": "male"}.get(gender)  # type: ignore[return-value]


# === Dimension matchers ===


MIN_ALIAS_LENGTH = 3  # "OR", "LV", "CK" match too much noise


def brand_variants(brand: str, catalog: ResearchCatalog) -> list[str]:
    variants = {brand}
    entry = catalog.find_brand(brand)
    if entry is not None:
        variants.add(entry.name)
        variants.update(a for a in entry.aliases if len(a) >= MIN_ALIAS_LENGTH)
    for v in list(variants):
        if v.upper().startswith("THE "):
            variants.add(v[4:])
    return [fold(v) for v in variants if v.strip()]


def style_match(title: str, codes: Iterable[str]) -> Literal["full", "partial", "none"]:
    """Match a style code against a title ignoring case and separators."""
    haystack = compact(title)
    best: Literal["full", "partial", "none"] = "none"
    for code in codes:
        needle = compact(code)
        if not needle:
            continue
        if needle in haystack:
            return "full"
        prefix_len = max(MIN_PARTIAL_PREFIX, math.ceil(0.6 * len(needle)))
        if len(needle) > prefix_len and needle[:prefix_len] in haystack:
            best = "partial"
    return best


_SIZE_ALIASES: tuple[tuple[str, ...], ...] = (
    ("xxs", "2xs"),
    ("xs", "x-small", "extra small"),
    ("s", "small", "sm"),
    ("m", "medium", "med", "md"),
    ("l", "large", "lg"),
    ("xl", "x-large", "extra large"),
    ("xxl", "2xl", "xx-large"),
    ("xxxl", "3xl"),
)


def size_terms(size: str) -> tuple[str, ...]:
    key = fold(size).strip()
    for group in _SIZE_ALIASES:
        if key in group:
            return group
    return (key,)


# === Scoring ===


def score_listing(
    listing: Listing,
    item: ExtractedItem,
    category: str | None,
    gender: str | None,
    weights: RelevanceWeights = DEFAULT_WEIGHTS,
    *,
    catalog: ResearchCatalog | None = None,
    decoded: DecodedStyleInfo | None = None,
    threshold: float | None = None,
) -> RelevanceScore:
    catalog = catalog or default_catalog()
    threshold = settings.min_relevance_threshold if threshold is None else threshold
    text = fold(listing.title)
    points = 0.0
    max_points = 0.0
    breakdown: list[str] = []

    # Brand
    max_points += weights.brand_match
    if item.brand:
        if any(contains_term(text, v) for v in brand_variants(item.brand, catalog)):
            points += weights.brand_match
            breakdown.append(f"brand match +{weights.brand_match:g}")
        else:
            breakdown.append("brand missing +0")
    else:
        points += weights.brand_unknown
        breakdown.append(f"brand unknown +{weights.brand_unknown:g}")

    # Style number
    if item.style_number:
        max_points += weights.style_full
        codes = [item.style_number]
        if decoded is not None:
            codes.append(decoded.normalized_code)
        match = style_match(listing.title, codes)
        if match == "full":
            points += weights.style_full
            breakdown.append(f"style match +{weights.style_full:g}")
        elif match == "partial":
            points += weights.style_partial
            breakdown.append(f"style partial +{weights.style_partial:g}")
        else:
            points += weights.style_missing
            breakdown.append(f"style missing {weights.style_missing:g}")

    # Category
    excluded = False
    if category:
        max_points += weights.category_full
        definition = catalog.category(category)
        match_terms = definition.match_terms if definition else (category,)
        exclude_terms = definition.exclude_terms if definition else ()
        related_terms: list[str] = []
        for name in definition.related if definition else ():
            related = catalog.category(name)
            related_terms.extend(related.match_terms if related else (name,))

        if any(contains_term(text, t) for t in exclude_terms):
            excluded = True
            points += weights.category_excluded
            breakdown.append(f"category excluded {weights.category_excluded:g}")
        elif any(contains_term(text, t) for t in match_terms):
            points += weights.category_full
            breakdown.append(f"category match +{weights.category_full:g}")
        elif any(contains_term(text, t) for t in related_terms):
            points += weights.category_related
            breakdown.append(f"category related +{weights.category_related:g}")
        else:
            breakdown.append("category missing +0")
    else:
        max_points += weights.category_unknown
        points += weights.category_unknown
        breakdown.append(f"category unknown +{weights.category_unknown:g}")

    # Gender
    item_gender = detect_gender([gender], catalog) if gender else None
    if item_gender in ("male", "female"):
        max_points += weights.gender_match
        listing_gender = detect_gender([listing.title], catalog)
        if listing_gender == item_gender:
            points += weights.gender_match
            breakdown.append(f"gender match +{weights.gender_match:g}")
        elif listing_gender == _opposite(item_gender):  # type: ignore[arg-type]
            points += weights.gender_mismatch
            breakdown.append(f"gender mismatch {weights.gender_mismatch:g}")

    # Size
    if item.size and item.size.strip():
        max_points += weights.size_match
        if any(contains_term(text, t) for t in size_terms(item.size)):
            points += weights.size_match
            breakdown.append(f"size match +{weights.size_match:g}")

    score = points / max_points if max_points > 0 else 0.0
    score = min(max(score, 0.0), 1.0)
    if excluded:
        score = min(score, max(threshold - weights.exclusion_margin, 0.0))
    return RelevanceScore(score=round(score, 4), breakdown=tuple(breakdown), excluded=excluded)


def filter_relevant(
    listings: Iterable[Listing],
    item: ExtractedItem,
    category: str | None,
    gender: str | None,
    *,
    catalog: ResearchCatalog | None = None,
    decoded: DecodedStyleInfo | None = None,
    weights: RelevanceWeights = DEFAULT_WEIGHTS,
    threshold: float | None = None,
) -> list[Listing]:
    """Listings scoring at or above the threshold, with ``relevance_score`` set."""
    threshold = settings.min_relevance_threshold if threshold is None else threshold
    kept = []
    for listing in listings:
        result = score_listing(
            listing,
            item,
            category,
            gender,
            weights,
            catalog=catalog,
            decoded=decoded,
            threshold=threshold,
        )
        if result.score >= threshold:
            kept.append(listing.model_copy(update={"relevance_score": result.score}))
    return kept


def infer_category_from_matches(
    listings: Iterable[Listing],
    item: ExtractedItem,
    catalog: ResearchCatalog,
    decoded: DecodedStyleInfo | None = None,
) -> str | None:
    """Category most often named by listings that match the style number exactly."""
    if not item.style_number:
        return None
    codes = [item.style_number]
    if decoded is not None:
        codes.append(decoded.normalized_code)
    votes: Counter[str] = Counter()
    for listing in listings:
        if style_match(listing.title, codes) != "full":
            continue
        category = detect_category([listing.title], catalog)
        if category:
            votes[category] += 1
    if not votes:
        return None
    return votes.most_common(1)[0][0]
