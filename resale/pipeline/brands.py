"""Brand validation and resolution, plus applying clarification answers.

Extraction models sometimes put a description in the brand field ("appears
to be a vintage wool coat, likely handmade"). Such text is useless as a search
term, so it is moved to ``brand_notes`` before research starts.
"""

from __future__ import annotations

from typing import Any

import structlog

from resale.models.contracts import ClarificationAnswer, ExtractedItem
from resale.pipeline.catalog import BrandEntry, ResearchCatalog

log = structlog.get_logger("brands")

MAX_BRAND_LENGTH = 40
MAX_BRAND_WORDS = 5

DESCRIPTION_PHRASES: tuple[str, ...] = (
    "appears to be",
    "based on",
    "likely",
    "possibly",
    "seems to be",
    "could be",
    "probably",
    "unknown",
    "unidentified",
    "generic",
    "contemporary",
    "vintage style",
    "quality",
    "construction",
)

SKIP_VALUE = "skip"


def is_valid_brand_name(brand: str | None) -> bool:
    if not brand or not brand.strip():
        return False
    if len(brand) > MAX_BRAND_LENGTH:
        return False
    lowered = brand.lower()
    if any(phrase in lowered for phrase in DESCRIPTION_PHRASES):
        return False
    return len(brand.split()) <= MAX_BRAND_WORDS


def resolve_brand(item: ExtractedItem, catalog: ResearchCatalog) -> BrandEntry | None:
    """Match the item to the brand directory by name, alias, or RN number."""
    return catalog.find_brand(item.brand) or catalog.find_brand_by_rn(item.rn_number)


def prepare_item(item: ExtractedItem, catalog: ResearchCatalog) -> ExtractedItem:
    """Return a copy with a validated brand, canonicalized when known.

    An invalid brand moves to ``brand_notes``. A directory match replaces the
    brand with its canonical name and fills ``brand_tier`` when extraction
    left it unknown.
    """
    updates: dict[str, Any] = {}

    if item.brand is not None and not is_valid_brand_name(item.brand):
        log.info("brand_rejected", brand=item.brand[:80])
        updates["brand"] = None
        updates["brand_notes"] = item.brand if not item.brand_notes else item.brand_notes

    candidate = item.model_copy(update=updates) if updates else item
    entry = resolve_brand(candidate, catalog)
    if entry is not None:
        updates["brand"] = entry.name
        if candidate.brand_tier == "unknown":
            updates["brand_tier"] = entry.tier

    return item.model_copy(update=updates) if updates else item


# clarification field -> ExtractedItem attribute
_CLARIFICATION_FIELDS = {
    "category": "category",
    "gender": "gender",
    "era": "estimated_era",
    "estimatedEra": "estimated_era",
    "estimated_era": "estimated_era",
    "brand": "brand",
    "condition": "condition",
    "overallGrade": "condition",
}


def apply_clarification(item: ExtractedItem, answer: ClarificationAnswer) -> ExtractedItem:
    """Apply a user's clarification answer and clear the pending request.

    ``"skip"`` clears the request but leaves every value unchanged. Unknown
    field names update the matching ``ExtractedItem`` attribute when one
    exists (camelCase or snake_case) and are ignored otherwise.
    """
    updates: dict[str, Any] = {"clarification_needed": None}

    if answer.value != SKIP_VALUE:
        attr = _CLARIFICATION_FIELDS.get(answer.field) or _generic_attr(answer.field)
        current = getattr(item, attr) if attr else None
        if attr is None or not (current is None or isinstance(current, (str, list))):
            log.warning("clarification_field_ignored", field=answer.field)
        elif isinstance(current, list):
            updates[attr] = [answer.value]
        else:
            updates[attr] = answer.value

    return item.model_copy(update=updates)


def _generic_attr(field: str) -> str | None:
    if field in ExtractedItem.model_fields:
        return field
    for name, info in ExtractedItem.model_fields.items():
        if info.alias == field:
            return name
    return None
