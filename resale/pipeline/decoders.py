"""Brand style-code decoders.

Outdoor brands encode useful information in the style numbers printed on
their tags: season, year, product line, category, gender. Each brand gets one
``BrandDecoder``: an ordered chain of ``StylePattern`` entries, most specific
first. The first pattern that matches the normalized code wins; a code that
matches nothing still decodes with fallback confidence so the caller gets a
normalized cache key and a search term.

To support a new brand, add a decoder to ``DECODERS``.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import structlog

from resale.models.contracts import DecodedStyleInfo

log = structlog.get_logger("decoders")

FALLBACK_CONFIDENCE = 0.3

_SEPARATORS = re.compile(r"[\s\-_]")

# Builder returns (decoded fields, search terms) from the regex match.
PatternBuilder = Callable[[re.Match[str]], tuple[dict[str, Any], list[str]]]


def normalize_code(code: str) -> str:
    """Uppercase and strip whitespace, hyphens and underscores."""
    return _SEPARATORS.sub("", code.upper()).strip()


@dataclass(frozen=True)
class StylePattern:
    name: str
    regex: re.Pattern[str]
    confidence: float
    build: PatternBuilder


@dataclass(frozen=True)
class BrandDecoder:
    brand_name: str
    aliases: tuple[str, ...]
    display_name: str  # used in search terms
    patterns: tuple[StylePattern, ...]

    def decode(self, code: str) -> DecodedStyleInfo:
        normalized = normalize_code(code)
        for pattern in self.patterns:
            match = pattern.regex.fullmatch(normalized)
            if match is None:
                continue
            fields, terms = pattern.build(match)
            fields.setdefault("normalized_code", normalized)
            fields.setdefault("confidence", pattern.confidence)
            return DecodedStyleInfo(
                brand=self.brand_name,
                raw_code=code,
                pattern_type=pattern.name,
                search_terms=_clean_terms(terms),
                **fields,
            )

        return DecodedStyleInfo(
            brand=self.brand_name,
            raw_code=code,
            normalized_code=normalized,
            confidence=FALLBACK_CONFIDENCE,
            search_terms=[f"{self.display_name} {code}"],
        )


def _clean_terms(terms: list[str]) -> list[str]:
    return [" ".join(t.split()) for t in terms if t.strip()]


def _pattern(name: str, regex: str, confidence: float, build: PatternBuilder) -> StylePattern:
    return StylePattern(name=name, regex=re.compile(regex), confidence=confidence, build=build)


# === Patagonia ===

_PATAGONIA_SEASONS = {
    "FA": "Fall",
    "SP": "Spring",
    "SS": "Spring/Summer",
    "FW": "Fall/Winter",
    "HO": "Holiday",
}

# Two-digit style prefix -> (product line, category)
_PATAGONIA_PREFIXES: tuple[tuple[str, str, str], ...] = (
    ("23", "Synchilla", "fleece"),
    ("25", "Better Sweater", "fleece"),
    ("26", "R1", "fleece"),
    ("40", "Baggies", "shorts"),
    ("57", "Stand Up", "shorts"),
    ("82", "Nano Puff", "insulated jacket"),
    ("83", "Torrentshell", "rain jacket"),
    ("84", "Down Sweater", "down jacket"),
    ("85", "Tres", "3-in-1 jacket"),
)


def _patagonia_style(style_num: str) -> dict[str, Any]:
    for prefix, product_line, category in _PATAGONIA_PREFIXES:
        if style_num.startswith(prefix):
            return {"product_line": product_line, "category": category}
    return {}


def _patagonia_seasonal(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    season_code, year, style_num = m.groups()
    fields = _patagonia_style(style_num)
    fields.update(
        normalized_code=style_num,
        season=_PATAGONIA_SEASONS[season_code],
        year=f"20{year}",
    )
    line = fields.get("product_line", "")
    return fields, [
        f"Patagonia {line} {fields['season']} {fields['year']}",
        f"Patagonia {style_num}",
    ]


def _patagonia_plain(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    style_num = m.group(1)
    fields = _patagonia_style(style_num)
    fields["normalized_code"] = style_num
    line = fields.get("product_line", "")
    return fields, [f"Patagonia {line} {style_num}", f"Patagonia style {style_num}"]


def _patagonia_color(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    style_num, color_code = m.groups()
    fields = _patagonia_style(style_num)
    fields.update(normalized_code=style_num, color_code=color_code)
    line = fields.get("product_line", "")
    return fields, [f"Patagonia {line} {style_num}"]


PATAGONIA = BrandDecoder(
    brand_name="PATAGONIA",
    aliases=("PATAGONIA INC", "PATAGONIA OUTDOOR"),
    display_name="Patagonia",
    patterns=(
        _pattern("seasonal_prefix", r"(FA|SP|SS|FW|HO)(\d{2})(\d{5})", 0.9, _patagonia_seasonal),
        _pattern("plain_style", r"(\d{5})", 0.7, _patagonia_plain),
        _pattern("style_with_color", r"(\d{5})([A-Z]{2,4})", 0.75, _patagonia_color),
    ),
)


# === Arc'teryx ===


def _arcteryx_style(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    style_num = m.group(1)
    return {"normalized_code": style_num}, [
        f"Arc'teryx {style_num}",
        f"Arcteryx style {style_num}",
    ]


def _arcteryx_extended(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    style_num, color_code = m.group(1), m.group(2)
    fields: dict[str, Any] = {"normalized_code": style_num}
    if color_code:
        fields["color_code"] = color_code
    return fields, [f"Arc'teryx {style_num}", f"Arcteryx {style_num}"]


ARCTERYX = BrandDecoder(
    brand_name="ARC'TERYX",
    aliases=("ARCTERYX", "ARC TERYX", "ARCTERYX EQUIPMENT"),
    display_name="Arc'teryx",
    patterns=(
        _pattern("style_number", r"(\d{5})", 0.7, _arcteryx_style),
        _pattern("extended_style", r"(\d{5})([A-Z]{2,4})?([XSML]{1,3})?", 0.75, _arcteryx_extended),
    ),
)


# === The North Face ===


def _tnf_modern(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    code = m.group(0)
    return {}, [f"North Face {code}", f"TNF {code}", f'"{code}"']


def _tnf_simple(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    code = m.group(0)
    return {}, [f"North Face {code}", f"TNF {code}"]


def _tnf_t9(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    return {}, [f"North Face {m.group(0)}"]


NORTH_FACE = BrandDecoder(
    brand_name="THE NORTH FACE",
    aliases=("NORTH FACE", "TNF", "THE NORTHFACE"),
    display_name="North Face",
    patterns=(
        _pattern("modern_style", r"NF0A[A-Z0-9]{4}", 0.85, _tnf_modern),
        _pattern("t9_style", r"T9[0-9][A-Z0-9]{3,4}", 0.75, _tnf_t9),
        _pattern("legacy_style", r"[A-Z][A-Z0-9]{3,4}", 0.7, _tnf_simple),
    ),
)


# === Fjällräven ===

# Inclusive article-number ranges -> (product line, category, confidence)
_FJALLRAVEN_RANGES: tuple[tuple[int, int, str, str, float | None], ...] = (
    (23500, 23599, "Kånken", "backpack", 0.85),
    (87000, 87999, "Greenland", "jacket", None),
    (81000, 81999, "Keb", "pants/jacket", None),
)


def _fjallraven_article(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    article = m.group(1)
    fields: dict[str, Any] = {"normalized_code": article}
    number = int(article)
    for low, high, product_line, category, confidence in _FJALLRAVEN_RANGES:
        if low <= number <= high:
            fields.update(product_line=product_line, category=category)
            if confidence is not None:
                fields["confidence"] = confidence
            break
    return fields, [f"Fjallraven {article}", f"Fjällräven article {article}"]


FJALLRAVEN = BrandDecoder(
    brand_name="FJÄLLRÄVEN",
    aliases=("FJALLRAVEN", "FJALL RAVEN", "FJÄLLRÄVEN SWEDEN"),
    display_name="Fjallraven",
    patterns=(_pattern("article_number", r"F?(\d{5,6})", 0.75, _fjallraven_article),),
)


# === REI Co-op ===


def _rei_item(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    item = m.group(1)
    return {"normalized_code": item}, [f"REI Co-op {item}", f"REI item {item}"]


REI = BrandDecoder(
    brand_name="REI CO-OP",
    aliases=("REI", "REI COOP", "RECREATIONAL EQUIPMENT"),
    display_name="REI",
    patterns=(_pattern("item_number", r"(\d{6,8})", 0.7, _rei_item),),
)


# === Mammut ===

_MAMMUT_PREFIXES = {
    "1010": "jackets",
    "1012": "pants",
    "1014": "shirts/tops",
    "1020": "climbing gear",
    "1050": "accessories",
}


def _mammut_article(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    prefix, article = m.groups()
    # Cache keys stay separator-free; the hyphenated form is for search only
    fields: dict[str, Any] = {"normalized_code": f"{prefix}{article}"}
    if prefix in _MAMMUT_PREFIXES:
        fields["category"] = _MAMMUT_PREFIXES[prefix]
    return fields, [f"Mammut {prefix}-{article}", f"Mammut article {article}"]


def _mammut_plain(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    return {"normalized_code": m.group(1)}, [f"Mammut {m.group(1)}"]


MAMMUT = BrandDecoder(
    brand_name="MAMMUT",
    aliases=("MAMMUT SPORTS", "MAMMUT SWITZERLAND"),
    display_name="Mammut",
    patterns=(
        _pattern("article_number", r"(10[0-9]{2})(\d{5})", 0.8, _mammut_article),
        _pattern("plain_number", r"(\d{5,7})", 0.6, _mammut_plain),
    ),
)


# === Mountain Hardwear ===

_MHW_GENDERS = {"OM": "mens", "OL": "womens", "OU": "unisex"}


def _mhw_prefixed(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    prefix, style_num = m.groups()
    fields = {"normalized_code": f"{prefix}{style_num}", "gender": _MHW_GENDERS[prefix]}
    return fields, [f"Mountain Hardwear {prefix}{style_num}", f"MHW {style_num}"]


def _mhw_numeric(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    return {"normalized_code": m.group(1)}, [f"Mountain Hardwear {m.group(1)}"]


MOUNTAIN_HARDWEAR = BrandDecoder(
    brand_name="MOUNTAIN HARDWEAR",
    aliases=("MTN HARDWEAR", "MOUNTAIN HARDWARE"),
    display_name="Mountain Hardwear",
    patterns=(
        _pattern("om_style", r"(OM|OL|OU)(\d{4,5})", 0.8, _mhw_prefixed),
        _pattern("numeric_style", r"(\d{5,7})", 0.65, _mhw_numeric),
    ),
)


# === Outdoor Research ===


def _or_numeric(m: re.Match[str]) -> tuple[dict[str, Any], list[str]]:
    style_num = m.group(1)
    return {"normalized_code": style_num}, [
        f"Outdoor Research {style_num}",
        f"OR {style_num}",
    ]


OUTDOOR_RESEARCH = BrandDecoder(
    brand_name="OUTDOOR RESEARCH",
    aliases=("OR", "OUTDOOR RESEARCH INC"),
    display_name="Outdoor Research",
    patterns=(_pattern("numeric_style", r"(\d{5,7})", 0.7, _or_numeric),),
)


# === Registry ===

DECODERS: tuple[BrandDecoder, ...] = (
    PATAGONIA,
    ARCTERYX,
    NORTH_FACE,
    FJALLRAVEN,
    REI,
    MAMMUT,
    MOUNTAIN_HARDWEAR,
    OUTDOOR_RESEARCH,
)


@lru_cache(maxsize=1)
def _registry() -> dict[str, BrandDecoder]:
    table: dict[str, BrandDecoder] = {}
    for decoder in DECODERS:
        for name in (decoder.brand_name, *decoder.aliases):
            table[name.upper()] = decoder
    return table


def get_decoder(brand: str | None) -> BrandDecoder | None:
    """Look up a decoder by canonical brand name or alias (case-insensitive)."""
    if not brand:
        return None
    return _registry().get(brand.strip().upper())


def decode_style_code(brand: str | None, code: str | None) -> DecodedStyleInfo | None:
    """Decode ``code`` with the brand's decoder.

    Returns None when either input is empty or the brand has no decoder.
    """
    if not brand or not code or not code.strip():
        return None
    decoder = get_decoder(brand)
    if decoder is None:
        return None
    decoded = decoder.decode(code.strip())
    log.debug(
        "style_code_decoded",
        brand=decoder.brand_name,
        normalized_code=decoded.normalized_code,
        pattern=decoded.pattern_type,
        confidence=decoded.confidence,
    )
    return decoded


def supported_brands() -> list[str]:
    return [d.brand_name for d in DECODERS]


def has_brand_decoder(brand: str | None) -> bool:
    return get_decoder(brand) is not None
