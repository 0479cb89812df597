"""Immutable reference data for research: platforms, categories, brands.

Loaded once per process via ``default_catalog()`` and passed by reference into
the query planner, relevance scorer and orchestrator. Nothing here is mutated
after construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping

from resale.models.contracts import BrandTier


@dataclass(frozen=True)
class Platform:
    key: str
    name: str
    domain: str


@dataclass(frozen=True)
class CategoryDefinition:
    """A garment category.

    ``match_terms`` identify the category; ``exclude_terms`` identify adjacent
    but wrong products (a down jacket in a fleece search); ``related`` names
    categories that deserve partial credit.
    """

    name: str
    match_terms: tuple[str, ...]
    exclude_terms: tuple[str, ...] = ()
    related: tuple[str, ...] = ()


@dataclass(frozen=True)
class BrandEntry:
    name: str
    tier: BrandTier
    aliases: tuple[str, ...] = ()
    rn_numbers: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResearchCatalog:
    platforms: Mapping[str, Platform]
    platform_tiers: Mapping[str, tuple[str, ...]]
    categories: tuple[CategoryDefinition, ...]
    male_terms: tuple[str, ...]
    female_terms: tuple[str, ...]
    brands: tuple[BrandEntry, ...]

    def platforms_for_tier(self, tier: str | None) -> list[Platform]:
        keys = self.platform_tiers.get(tier or "unknown") or self.platform_tiers["unknown"]
        return [self.platforms[k] for k in keys if k in self.platforms]

    def platform_for_url(self, url: str) -> Platform | None:
        lowered = url.lower()
        for platform in self.platforms.values():
            if platform.domain in lowered:
                return platform
        return None

    def category(self, name: str | None) -> CategoryDefinition | None:
        if not name:
            return None
        key = name.strip().lower()
        for definition in self.categories:
            if definition.name == key:
                return definition
        return None

    def find_brand(self, name: str | None) -> BrandEntry | None:
        """Resolve a canonical name or alias (case-insensitive)."""
        if not name:
            return None
        key = name.strip().upper()
        for entry in self.brands:
            if entry.name == key or key in entry.aliases:
                return entry
        return None

    def find_brand_by_rn(self, rn_number: str | None) -> BrandEntry | None:
        if not rn_number:
            return None
        digits = "".join(ch for ch in rn_number if ch.isdigit())
        for entry in self.brands:
            if digits in entry.rn_numbers:
                return entry
        return None


PLATFORMS: tuple[Platform, ...] = (
    Platform("ebay", "eBay", "ebay.com"),
    Platform("poshmark", "Poshmark", "poshmark.com"),
    Platform("mercari", "Mercari", "mercari.com"),
    Platform("depop", "Depop", "depop.com"),
    Platform("grailed", "Grailed", "grailed.com"),
    Platform("therealreal", "TheRealReal", "therealreal.com"),
    Platform("vestiaire", "Vestiaire Collective", "vestiairecollective.com"),
    Platform("rebag", "Rebag", "rebag.com"),
    Platform("etsy", "Etsy", "etsy.com"),
    Platform("thredup", "ThredUp", "thredup.com"),
)

PLATFORM_TIERS: dict[str, tuple[str, ...]] = {
    "luxury": ("therealreal", "vestiaire", "rebag", "ebay", "poshmark"),
    "premium": ("poshmark", "ebay", "mercari", "grailed", "therealreal"),
    "mid-range": ("poshmark", "mercari", "ebay", "depop", "thredup"),
    "budget": ("mercari", "thredup", "depop", "ebay"),
    "vintage": ("etsy", "ebay", "depop", "poshmark", "grailed"),
    "unknown": ("ebay", "poshmark", "mercari"),
}

# Most specific first: detection stops at the first definition that hits.
CATEGORIES: tuple[CategoryDefinition, ...] = (
    CategoryDefinition(
        "vest",
        match_terms=("vest", "gilet"),
        exclude_terms=("parka",),
        related=("down jacket", "fleece"),
    ),
    CategoryDefinition(
        "3-in-1 jacket",
        match_terms=("3-in-1", "3 in 1", "tres"),
        related=("jacket", "rain jacket"),
    ),
    CategoryDefinition(
        "down jacket",
        match_terms=("down jacket", "down sweater", "puffer", "down parka", "down hoody", "nuptse"),
        exclude_terms=("fleece", "rain jacket", "vest"),
        related=("insulated jacket", "jacket"),
    ),
    CategoryDefinition(
        "insulated jacket",
        match_terms=("insulated jacket", "nano puff", "primaloft", "thermoball", "synthetic insulation"),
        exclude_terms=("fleece", "rain jacket", "vest"),
        related=("down jacket", "jacket"),
    ),
    CategoryDefinition(
        "rain jacket",
        match_terms=("rain jacket", "rain shell", "torrentshell", "hardshell", "waterproof jacket", "gore-tex"),
        exclude_terms=("fleece", "down", "puffer", "insulated"),
        related=("jacket",),
    ),
    CategoryDefinition(
        "fleece",
        match_terms=("fleece", "better sweater", "synchilla", "snap-t", "r1", "retro-x", "sherpa", "pile"),
        exclude_terms=("down sweater", "down jacket", "puffer", "nano puff", "rain jacket", "torrentshell"),
        related=("sweater", "hoodie", "jacket"),
    ),
    CategoryDefinition(
        "sweater",
        match_terms=("sweater", "cardigan", "knit", "cowichan", "turtleneck"),
        exclude_terms=("sweatshirt", "down sweater", "better sweater"),
        related=("fleece", "hoodie"),
    ),
    CategoryDefinition(
        "hoodie",
        match_terms=("hoodie", "hooded sweatshirt", "sweatshirt", "crewneck"),
        related=("sweater", "fleece"),
    ),
    CategoryDefinition(
        "jacket",
        match_terms=("jacket", "coat", "parka", "anorak", "windbreaker"),
        exclude_terms=("vest",),
        related=("down jacket", "insulated jacket", "rain jacket", "fleece"),
    ),
    CategoryDefinition(
        "jeans",
        match_terms=("jeans", "denim"),
        exclude_terms=("shorts", "jacket"),
        related=("pants",),
    ),
    CategoryDefinition(
        "shorts",
        match_terms=("shorts", "baggies", "trunks"),
        exclude_terms=("pants", "jeans"),
        related=(),
    ),
    CategoryDefinition(
        "pants",
        match_terms=("pants", "trousers", "chinos", "joggers", "leggings"),
        exclude_terms=("shorts",),
        related=("jeans",),
    ),
    CategoryDefinition(
        "shirt",
        match_terms=("shirt", "t-shirt", "tee", "button-down", "button down", "flannel", "polo", "blouse"),
        exclude_terms=("sweatshirt",),
        related=("sweater",),
    ),
    CategoryDefinition(
        "dress",
        match_terms=("dress", "gown"),
        exclude_terms=("dress shirt", "dress pants"),
        related=("skirt",),
    ),
    CategoryDefinition("skirt", match_terms=("skirt",), related=("dress",)),
    CategoryDefinition(
        "backpack",
        match_terms=("backpack", "daypack", "rucksack", "kanken", "kånken"),
        related=("bag",),
    ),
    CategoryDefinition(
        "bag",
        match_terms=("handbag", "tote", "purse", "clutch", "crossbody", "bag"),
        exclude_terms=("sleeping bag",),
        related=("backpack",),
    ),
    CategoryDefinition(
        "shoes",
        match_terms=("shoes", "sneakers", "boots", "sandals", "loafers", "heels"),
    ),
)

MALE_TERMS: tuple[str, ...] = ("men's", "mens", "men", "male", "man's", "boys", "boy's")
FEMALE_TERMS: tuple[str, ...] = (
    "women's",
    "womens",
    "women",
    "female",
    "woman's",
    "ladies",
    "lady's",
    "girls",
    "girl's",
)

BRANDS: tuple[BrandEntry, ...] = (
    # luxury
    BrandEntry("GUCCI", "luxury", ("GUCCI MADE IN ITALY", "GG")),
    BrandEntry("PRADA", "luxury", ("PRADA MILANO", "PRADA MADE IN ITALY")),
    BrandEntry("LOUIS VUITTON", "luxury", ("LV", "LOUIS VUITTON PARIS", "LOUIS VUITTON MALLETIER")),
    BrandEntry("CHANEL", "luxury", ("COCO CHANEL", "CHANEL PARIS")),
    BrandEntry("HERMES", "luxury", ("HERMÈS", "HERMES PARIS")),
    BrandEntry("BURBERRY", "luxury", ("BURBERRYS", "BURBERRY LONDON", "BURBERRY BRIT")),
    BrandEntry("SAINT LAURENT", "luxury", ("YSL", "YVES SAINT LAURENT", "SAINT LAURENT PARIS")),
    BrandEntry("DIOR", "luxury", ("CHRISTIAN DIOR", "DIOR HOMME", "MISS DIOR")),
    BrandEntry("BOTTEGA VENETA", "luxury", ("BV", "BOTTEGA")),
    BrandEntry("MONCLER", "luxury"),
    BrandEntry("OFF-WHITE", "luxury", ("OFF WHITE",)),
    # premium
    BrandEntry(
        "RALPH LAUREN",
        "premium",
        ("POLO RALPH LAUREN", "POLO RL", "RL", "POLO BY RALPH LAUREN", "LAUREN RALPH LAUREN", "RRL"),
        ("41381",),
    ),
    BrandEntry("TOMMY HILFIGER", "premium", ("TOMMY", "TOMMY JEANS", "HILFIGER")),
    BrandEntry("CALVIN KLEIN", "premium", ("CK", "CALVIN KLEIN JEANS", "CK CALVIN KLEIN")),
    BrandEntry("COACH", "premium", ("COACH NEW YORK",)),
    BrandEntry("ALLSAINTS", "premium", ("ALL SAINTS",)),
    BrandEntry("PATAGONIA", "premium", ("PATAGUCCI", "PATAGONIA INC", "PATAGONIA OUTDOOR"), ("51884",)),
    BrandEntry("THE NORTH FACE", "premium", ("TNF", "NORTH FACE", "THE NORTHFACE")),
    BrandEntry("ARC'TERYX", "premium", ("ARCTERYX", "ARC TERYX", "ARCTERYX EQUIPMENT")),
    BrandEntry("FJÄLLRÄVEN", "premium", ("FJALLRAVEN", "FJALL RAVEN", "FJÄLLRÄVEN SWEDEN")),
    BrandEntry("MAMMUT", "premium", ("MAMMUT SPORTS", "MAMMUT SWITZERLAND")),
    BrandEntry("MOUNTAIN HARDWEAR", "premium", ("MTN HARDWEAR", "MOUNTAIN HARDWARE")),
    BrandEntry("OUTDOOR RESEARCH", "premium", ("OUTDOOR RESEARCH INC",)),
    BrandEntry("LULULEMON", "premium", ("LULULEMON ATHLETICA",)),
    BrandEntry("CANADA GOOSE", "premium"),
    BrandEntry("SUPREME", "premium", ("SUPREME NEW YORK", "SUPREME NYC")),
    BrandEntry("STUSSY", "premium", ("STÜSSY",)),
    BrandEntry("FILSON", "premium", ("C.C. FILSON",)),
    BrandEntry("CITIZENS OF HUMANITY", "premium", ("COH",)),
    BrandEntry("7 FOR ALL MANKIND", "premium", ("7FAM", "SEVEN FOR ALL MANKIND")),
    # mid-range
    BrandEntry("REI CO-OP", "mid-range", ("REI", "REI COOP", "RECREATIONAL EQUIPMENT")),
    BrandEntry("COLUMBIA", "mid-range", ("COLUMBIA SPORTSWEAR",)),
    BrandEntry("J.CREW", "mid-range", ("J CREW", "JCREW")),
    BrandEntry("BANANA REPUBLIC", "mid-range"),
    BrandEntry("GAP", "mid-range", ("THE GAP",)),
    BrandEntry("ZARA", "mid-range"),
    BrandEntry("UNIQLO", "mid-range"),
    BrandEntry("MADEWELL", "mid-range"),
    BrandEntry("NIKE", "mid-range", ("NIKE INC", "NIKE SPORTSWEAR", "NIKE ACG")),
    BrandEntry("ADIDAS", "mid-range", ("ADIDAS ORIGINALS", "ADIDAS SPORTSWEAR")),
    BrandEntry("LEVI'S", "mid-range", ("LEVIS", "LEVI STRAUSS", "LEVI'S STRAUSS & CO")),
    BrandEntry("L.L.BEAN", "mid-range", ("LL BEAN", "LLBEAN")),
    BrandEntry("CARHARTT", "mid-range", ("CARHARTT WIP",)),
    BrandEntry("EDDIE BAUER", "mid-range"),
    # budget
    BrandEntry("H&M", "budget", ("HENNES & MAURITZ",)),
    BrandEntry("OLD NAVY", "budget"),
    BrandEntry("SHEIN", "budget"),
    BrandEntry("FOREVER 21", "budget", ("FOREVER21",)),
    # vintage
    BrandEntry("PENDLETON", "vintage", ("PENDLETON WOOLEN MILLS",)),
    BrandEntry("WOOLRICH", "vintage"),
    BrandEntry("COWICHAN", "vintage", ("COWICHAN SWEATER", "COWICHAN VALLEY")),
    BrandEntry("COOGI", "vintage"),
)


@lru_cache(maxsize=1)
def default_catalog() -> ResearchCatalog:
    return ResearchCatalog(
        platforms=MappingProxyType({p.key: p for p in PLATFORMS}),
        platform_tiers=MappingProxyType(dict(PLATFORM_TIERS)),
        categories=CATEGORIES,
        male_terms=MALE_TERMS,
        female_terms=FEMALE_TERMS,
        brands=BRANDS,
    )
