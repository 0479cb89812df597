"""Resale engine contract models.

Shared by the research and refinement activities, the scan workflow and the
storage layer. The extraction stage upstream emits camelCase JSON, so every
model accepts camelCase aliases on input while exposing snake_case in Python.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

BrandTier = Literal["luxury", "premium", "mid-range", "budget", "vintage", "unknown"]
MarketActivity = Literal["hot", "moderate", "slow", "rare"]
DemandLevel = Literal["high", "medium", "low"]
RefinementProvider = Literal["anthropic", "openai", "stats"]
ScanStatus = Literal[
    "uploaded",
    "extracting",
    "awaiting_clarification",
    "researching",
    "refining",
    "completed",
    "failed",
]
PipelineStage = Literal["research", "refinement"]


class ContractModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenContractModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# === Extraction Output ===


class ClarificationOption(FrozenContractModel):
    value: str
    label: str


class ClarificationRequest(FrozenContractModel):
    """A question the extraction stage needs the user to answer before research."""

    field: str
    question: str
    options: list[ClarificationOption] = []
    reason: str = ""


class ClarificationAnswer(ContractModel):
    field: str
    value: str  # "skip" leaves the item unchanged


class ExtractedItem(FrozenContractModel):
    """Attributes extracted from the scan photos. Read-only for research."""

    brand: str | None = None
    brand_tier: BrandTier = "unknown"
    brand_notes: str | None = None  # rejected verbose "brand" text
    style_number: str | None = None
    sku: str | None = None
    size: str | None = None
    materials: list[str] = []
    country_of_origin: str | None = None
    rn_number: str | None = None
    wpl_number: str | None = None
    category: str | None = None
    style: str | None = None
    estimated_era: str | None = None
    estimated_origin: str | None = None
    gender: str | None = None
    colors: list[str] = []
    notable_features: list[str] = []
    condition: str | None = None
    search_suggestions: list[str] = []
    raw_text: list[str] = []
    confidence: float = Field(ge=0, le=1, default=0.5)
    clarification_needed: ClarificationRequest | None = None


# === Style Decoding & Cache ===


class DecodedStyleInfo(FrozenContractModel):
    brand: str
    raw_code: str
    normalized_code: str
    product_line: str | None = None
    category: str | None = None
    season: str | None = None
    year: str | None = None
    gender: str | None = None
    material: str | None = None
    color_code: str | None = None
    pattern_type: str | None = None
    confidence: float = Field(ge=0, le=1)
    search_terms: list[str] = []


class MarketDataSnapshot(ContractModel):
    avg_price: float | None = None
    price_low: float | None = None
    price_high: float | None = None
    currency: str = "USD"
    listings_found: int = Field(ge=0, default=0)
    sold_listings_found: int = Field(ge=0, default=0)
    market_activity: MarketActivity | None = None
    sources: list[str] = []
    updated_at: datetime


class CacheEntry(ContractModel):
    brand: str
    normalized_code: str
    decoded_info: DecodedStyleInfo | None = None
    market_data: MarketDataSnapshot | None = None
    created_at: datetime
    updated_at: datetime
    hit_count: int = Field(ge=0, default=0)
    last_hit_at: datetime | None = None


class CacheLookup(ContractModel):
    brand: str
    normalized_code: str
    decoded_info: DecodedStyleInfo | None = None
    market_data: MarketDataSnapshot | None = None
    cache_hit: bool
    market_data_fresh: bool


class BrandCacheStats(ContractModel):
    brand: str
    total_entries: int = 0
    total_hits: int = 0
    entries_with_market_data: int = 0


# === Research Output ===


class Listing(ContractModel):
    title: str
    price: float = Field(ge=0, default=0.0)  # 0 = unknown
    currency: str = "USD"
    platform: str
    url: str
    condition: str | None = None
    sold_date: str | None = None
    image_url: str | None = None
    relevance_score: float | None = Field(ge=0, le=1, default=None)


class BrandInfo(ContractModel):
    name: str
    tier: BrandTier = "unknown"


class ResearchResult(ContractModel):
    listings: list[Listing] = []
    sold_listings: list[Listing] = []
    search_queries: list[str] = []
    sources: list[str] = []
    brand_info: BrandInfo | None = None
    decoded_style: DecodedStyleInfo | None = None
    detected_category: str | None = None
    cached_market_data: MarketDataSnapshot | None = None
    failed_queries: list[str] = []
    notes: list[str] = []

    @model_validator(mode="after")
    def _unique_urls(self) -> ResearchResult:
        for name in ("listings", "sold_listings"):
            urls = [listing.url for listing in getattr(self, name)]
            if len(urls) != len(set(urls)):
                raise ValueError(f"{name} contains duplicate urls")
        return self

    @property
    def degraded(self) -> bool:
        return bool(self.failed_queries)


# === Refinement Output ===


class PriceRange(ContractModel):
    low: float = Field(ge=0)
    high: float = Field(ge=0)
    recommended: float = Field(ge=0)
    currency: str = "USD"

    @model_validator(mode="after")
    def _ordered(self) -> PriceRange:
        if not (self.low <= self.recommended <= self.high):
            raise ValueError("price range must satisfy low <= recommended <= high")
        return self


class ComparableListing(ContractModel):
    title: str
    price: float = Field(ge=0)
    currency: str = "USD"
    platform: str
    url: str
    relevance_score: float = Field(ge=0, le=1)


class RefinedFindings(ContractModel):
    price_range: PriceRange
    market_activity: MarketActivity
    demand_level: DemandLevel
    comparable_listings: list[ComparableListing] = Field(default=[], max_length=5)
    insights: list[str] = []
    brand_tier: BrandTier | None = None
    seasonal_factors: str | None = None
    condition_impact: str | None = None
    confidence: float = Field(ge=0, le=1)
    provider: RefinementProvider = "stats"


# === Persistence ===


class ScanRecord(ContractModel):
    scan_id: str
    status: ScanStatus = "uploaded"
    extracted_item: ExtractedItem | None = None
    research_result: ResearchResult | None = None
    refined_findings: RefinedFindings | None = None
    error_message: str | None = None  # user-facing text only


class PipelineRunRecord(ContractModel):
    scan_id: str
    stage: PipelineStage
    provider: str
    duration_ms: int = Field(ge=0)
    success: bool
    error_message: str | None = None  # internal detail, never shown to users
    details: dict = {}


# === Activity Input/Output ===


class ResearchItemInput(ContractModel):
    scan_id: str
    item: ExtractedItem


class RefineFindingsInput(ContractModel):
    scan_id: str
    item: ExtractedItem
    research: ResearchResult
    provider: RefinementProvider | None = None


class ScanStatusUpdate(ContractModel):
    scan_id: str
    status: ScanStatus
    extracted_item: ExtractedItem | None = None
    error_message: str | None = None


class CacheSweepOutput(ContractModel):
    cleaned: int = 0
    checked: int = 0


# === Workflow ===


class ScanPipelineInput(ContractModel):
    scan_id: str
    item: ExtractedItem
    refinement_provider: RefinementProvider | None = None


class WorkflowError(ContractModel):
    message: str
    retryable: bool


class ScanPipelineState(ContractModel):
    scan_id: str
    status: ScanStatus
    clarification: ClarificationRequest | None = None
    research: ResearchResult | None = None
    findings: RefinedFindings | None = None
    error: WorkflowError | None = None
