"""Refinement activity: turn research results into a price recommendation.

The primary path sends the extracted item and the top listings to a language
model with a fixed prompt (prompts/refinement.txt) and validates the JSON it
returns. Providers are tried in order (requested AI, then the other AI when
configured); when every AI path fails the statistical path runs instead and
its confidence is discounted. The statistical path never needs a network call,
so a scan only fails refinement if the statistics themselves cannot be built.
"""

from __future__ import annotations

import json
import statistics
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, get_args

import anthropic
import httpx
import structlog
from pydantic import ValidationError
from temporalio import activity
from temporalio.exceptions import ApplicationError

from resale.config import settings
from resale.errors import (
    ConfigurationError,
    ParseError,
    ProviderError,
    RefinementFailedError,
    format_user_error,
    is_non_retryable,
)
from resale.logging import bind_scan_context
from resale.models.contracts import (
    BrandTier,
    ComparableListing,
    DemandLevel,
    ExtractedItem,
    Listing,
    MarketActivity,
    PipelineRunRecord,
    PriceRange,
    RefinedFindings,
    RefineFindingsInput,
    ResearchResult,
)
from resale.pipeline.search import parse_price
from resale.storage.registry import get_store
from resale.utils.json_extract import extract_json_object
from resale.utils.retry import RetryOptions, with_retry

log = structlog.get_logger("refinement")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

MAX_TOKENS = 1500
AI_LISTING_LIMIT = 15
MAX_COMPARABLES = 5
OUTLIER_MIN_PRICES = 5
FALLBACK_CONFIDENCE_FACTOR = 0.8
FALLBACK_INSIGHT = "AI refinement failed, using statistical analysis"
NO_PRICES_INSIGHTS = (
    "No comparable listings found with prices",
    "Consider researching this item manually",
    "The item may be rare or difficult to identify",
)

AI_PROVIDERS = ("anthropic", "openai")

_MARKET_ACTIVITY: tuple[str, ...] = get_args(MarketActivity)
_DEMAND_LEVELS: tuple[str, ...] = get_args(DemandLevel)
_BRAND_TIERS: tuple[str, ...] = get_args(BrandTier)

_prompt_template_cache: str | None = None


def load_prompt_template() -> str:
    global _prompt_template_cache  # noqa: PLW0603
    if _prompt_template_cache is None:
        _prompt_template_cache = (PROMPTS_DIR / "refinement.txt").read_text()
    return _prompt_template_cache


def market_activity_for_count(count: int) -> MarketActivity:
    """Coarse market label from the number of priced comparables."""
    if count >= 10:
        return "hot"
    if count <= 2:
        return "rare"
    if count <= 5:
        return "slow"
    return "moderate"


def demand_for_count(count: int) -> DemandLevel:
    return "medium" if count >= 5 else "low"


def _ai_retry() -> RetryOptions:
    return RetryOptions(
        max_retries=settings.retry_max_retries,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )


# === Prompt ===


def top_listings(research: ResearchResult, limit: int = AI_LISTING_LIMIT) -> list[Listing]:
    """Most relevant listings across sold and active, sold first on ties."""
    merged = [*research.sold_listings, *research.listings]
    ranked = sorted(merged, key=lambda l: -(l.relevance_score or 0))
    return ranked[:limit]


def build_prompt(item: ExtractedItem, research: ResearchResult) -> str:
    item_data = item.model_dump(
        mode="json", by_alias=True, exclude_none=True, exclude={"clarification_needed"}
    )
    listings = [
        l.model_dump(mode="json", by_alias=True, exclude_none=True) for l in top_listings(research)
    ]
    return load_prompt_template().format(
        item_json=json.dumps(item_data, indent=2),
        category=research.detected_category or item.category or "unknown",
        active_count=len(research.listings),
        sold_count=len(research.sold_listings),
        listings_json=json.dumps(listings, indent=2),
    )


# === Providers ===


class Refiner(Protocol):
    name: str

    async def complete(self, prompt: str) -> str: ...


class AnthropicRefiner:
    """Claude via the anthropic SDK. SDK retries are off; ``with_retry`` owns them."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
        retry: RetryOptions | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY not configured")
        self._model = model or settings.anthropic_model
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        self._retry = retry or _ai_retry()

    async def complete(self, prompt: str) -> str:
        return await with_retry(lambda: self._create(prompt), self._retry)

    async def _create(self, prompt: str) -> str:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=MAX_TOKENS,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            raise ProviderError("anthropic", f"Anthropic rate_limit: {e}", status_code=429) from e
        except anthropic.APIStatusError as e:
            raise ProviderError(
                "anthropic", f"Anthropic API error ({e.status_code}): {e}", status_code=e.status_code
            ) from e
        except anthropic.APITimeoutError as e:
            raise ProviderError("anthropic", "Anthropic request timed out") from e
        except anthropic.APIConnectionError as e:
            raise ProviderError("anthropic", f"Anthropic connection error: {e}") from e

        text = "".join(block.text for block in response.content if block.type == "text")
        if not text.strip():
            raise ParseError("No response from Anthropic")
        return text


class OpenAIRefiner:
    """OpenAI chat completions over httpx."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        retry: RetryOptions | None = None,
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY not configured")
        self._api_key = api_key
        self._model = model or settings.openai_model
        self._client = http_client
        self._retry = retry or _ai_retry()
        self._timeout = timeout

    async def complete(self, prompt: str) -> str:
        return await with_retry(lambda: self._post(prompt), self._retry)

    async def _post(self, prompt: str) -> str:
        client = self._client or httpx.AsyncClient()
        try:
            response = await client.post(
                OPENAI_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": self._model,
                    "messages": [{"role": "user", "content": prompt}],
                    "max_tokens": MAX_TOKENS,
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise ProviderError("openai", f"OpenAI request timed out: {type(exc).__name__}") from exc
        except httpx.RequestError as exc:
            raise ProviderError("openai", f"OpenAI network error: {type(exc).__name__}: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code != 200:
            raise ProviderError(
                "openai",
                f"OpenAI API error ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ParseError(f"Unexpected OpenAI response shape: {exc}") from exc
        if not isinstance(content, str) or not content.strip():
            raise ParseError("No response from OpenAI")
        return content


def build_refiners() -> dict[str, Refiner]:
    """Refiners for every AI provider with configured credentials."""
    refiners: dict[str, Refiner] = {}
    if settings.anthropic_api_key:
        refiners["anthropic"] = AnthropicRefiner(settings.anthropic_api_key)
    if settings.openai_api_key:
        refiners["openai"] = OpenAIRefiner(settings.openai_api_key)
    return refiners


# === Parsing ===


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(max(value, low), high)


def _number(value: Any) -> float | None:
    if isinstance(value, str):
        value = value.strip()
    return parse_price(value)


def _normalize_price_range(data: Any) -> PriceRange:
    if not isinstance(data, dict):
        raise ParseError("Refinement response has no price range")
    low, high, recommended = (_number(data.get(k)) for k in ("low", "high", "recommended"))
    present = [v for v in (low, high, recommended) if v is not None]
    if not present:
        raise ParseError("Refinement price range has no numeric values")

    if recommended is None:
        recommended = statistics.median(present)
    lo = min(present)
    hi = max(present)
    return PriceRange(
        low=round(lo, 2),
        high=round(hi, 2),
        recommended=round(min(max(recommended, lo), hi), 2),
        currency=str(data.get("currency") or "USD"),
    )


def _normalize_comparables(values: Any) -> list[ComparableListing]:
    comparables = []
    for entry in values if isinstance(values, list) else []:
        if not isinstance(entry, dict) or not entry.get("title") or not entry.get("url"):
            log.warning("skipped_malformed_comparable", data=repr(entry)[:200])
            continue
        score = _number(entry.get("relevanceScore", entry.get("relevance_score")))
        comparables.append(
            ComparableListing(
                title=str(entry["title"]),
                price=_number(entry.get("price")) or 0.0,
                currency=str(entry.get("currency") or "USD"),
                platform=str(entry.get("platform") or "unknown"),
                url=str(entry["url"]),
                relevance_score=_clamp(score if score is not None else 0.0),
            )
        )
    comparables.sort(key=lambda c: -c.relevance_score)
    return comparables[:MAX_COMPARABLES]


def _opt_text(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _choice(value: Any, allowed: tuple[str, ...]) -> str | None:
    if isinstance(value, str) and value.strip().lower() in allowed:
        return value.strip().lower()
    return None


def parse_findings(text: str, provider: str, research: ResearchResult) -> RefinedFindings:
    """Validate and normalize a model's JSON answer.

    Accepts ``suggestedPriceRange`` or ``priceRange``; reorders prices so that
    low <= recommended <= high; keeps the five most relevant comparables;
    clamps confidence. Missing activity and demand labels are derived from the
    listing count.
    """
    data = extract_json_object(text)
    if data is None:
        raise ParseError("Could not parse JSON from refinement response")

    price_data = next(
        (data[k] for k in ("suggestedPriceRange", "priceRange", "price_range") if k in data),
        None,
    )
    priced = sum(1 for l in (*research.listings, *research.sold_listings) if l.price > 0)
    confidence = _number(data.get("confidence"))
    insights = data.get("insights")

    try:
        return RefinedFindings(
            price_range=_normalize_price_range(price_data),
            market_activity=_choice(data.get("marketActivity"), _MARKET_ACTIVITY)
            or market_activity_for_count(priced),
            demand_level=_choice(data.get("demandLevel"), _DEMAND_LEVELS)
            or demand_for_count(priced),
            comparable_listings=_normalize_comparables(data.get("comparableListings")),
            insights=[str(i) for i in insights if isinstance(i, str) and i.strip()]
            if isinstance(insights, list)
            else [],
            brand_tier=_choice(data.get("brandTier"), _BRAND_TIERS),
            seasonal_factors=_opt_text(data.get("seasonalFactors")),
            condition_impact=_opt_text(data.get("conditionImpact")),
            confidence=_clamp(confidence if confidence is not None else 0.5),
            provider=provider,
        )
    except ValidationError as exc:
        raise ParseError(f"Refinement response failed validation: {exc}") from exc


# === Statistics ===


def trim_outliers(prices: list[float]) -> list[float]:
    """Drop prices more than two standard deviations from the mean.

    Only applied with at least five prices; never returns an empty list.
    """
    if len(prices) < OUTLIER_MIN_PRICES:
        return list(prices)
    mean = statistics.mean(prices)
    stdev = statistics.stdev(prices)
    if stdev == 0:
        return list(prices)
    kept = [p for p in prices if abs(p - mean) <= 2 * stdev]
    return kept or list(prices)


def has_priced_listings(research: ResearchResult) -> bool:
    return any(l.price > 0 for l in (*research.sold_listings, *research.listings))


def refine_with_statistics(item: ExtractedItem, research: ResearchResult) -> RefinedFindings:
    priced = [l for l in (*research.sold_listings, *research.listings) if l.price > 0]

    if not priced:
        return RefinedFindings(
            price_range=PriceRange(low=0, high=0, recommended=0),
            market_activity="rare",
            demand_level="low",
            insights=list(NO_PRICES_INSIGHTS),
            brand_tier=item.brand_tier,
            confidence=0.1,
            provider="stats",
        )

    prices = trim_outliers([l.price for l in priced])
    low, high = min(prices), max(prices)
    median = statistics.median(prices)
    count = len(priced)

    ranked = sorted(priced, key=lambda l: -(l.relevance_score or 0))[:MAX_COMPARABLES]
    comparables = [
        ComparableListing(
            title=l.title,
            price=l.price,
            currency=l.currency,
            platform=l.platform,
            url=l.url,
            relevance_score=l.relevance_score
            if l.relevance_score is not None
            else round(1 - i * 0.1, 2),
        )
        for i, l in enumerate(ranked)
    ]
    comparables.sort(key=lambda c: -(c.relevance_score or 0))

    insights = [
        f"Found {count} comparable listings",
        f"Price range: ${low:.2f} - ${high:.2f}",
        f"Median price: ${median:.2f}",
    ]
    if len(prices) < count:
        insights.append(f"Excluded {count - len(prices)} outlier prices")
    insights.append(f"Brand: {item.brand}" if item.brand else "Brand could not be identified")

    return RefinedFindings(
        price_range=PriceRange(low=round(low, 2), high=round(high, 2), recommended=round(median, 2)),
        market_activity=market_activity_for_count(count),
        demand_level=demand_for_count(count),
        comparable_listings=comparables,
        insights=insights,
        brand_tier=item.brand_tier,
        confidence=round(min(0.3 + 0.05 * count, 0.7), 4),
        provider="stats",
    )


# === Synthesis ===


@dataclass
class RefinementOutcome:
    findings: RefinedFindings
    requested_provider: str
    fallback: bool = False
    failures: list[tuple[str, str]] = field(default_factory=list)  # (provider, error)


def provider_chain(requested: str, available: Mapping[str, Refiner]) -> list[str]:
    """AI providers to try, requested first. Empty for ``stats``."""
    if requested not in AI_PROVIDERS:
        return []
    others = [p for p in AI_PROVIDERS if p != requested and p in available]
    return [requested, *others]


async def run_refinement(
    item: ExtractedItem,
    research: ResearchResult,
    provider: str | None = None,
    *,
    refiners: Mapping[str, Refiner] | None = None,
) -> RefinementOutcome:
    requested = provider or settings.refinement_provider
    available = build_refiners() if refiners is None else refiners
    chain = provider_chain(requested, available)
    if chain and not has_priced_listings(research):
        log.info("refinement_skipped_ai", reason="no_priced_listings", provider=requested)
        chain = []
    failures: list[tuple[str, str]] = []

    if chain:
        prompt = build_prompt(item, research)
        for name in chain:
            refiner = available.get(name)
            if refiner is None:
                failures.append((name, f"{name.upper()}_API_KEY not configured"))
                log.warning("refinement_provider_unavailable", provider=name)
                continue
            try:
                text = await refiner.complete(prompt)
                findings = parse_findings(text, name, research)
            except Exception as exc:
                failures.append((name, str(exc)))
                log.warning("refinement_fallback", provider=name, error=str(exc)[:300])
                continue
            log.info(
                "refinement_ai_complete",
                provider=name,
                confidence=findings.confidence,
                recommended=findings.price_range.recommended,
            )
            return RefinementOutcome(
                findings=findings,
                requested_provider=requested,
                fallback=bool(failures),
                failures=failures,
            )

    try:
        findings = refine_with_statistics(item, research)
    except Exception as exc:
        detail = "; ".join(f"{p}: {e}" for p, e in failures)
        raise RefinementFailedError(
            f"Refinement failed: {exc}" + (f" (after {detail})" if detail else "")
        ) from exc

    fallback = bool(chain)
    if fallback:
        findings = findings.model_copy(
            update={
                "confidence": round(findings.confidence * FALLBACK_CONFIDENCE_FACTOR, 4),
                "insights": [FALLBACK_INSIGHT, *findings.insights],
            }
        )
    log.info("refinement_stats_complete", fallback=fallback, confidence=findings.confidence)
    return RefinementOutcome(
        findings=findings, requested_provider=requested, fallback=fallback, failures=failures
    )


async def synthesize(
    item: ExtractedItem,
    research: ResearchResult,
    provider: str | None = None,
    *,
    refiners: Mapping[str, Refiner] | None = None,
) -> RefinedFindings:
    """Price recommendation for an item from its research results."""
    outcome = await run_refinement(item, research, provider, refiners=refiners)
    return outcome.findings


@activity.defn
async def refine_findings(input: RefineFindingsInput) -> RefinedFindings:
    """Synthesize findings for a scan, persist them, and audit the run."""
    bind_scan_context(input.scan_id, "refinement")
    store = get_store()
    start = time.monotonic()
    requested = input.provider or settings.refinement_provider

    try:
        outcome = await run_refinement(input.item, input.research, input.provider)
    except Exception as exc:
        duration_ms = int((time.monotonic() - start) * 1000)
        log.error("refinement_failed", error=str(exc)[:300], duration_ms=duration_ms)
        await store.log_pipeline_run(
            PipelineRunRecord(
                scan_id=input.scan_id,
                stage="refinement",
                provider=requested,
                duration_ms=duration_ms,
                success=False,
                error_message=str(exc),
            )
        )
        raise ApplicationError(
            str(exc),
            format_user_error(exc),
            type=type(exc).__name__,
            non_retryable=is_non_retryable(exc),
        ) from exc

    findings = outcome.findings
    await store.save_refined_findings(input.scan_id, findings)
    await store.log_pipeline_run(
        PipelineRunRecord(
            scan_id=input.scan_id,
            stage="refinement",
            provider=findings.provider,
            duration_ms=int((time.monotonic() - start) * 1000),
            success=True,
            error_message="; ".join(f"{p}: {e}" for p, e in outcome.failures) or None,
            details={
                "requestedProvider": outcome.requested_provider,
                "fallback": outcome.fallback,
                "confidence": findings.confidence,
            },
        )
    )
    return findings
