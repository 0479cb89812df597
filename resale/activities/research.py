"""Research activity: comparable-listing search for one scan.

Flow:
1. Validate and resolve the brand, decode the style code, consult the cache.
2. Detect category and gender once from all item text.
3. Run the sold-listings cascade narrowest first, broadening only while fewer
   than the target number of relevant results are in hand. A category inferred
   from exact style-number matches is carried into the broader passes.
4. Run platform-specific and general queries under a concurrency cap.
5. Score, filter, split sold vs active, dedupe by url, sort.
6. Store a market-data snapshot in the cache (best effort).

A failed query is logged and skipped. The stage fails only when every query
fails.
"""

from __future__ import annotations

import asyncio
import statistics
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx
import structlog
from temporalio import activity
from temporalio.exceptions import ApplicationError

from resale.activities.refinement import market_activity_for_count
from resale.config import settings
from resale.errors import ConfigurationError, ResearchFailedError, format_user_error, is_non_retryable
from resale.logging import bind_scan_context
from resale.models.contracts import (
    BrandInfo,
    DecodedStyleInfo,
    ExtractedItem,
    Listing,
    MarketDataSnapshot,
    PipelineRunRecord,
    ResearchItemInput,
    ResearchResult,
)
from resale.pipeline.brands import prepare_item
from resale.pipeline.catalog import ResearchCatalog, default_catalog
from resale.pipeline.decoders import decode_style_code
from resale.pipeline.query_planner import SoldQuery, build_queries, build_sold_query_cascade
from resale.pipeline.relevance import (
    DEFAULT_WEIGHTS,
    RelevanceWeights,
    category_texts,
    detect_category,
    detect_gender,
    filter_relevant,
    infer_category_from_matches,
)
from resale.pipeline.research_cache import ResearchCache
from resale.pipeline.search import (
    SearchProvider,
    SerpApiClient,
    parse_ebay_sold_results,
    parse_search_results,
    result_sources,
)
from resale.storage.registry import get_store

log = structlog.get_logger("research")

NO_QUERIES_NOTE = "Not enough item data to build search queries"


@dataclass(frozen=True)
class ResearchOptions:
    target_relevant: int = 5
    max_concurrent: int = 3
    search_delay: float = 0.3
    max_sources: int = 25
    threshold: float = 0.45
    weights: RelevanceWeights = DEFAULT_WEIGHTS

    @classmethod
    def from_settings(cls) -> ResearchOptions:
        return cls(
            target_relevant=settings.target_relevant_results,
            max_concurrent=settings.max_concurrent_searches,
            search_delay=settings.search_delay_seconds,
            max_sources=settings.max_sources,
            threshold=settings.min_relevance_threshold,
        )


@dataclass
class QueryOutcome:
    """Result of one search call: listings on success, the error otherwise."""

    query: str
    kind: str  # sold | platform | general
    listings: list[Listing] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _execute(
    query: str,
    kind: str,
    call: Callable[[], Awaitable[tuple[list[Listing], list[str]]]],
) -> QueryOutcome:
    try:
        listings, sources = await call()
    except ConfigurationError:
        raise
    except Exception as exc:
        log.warning("research_query_failed", query=query[:120], kind=kind, error=str(exc)[:200])
        return QueryOutcome(query=query, kind=kind, error=exc)
    log.info("research_query_complete", query=query[:120], kind=kind, listings=len(listings))
    return QueryOutcome(query=query, kind=kind, listings=listings, sources=sources)


def dedupe_by_url(listings: list[Listing]) -> list[Listing]:
    """Keep the highest-scoring copy of each url."""
    best: dict[str, Listing] = {}
    for listing in listings:
        current = best.get(listing.url)
        if current is None or (listing.relevance_score or 0) > (current.relevance_score or 0):
            best[listing.url] = listing
    return list(best.values())


def sort_listings(listings: list[Listing]) -> list[Listing]:
    return sorted(listings, key=lambda l: (-(l.relevance_score or 0), -l.price))


def build_market_snapshot(result: ResearchResult, now: datetime) -> MarketDataSnapshot:
    prices = [l.price for l in (*result.sold_listings, *result.listings) if l.price > 0]
    return MarketDataSnapshot(
        avg_price=round(statistics.fmean(prices), 2) if prices else None,
        price_low=min(prices) if prices else None,
        price_high=max(prices) if prices else None,
        listings_found=len(result.listings),
        sold_listings_found=len(result.sold_listings),
        market_activity=market_activity_for_count(len(prices)),
        sources=result.sources[:10],
        updated_at=now,
    )


async def run_research(
    item: ExtractedItem,
    *,
    search: SearchProvider,
    cache: ResearchCache | None = None,
    catalog: ResearchCatalog | None = None,
    options: ResearchOptions | None = None,
) -> ResearchResult:
    """Search, score and merge comparable listings for one item."""
    catalog = catalog or default_catalog()
    options = options or ResearchOptions()
    item = prepare_item(item, catalog)

    # Step 1: decode + cache
    decoded: DecodedStyleInfo | None = None
    cached_market = None
    cache_key: tuple[str, str] | None = None
    if cache is not None and item.brand and item.style_number:
        try:
            lookup = await cache.lookup(item.brand, item.style_number)
        except Exception:
            log.warning("research_cache_lookup_failed", exc_info=True)
            lookup = None
        if lookup is None:
            decoded = decode_style_code(item.brand, item.style_number)
        else:
            decoded = lookup.decoded_info
            cache_key = (lookup.brand, lookup.normalized_code)
            cached_market = lookup.market_data
            if lookup.cache_hit:
                await cache.record_cache_hit(lookup.brand, lookup.normalized_code)
            log.info(
                "research_cache_lookup",
                cache_hit=lookup.cache_hit,
                market_data_fresh=lookup.market_data_fresh,
                decoded=decoded is not None,
            )
    elif item.brand and item.style_number:
        decoded = decode_style_code(item.brand, item.style_number)

    # Step 2: category + gender, once
    category = detect_category(category_texts(item, decoded), catalog)
    if category is None and item.category:
        category = item.category.strip().lower()
    gender_hint = item.gender or (decoded.gender if decoded else None)
    gender_texts = [gender_hint] if gender_hint else [item.style, *item.raw_text]
    gender = detect_gender(gender_texts, catalog)

    plan = build_queries(item, category, catalog, decoded)
    brand_info = BrandInfo(name=item.brand, tier=item.brand_tier) if item.brand else None
    if plan.is_empty:
        log.warning("research_no_queries")
        return ResearchResult(
            brand_info=brand_info,
            decoded_style=decoded,
            detected_category=category,
            cached_market_data=cached_market,
            notes=[NO_QUERIES_NOTE],
        )

    log.info(
        "research_start",
        brand=item.brand,
        category=category,
        gender=gender,
        sold_queries=len(plan.sold_cascade),
        platform_queries=len(plan.platform_specific),
        general_queries=len(plan.general),
    )

    outcomes: list[QueryOutcome] = []
    semaphore = asyncio.Semaphore(max(options.max_concurrent, 1))

    async def throttled(
        call: Callable[[], Awaitable[tuple[list[Listing], list[str]]]],
    ) -> tuple[list[Listing], list[str]]:
        async with semaphore:
            try:
                return await call()
            finally:
                if options.search_delay > 0:
                    await asyncio.sleep(options.search_delay)

    def relevant(listings: list[Listing], cat: str | None) -> list[Listing]:
        return filter_relevant(
            listings,
            item,
            cat,
            gender,
            catalog=catalog,
            decoded=decoded,
            weights=options.weights,
            threshold=options.threshold,
        )

    # Step 3: sold cascade, narrow -> broad
    def sold_call(query: str) -> Callable[[], Awaitable[tuple[list[Listing], list[str]]]]:
        async def call() -> tuple[list[Listing], list[str]]:
            data = await search.search_sold(query)
            return parse_ebay_sold_results(data), []

        return call

    planned_category = category
    raw_sold: list[Listing] = []
    sold_relevant: list[Listing] = []
    executed: set[str] = set()
    queue: list[SoldQuery] = list(plan.sold_cascade)
    while queue:
        step = queue.pop(0)
        executed.add(step.query)
        outcome = await _execute(step.query, "sold", lambda q=step.query: throttled(sold_call(q)))
        outcomes.append(outcome)
        if not outcome.ok:
            continue
        raw_sold.extend(outcome.listings)

        if category is None:
            inferred = infer_category_from_matches(raw_sold, item, catalog, decoded)
            if inferred is not None:
                category = inferred
                log.info("research_category_inferred", category=category, level=step.level)
                queue = [
                    q
                    for q in build_sold_query_cascade(item, category, catalog)
                    if q.query not in executed
                ]

        sold_relevant = relevant(dedupe_by_url(raw_sold), category)
        if len(sold_relevant) >= options.target_relevant:
            log.info("research_cascade_satisfied", level=step.level, relevant=len(sold_relevant))
            break

    # Category may have been inferred: re-plan the web queries with it
    if category != planned_category:
        plan = build_queries(item, category, catalog, decoded)

    # Step 4: platform + general queries under the concurrency cap
    def web_call(
        query: str, num: int, target: str | None
    ) -> Callable[[], Awaitable[tuple[list[Listing], list[str]]]]:
        async def call() -> tuple[list[Listing], list[str]]:
            data = await search.search(query, num=num)
            return parse_search_results(data, catalog, target), result_sources(data)

        return call

    tasks = [
        _execute(p.query, "platform", lambda p=p: throttled(web_call(p.query, 10, p.platform)))
        for p in plan.platform_specific
    ]
    tasks += [
        _execute(q, "general", lambda q=q: throttled(web_call(q, 15, None))) for q in plan.general
    ]
    outcomes.extend(await asyncio.gather(*tasks))

    failed = [o.query for o in outcomes if not o.ok]
    if outcomes and len(failed) == len(outcomes):
        last_error = outcomes[-1].error
        raise ResearchFailedError(f"All {len(outcomes)} research queries failed: {last_error}")

    # Step 5: score, filter, split
    web_listings = [l for o in outcomes if o.ok and o.kind != "sold" for l in o.listings]
    scored = relevant(web_listings, category)
    sold = sold_relevant + [l for l in scored if l.sold_date]
    active = [l for l in scored if not l.sold_date]

    # Step 6: dedupe, sort, cap sources
    sold = sort_listings(dedupe_by_url(sold))
    sold_urls = {l.url for l in sold}
    active = sort_listings([l for l in dedupe_by_url(active) if l.url not in sold_urls])

    sources: list[str] = []
    for o in outcomes:
        for url in o.sources:
            if url not in sources:
                sources.append(url)

    result = ResearchResult(
        listings=active,
        sold_listings=sold,
        search_queries=[o.query for o in outcomes],
        sources=sources[: options.max_sources],
        brand_info=brand_info,
        decoded_style=decoded,
        detected_category=category,
        cached_market_data=cached_market,
        failed_queries=failed,
    )

    # Step 7: market snapshot (best effort)
    if cache is not None and cache_key is not None:
        try:
            snapshot = build_market_snapshot(result, datetime.now(UTC))
            await cache.cache_market_data(cache_key[0], cache_key[1], snapshot, decoded)
        except Exception:
            log.warning("research_cache_write_failed", exc_info=True)

    log.info(
        "research_complete",
        active=len(active),
        sold=len(sold),
        failed_queries=len(failed),
        degraded=result.degraded,
    )
    return result


@activity.defn
async def research_item(input: ResearchItemInput) -> ResearchResult:
    """Run research for a scan, persist the result, and audit the run."""
    bind_scan_context(input.scan_id, "research")
    store = get_store()
    start = time.monotonic()

    try:
        async with httpx.AsyncClient() as http_client:
            search = SerpApiClient.from_settings(http_client)
            result = await run_research(
                input.item,
                search=search,
                cache=ResearchCache(store),
                options=ResearchOptions.from_settings(),
            )
    except Exception as exc:
        duration_ms = int((time.monotonic() - start) * 1000)
        log.error("research_failed", error=str(exc)[:300], duration_ms=duration_ms)
        await store.log_pipeline_run(
            PipelineRunRecord(
                scan_id=input.scan_id,
                stage="research",
                provider="serpapi",
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

    await store.save_research_result(input.scan_id, result)
    await store.log_pipeline_run(
        PipelineRunRecord(
            scan_id=input.scan_id,
            stage="research",
            provider="serpapi",
            duration_ms=int((time.monotonic() - start) * 1000),
            success=True,
            details={
                "activeListings": len(result.listings),
                "soldListings": len(result.sold_listings),
                "queriesRun": len(result.search_queries),
                "failedQueries": len(result.failed_queries),
            },
        )
    )
    return result
