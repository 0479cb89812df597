"""Tests for the memory store, the PostgreSQL store (asyncpg mocked) and the registry."""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from resale.config import settings
from resale.models.contracts import (
    DecodedStyleInfo,
    MarketDataSnapshot,
    PipelineRunRecord,
    PriceRange,
    RefinedFindings,
)
from resale.storage import postgres
from resale.storage.base import should_replace_decode
from resale.storage.memory import MemoryStore
from resale.storage.postgres import PostgresStore, _pg_dsn
from resale.storage.registry import get_store
from tests.factories import NOW, make_item, make_research


def _decode(confidence: float) -> DecodedStyleInfo:
    return DecodedStyleInfo(
        brand="PATAGONIA", raw_code="25455", normalized_code="25455", confidence=confidence
    )


def _findings() -> RefinedFindings:
    return RefinedFindings(
        price_range=PriceRange(low=40, high=80, recommended=60),
        market_activity="slow",
        demand_level="low",
        confidence=0.45,
    )


class TestShouldReplaceDecode:
    def test_rules(self) -> None:
        assert should_replace_decode(None, _decode(0.3))
        assert should_replace_decode(_decode(0.7), _decode(0.9))
        assert not should_replace_decode(_decode(0.9), _decode(0.9))
        assert not should_replace_decode(_decode(0.9), _decode(0.7))


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_scan_lifecycle(self, memory_store: MemoryStore) -> None:
        item = make_item()
        research = make_research()
        await memory_store.set_scan_status("s1", "researching", extracted_item=item)
        await memory_store.save_research_result("s1", research)
        await memory_store.save_refined_findings("s1", _findings())
        await memory_store.set_scan_status("s1", "completed")

        scan = await memory_store.get_scan("s1")
        assert scan is not None
        assert scan.status == "completed"
        assert scan.extracted_item == item
        assert scan.research_result == research
        assert scan.refined_findings == _findings()
        assert scan.error_message is None

    @pytest.mark.asyncio
    async def test_unknown_scan(self, memory_store: MemoryStore) -> None:
        assert await memory_store.get_scan("missing") is None

    @pytest.mark.asyncio
    async def test_pipeline_runs_filtered_by_scan(self, memory_store: MemoryStore) -> None:
        for scan_id in ("a", "b", "a"):
            await memory_store.log_pipeline_run(
                PipelineRunRecord(
                    scan_id=scan_id,
                    stage="research",
                    provider="serpapi",
                    duration_ms=5,
                    success=True,
                )
            )
        assert len(await memory_store.list_pipeline_runs("a")) == 2

    @pytest.mark.asyncio
    async def test_hit_on_missing_entry_is_noop(self, memory_store: MemoryStore) -> None:
        await memory_store.increment_cache_hit("PATAGONIA", "00000", NOW)
        assert memory_store.cache == {}

    @pytest.mark.asyncio
    async def test_clear_stale_oldest_first(self, memory_store: MemoryStore) -> None:
        for days, code in ((20, "a"), (40, "b"), (30, "c")):
            when = NOW - timedelta(days=days)
            snapshot = MarketDataSnapshot(updated_at=when)
            await memory_store.upsert_market_data("X", code, snapshot, None, when)

        cleaned, checked = await memory_store.clear_stale_market_data(NOW - timedelta(days=7), 2)

        assert (cleaned, checked) == (2, 2)
        assert memory_store.cache[("X", "b")].market_data is None
        assert memory_store.cache[("X", "c")].market_data is None
        assert memory_store.cache[("X", "a")].market_data is not None


def _connection() -> MagicMock:
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.close = AsyncMock()
    return conn


@pytest.fixture
def conn() -> MagicMock:
    return _connection()


@pytest.fixture
def pg(conn: MagicMock):
    with patch.object(postgres.asyncpg, "connect", new=AsyncMock(return_value=conn)) as connect:
        yield PostgresStore(dsn="postgresql://u:p@db/resale"), connect


class TestPostgresStore:
    def test_dsn_conversion(self) -> None:
        with patch.object(settings, "database_url", "postgresql+asyncpg://u:p@db:5432/resale"):
            assert _pg_dsn() == "postgresql://u:p@db:5432/resale"

    @pytest.mark.asyncio
    async def test_connection_closed_after_each_call(self, pg, conn: MagicMock) -> None:
        store, connect = pg
        await store.set_scan_status("s1", "researching", extracted_item=make_item())

        connect.assert_awaited_once_with(dsn="postgresql://u:p@db/resale")
        conn.close.assert_awaited_once()
        sql, scan_id, status, item_json, error = conn.execute.await_args.args
        assert sql == postgres._UPSERT_STATUS
        assert (scan_id, status, error) == ("s1", "researching", None)
        assert json.loads(item_json)["brand"] == "PATAGONIA"

    @pytest.mark.asyncio
    async def test_connection_closed_on_error(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        conn.execute.side_effect = RuntimeError("constraint")
        with pytest.raises(RuntimeError):
            await store.save_refined_findings("s1", _findings())
        conn.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_scan_parses_json_columns(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        conn.fetchrow.return_value = {
            "id": "s1",
            "status": "completed",
            "extracted_item": make_item().model_dump_json(),
            "research_result": None,
            "refined_findings": _findings().model_dump_json(),
            "error_message": None,
        }
        scan = await store.get_scan("s1")

        assert scan is not None
        assert scan.extracted_item == make_item()
        assert scan.refined_findings == _findings()
        assert scan.research_result is None

    @pytest.mark.asyncio
    async def test_get_scan_missing(self, pg) -> None:
        store, _ = pg
        assert await store.get_scan("nope") is None

    @pytest.mark.asyncio
    async def test_log_pipeline_run(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        await store.log_pipeline_run(
            PipelineRunRecord(
                scan_id="s1",
                stage="refinement",
                provider="stats",
                duration_ms=12,
                success=True,
                details={"fallback": True},
            )
        )
        args = conn.execute.await_args.args
        assert args[0] == postgres._INSERT_RUN
        assert args[2:7] == ("s1", "refinement", "stats", 12, True)
        assert json.loads(args[8]) == {"fallback": True}

    @pytest.mark.asyncio
    async def test_upsert_market_data_passes_decode_confidence(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        snapshot = MarketDataSnapshot(avg_price=50, updated_at=NOW)
        await store.upsert_market_data("PATAGONIA", "25455", snapshot, _decode(0.7), NOW)

        args = conn.execute.await_args.args
        assert args[0] == postgres._UPSERT_MARKET
        assert args[2:4] == ("PATAGONIA", "25455")
        assert args[5] == 0.7
        assert args[7] == NOW

    @pytest.mark.asyncio
    async def test_upsert_market_data_without_decode(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        snapshot = MarketDataSnapshot(updated_at=NOW)
        await store.upsert_market_data("PATAGONIA", "25455", snapshot, None, NOW)
        args = conn.execute.await_args.args
        assert args[4] is None
        assert args[5] is None

    @pytest.mark.asyncio
    async def test_decode_upsert_only_upgrades(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        await store.upsert_decoded_info("PATAGONIA", "25455", _decode(0.9), NOW)
        args = conn.execute.await_args.args
        assert "decode_confidence < EXCLUDED.decode_confidence" in args[0]
        assert args[5] == 0.9

    @pytest.mark.asyncio
    async def test_cache_entry_row_mapping(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        conn.fetchrow.return_value = {
            "brand": "PATAGONIA",
            "normalized_code": "25455",
            "decoded_info": _decode(0.7).model_dump_json(),
            "market_data": {"avg_price": 50.0, "updated_at": NOW.isoformat()},
            "hit_count": 3,
            "last_hit_at": NOW,
            "created_at": NOW,
            "updated_at": NOW,
        }
        entry = await store.get_cache_entry("PATAGONIA", "25455")

        assert entry is not None
        assert entry.decoded_info == _decode(0.7)
        assert entry.market_data is not None and entry.market_data.avg_price == 50.0
        assert entry.hit_count == 3

    @pytest.mark.asyncio
    async def test_clear_stale_counts_rows(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        conn.fetch.return_value = [{"id": 1}, {"id": 2}]
        assert await store.clear_stale_market_data(NOW, 100) == (2, 2)
        assert conn.fetch.await_args.args == (postgres._CLEAR_STALE, NOW, 100)

    @pytest.mark.asyncio
    async def test_increment_hit(self, pg, conn: MagicMock) -> None:
        store, _ = pg
        await store.increment_cache_hit("PATAGONIA", "25455", NOW)
        assert conn.execute.await_args.args == (postgres._INCREMENT_HIT, "PATAGONIA", "25455", NOW)


class TestRegistry:
    def test_memory_store_by_default(self) -> None:
        with patch.object(settings, "use_memory_store", True):
            store = get_store()
        assert isinstance(store, MemoryStore)
        assert get_store() is store

    def test_postgres_when_configured(self) -> None:
        with patch.object(settings, "use_memory_store", False):
            assert isinstance(get_store(), PostgresStore)
