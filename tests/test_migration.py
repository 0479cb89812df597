"""Tests for the initial Alembic migration — structure and completeness."""

from __future__ import annotations

import importlib
import inspect
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    import types

from resale.models.db import Base


@pytest.fixture
def migration() -> types.ModuleType:
    """Import the initial migration module."""
    return importlib.import_module("migrations.versions.001_initial_schema")


class TestMigrationStructure:
    """Verify migration metadata and functions."""

    def test_revision_id(self, migration: types.ModuleType) -> None:
        """Migration has correct revision ID."""
        assert migration.revision == "001"

    def test_down_revision_is_none(self, migration: types.ModuleType) -> None:
        """Initial migration has no parent."""
        assert migration.down_revision is None

    def test_upgrade_and_downgrade_callable(self, migration: types.ModuleType) -> None:
        assert callable(migration.upgrade)
        assert callable(migration.downgrade)


class TestMigrationCompleteness:
    """Verify migration covers all tables defined in db.py models."""

    def test_all_tables_represented(self, migration: types.ModuleType) -> None:
        """Migration must create tables for every model in Base.metadata."""
        source = inspect.getsource(migration.upgrade)
        for table_name in Base.metadata.tables:
            assert f'"{table_name}"' in source, (
                f"Table '{table_name}' exists in db.py but is missing from migration"
            )

    def test_all_columns_represented(self, migration: types.ModuleType) -> None:
        """Every ORM column appears in the migration."""
        source = inspect.getsource(migration.upgrade)
        for table in Base.metadata.tables.values():
            for column in table.columns:
                assert f'"{column.name}"' in source, f"{table.name}.{column.name} missing"

    def test_indexes_represented(self, migration: types.ModuleType) -> None:
        source = inspect.getsource(migration.upgrade)
        for table in Base.metadata.tables.values():
            for index in table.indexes:
                assert index.name in source, f"Index '{index.name}' missing from migration"

    def test_cache_key_is_unique(self, migration: types.ModuleType) -> None:
        """Concurrent upserts rely on the (brand, normalized_code) constraint."""
        source = inspect.getsource(migration.upgrade)
        assert 'sa.UniqueConstraint("brand", "normalized_code"' in source

    def test_pipeline_runs_cascade(self, migration: types.ModuleType) -> None:
        source = inspect.getsource(migration.upgrade)
        assert 'ondelete="CASCADE"' in source

    def test_downgrade_drops_in_reverse_order(self, migration: types.ModuleType) -> None:
        """pipeline_runs references scans, so it is dropped first."""
        source = inspect.getsource(migration.downgrade)
        lines = [line.strip() for line in source.split("\n") if "drop_table" in line]
        table_order = [line.split('"')[1] for line in lines if '"' in line]
        assert table_order == ["pipeline_runs", "research_cache", "scans"]
