"""
Contraindication Alert Engine - Reference Catalog Tests
"""
import sys
import os
import asyncio
import json
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd
import pytest

from contraindication_engine.core.catalog import (
    CatalogSnapshot, CatalogStore, FileReferenceDataSource, InMemoryReferenceDataSource,
    ReferenceDataSource, parse_rows,
    SUBSTANCES, CONDITIONS, CONTRAINDICATION_RULES, SUBSTANCE_INTERACTIONS
)
from contraindication_engine.core.models import ContraindicationRule, Severity, SubstanceType


class FlakySource(ReferenceDataSource):
    """Fails the listed tables, counts calls per table"""

    def __init__(self, tables, failing=(), hanging=()):
        self.tables = tables
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.calls = {}

    async def fetch_table(self, table):
        self.calls[table] = self.calls.get(table, 0) + 1
        if table in self.failing:
            raise ConnectionError(f"{table} down")
        if table in self.hanging:
            await asyncio.sleep(10)
        return list(self.tables[table])


class TestRowParsing:

    def test_substance_pipe_aliases(self):
        [substance] = parse_rows(SUBSTANCES, [
            {"id": "s1", "name": "Réglisse", "aliases": "Glycyrrhiza glabra| racine de réglisse |", "type": "plante"}
        ])
        assert substance.aliases == frozenset({"Glycyrrhiza glabra", "racine de réglisse"})
        assert substance.substance_type == SubstanceType.PLANT

    def test_unknown_type_falls_back(self):
        [substance] = parse_rows(SUBSTANCES, [{"id": "s1", "name": "X", "type": "tisane"}])
        assert substance.substance_type == SubstanceType.OTHER

    def test_invalid_rows_skipped(self):
        rules = parse_rows(CONTRAINDICATION_RULES, [
            {"id": "r1", "substance_id": "s1", "condition_id": "c1", "severity": " Critical "},
            {"id": "r2", "substance_id": "s1", "condition_id": "c1", "severity": "fatal"},
            {"id": "", "substance_id": "s1", "condition_id": "c1", "severity": "info"},
        ])
        assert [r.id for r in rules] == ["r1"]
        assert rules[0].severity == Severity.CRITICAL


class TestCatalogSnapshot:

    def test_sample_statistics(self, snapshot):
        stats = snapshot.statistics()
        assert stats["substances"] == 8
        assert stats["conditions"] == 14
        assert stats["contraindication_rules"] == 20
        assert stats["interaction_rules"] == 3
        assert stats["rejected_rules"] == 0
        assert snapshot.is_complete
        assert snapshot.can_evaluate

    def test_dangling_rules_dropped(self, snapshot):
        catalog = CatalogSnapshot(
            substances=snapshot.substances,
            conditions=snapshot.conditions,
            contraindication_rules=[
                *snapshot.contraindication_rules,
                ContraindicationRule("ci-x", "sub-inconnue", "cond-grossesse", Severity.CRITICAL),
            ],
        )
        assert catalog.rejected_rules == 1
        assert "ci-x" not in {r.id for r in catalog.contraindication_rules}

    def test_export_round_trip(self, snapshot, tmp_path):
        path = tmp_path / "catalog.json"
        snapshot.export(str(path))
        data = json.loads(path.read_text(encoding="utf-8"))
        assert len(data[SUBSTANCES]) == 8
        assert data[SUBSTANCE_INTERACTIONS][0]["id"] == "ix-001"


class TestFileReferenceDataSource:

    def test_bundled_json(self):
        from contraindication_engine.config.settings import CATALOG_PATH
        rows = FileReferenceDataSource(CATALOG_PATH).read_table(CONDITIONS)
        assert any(r["name"] == "Grossesse" for r in rows)

    def test_csv_directory(self, tmp_path, catalog_tables, fast_retry):
        for table, rows in catalog_tables.items():
            df = pd.DataFrame(rows)
            if "aliases" in df.columns:
                df["aliases"] = df["aliases"].apply("|".join)
            df.columns = [c.upper() for c in df.columns]
            df.to_csv(tmp_path / f"{table}.csv", index=False)

        store = CatalogStore(FileReferenceDataSource(str(tmp_path)), **fast_retry)
        snapshot = asyncio.run(store.load())

        assert snapshot.is_complete
        assert snapshot.substance("sub-millepertuis").aliases == frozenset(
            {"Hypericum perforatum", "St John's Wort", "herbe de la Saint-Jean"}
        )
        assert len(snapshot.contraindication_rules) == 20

    def test_missing_csv_table_degrades(self, tmp_path, catalog_tables, fast_retry):
        pd.DataFrame(catalog_tables[SUBSTANCES]).drop(columns=["aliases"]).to_csv(
            tmp_path / "substances.csv", index=False
        )
        store = CatalogStore(FileReferenceDataSource(str(tmp_path)), **fast_retry)
        snapshot = asyncio.run(store.load())

        assert snapshot.unavailable == [CONDITIONS, CONTRAINDICATION_RULES, SUBSTANCE_INTERACTIONS]
        assert not snapshot.can_evaluate

    def test_unsupported_format(self, tmp_path):
        with pytest.raises(ValueError):
            FileReferenceDataSource(str(tmp_path / "catalog.txt")).read_table(SUBSTANCES)


class TestCatalogStore:

    def test_partial_failure_is_degraded(self, catalog_tables, fast_retry):
        store = CatalogStore(FlakySource(catalog_tables, failing={SUBSTANCE_INTERACTIONS}), **fast_retry)
        snapshot = asyncio.run(store.load())

        assert snapshot.unavailable == [SUBSTANCE_INTERACTIONS]
        assert not snapshot.is_complete
        assert snapshot.can_evaluate
        assert snapshot.interaction_rules == ()
        assert snapshot.errors[SUBSTANCE_INTERACTIONS].code == "CATALOG_UNAVAILABLE"

    def test_failed_table_is_retried(self, catalog_tables, fast_retry):
        source = FlakySource(catalog_tables, failing={CONDITIONS})
        asyncio.run(CatalogStore(source, **fast_retry).load())
        assert source.calls[CONDITIONS] == fast_retry["attempts"]
        assert source.calls[SUBSTANCES] == 1

    def test_timeout_recorded(self, catalog_tables):
        source = FlakySource(catalog_tables, hanging={SUBSTANCES})
        store = CatalogStore(source, attempts=1, timeout=0.05, base_delay=0, max_delay=0)
        snapshot = asyncio.run(store.load())

        assert snapshot.errors[SUBSTANCES].details["reason"] == "timeout"
        assert not snapshot.can_evaluate

    def test_missing_rule_tables_cannot_evaluate(self, catalog_tables, fast_retry):
        source = FlakySource(catalog_tables, failing={CONTRAINDICATION_RULES, SUBSTANCE_INTERACTIONS})
        snapshot = asyncio.run(CatalogStore(source, **fast_retry).load())
        assert not snapshot.can_evaluate

    def test_snapshot_cached_until_reload(self, catalog_tables, fast_retry):
        source = FlakySource(catalog_tables)
        store = CatalogStore(source, **fast_retry)

        async def scenario():
            first, second = await asyncio.gather(store.get_snapshot(), store.get_snapshot())
            assert first is second
            assert source.calls[SUBSTANCES] == 1

            reloaded = await store.reload()
            assert reloaded is not first
            assert source.calls[SUBSTANCES] == 2

            store.invalidate()
            assert not store.loaded
            await store.get_snapshot()
            assert source.calls[SUBSTANCES] == 3

        asyncio.run(scenario())

    def test_unavailable_tables_fetched_again(self, catalog_tables, fast_retry):
        source = FlakySource(catalog_tables, failing={SUBSTANCES})
        store = CatalogStore(source, retry_interval=0, **fast_retry)

        async def scenario():
            down = await store.get_snapshot()
            assert not down.can_evaluate
            assert down.contraindication_rules == ()

            source.failing.clear()
            recovered = await store.get_snapshot()
            assert recovered.is_complete
            assert len(recovered.contraindication_rules) == 20
            assert source.calls[SUBSTANCES] == fast_retry["attempts"] + 1
            assert source.calls[CONDITIONS] == 1

            assert await store.get_snapshot() is recovered

        asyncio.run(scenario())

    def test_retry_waits_for_interval(self, catalog_tables, fast_retry):
        source = FlakySource(catalog_tables, failing={SUBSTANCES})
        store = CatalogStore(source, retry_interval=3600, **fast_retry)

        async def scenario():
            first = await store.get_snapshot()
            source.failing.clear()
            assert await store.get_snapshot() is first
            assert source.calls[SUBSTANCES] == fast_retry["attempts"]

        asyncio.run(scenario())

    def test_in_memory_missing_table(self, catalog_tables, fast_retry):
        tables = {k: v for k, v in catalog_tables.items() if k != CONDITIONS}
        snapshot = asyncio.run(CatalogStore(InMemoryReferenceDataSource(tables), **fast_retry).load())
        assert snapshot.unavailable == [CONDITIONS]
