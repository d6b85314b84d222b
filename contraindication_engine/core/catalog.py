"""
Contraindication Alert Engine - Reference Catalog Store
Loads substances, conditions and rule tables once and serves read-only snapshots
"""
import asyncio
import json
import logging
import time
from collections import defaultdict
from pathlib import Path
from typing import List, Dict, Optional, Any, Iterable, Tuple

import pandas as pd

from contraindication_engine.config.settings import CATALOG_RETRY_INTERVAL_SECONDS
from contraindication_engine.core.models import (
    Substance, Condition, ContraindicationRule, SubstanceInteractionRule
)
from contraindication_engine.core.exceptions import CatalogUnavailable
from contraindication_engine.core.retry import call_with_retry

logger = logging.getLogger(__name__)


SUBSTANCES = "substances"
CONDITIONS = "conditions"
CONTRAINDICATION_RULES = "contraindication_rules"
SUBSTANCE_INTERACTIONS = "substance_interactions"

CATALOG_TABLES = (SUBSTANCES, CONDITIONS, CONTRAINDICATION_RULES, SUBSTANCE_INTERACTIONS)


class ReferenceDataSource:
    """Read access to the four reference tables"""

    async def fetch_table(self, table: str) -> List[Dict[str, Any]]:
        raise NotImplementedError


class InMemoryReferenceDataSource(ReferenceDataSource):
    """Reference tables held in memory (fixtures, tests, seeded deployments)"""

    def __init__(self, tables: Dict[str, List[Dict[str, Any]]]):
        self.tables = tables

    async def fetch_table(self, table: str) -> List[Dict[str, Any]]:
        if table not in self.tables:
            raise KeyError(f"Table not provided: {table}")
        return list(self.tables[table])


class FileReferenceDataSource(ReferenceDataSource):
    """
    Reference tables read from disk.

    Accepts a JSON file holding all four tables, a directory with one CSV
    per table (``substances.csv`` ...) or an Excel workbook with one sheet
    per table. Aliases in CSV/Excel cells are ``|``-separated.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    async def fetch_table(self, table: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.read_table, table)

    def read_table(self, table: str) -> List[Dict[str, Any]]:
        if self.path.is_dir():
            return self._read_frame(pd.read_csv(self.path / f"{table}.csv", dtype=str, keep_default_na=False))

        suffix = self.path.suffix.lower()
        if suffix == ".json":
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if table not in data:
                raise KeyError(f"Table {table} missing from {self.path}")
            return list(data[table])
        if suffix in (".xlsx", ".xls"):
            return self._read_frame(pd.read_excel(self.path, sheet_name=table, dtype=str).fillna(""))
        if suffix == ".csv":
            raise ValueError(f"A single CSV cannot hold {table}; point CATALOG_PATH at a directory")

        raise ValueError(f"Unsupported catalog format: {self.path}")

    @staticmethod
    def _read_frame(df: pd.DataFrame) -> List[Dict[str, Any]]:
        df.columns = [str(c).strip().lower() for c in df.columns]
        return df.to_dict(orient="records")


class CatalogSnapshot:
    """Immutable view of the reference catalog, injected wherever rules are evaluated"""

    def __init__(
        self,
        substances: Iterable[Substance] = (),
        conditions: Iterable[Condition] = (),
        contraindication_rules: Iterable[ContraindicationRule] = (),
        interaction_rules: Iterable[SubstanceInteractionRule] = (),
        errors: Optional[Dict[str, CatalogUnavailable]] = None,
    ):
        self._substances: Dict[str, Substance] = {s.id: s for s in substances}
        self._conditions: Dict[str, Condition] = {c.id: c for c in conditions}
        self.errors: Dict[str, CatalogUnavailable] = dict(errors or {})
        self.rejected_rules = 0

        # Every kept rule references ids present in this snapshot
        self._contraindication_rules: Tuple[ContraindicationRule, ...] = tuple(
            r for r in contraindication_rules if self._accept(
                r.id, (r.substance_id in self._substances, r.condition_id in self._conditions)
            )
        )
        self._interaction_rules: Tuple[SubstanceInteractionRule, ...] = tuple(
            r for r in interaction_rules if self._accept(
                r.id, (r.substance_a_id in self._substances, r.substance_b_id in self._substances)
            )
        )

        if self.rejected_rules:
            logger.warning(f"Dropped {self.rejected_rules} rules with unresolved substance/condition ids")

    def _accept(self, rule_id: str, resolved: Tuple[bool, bool]) -> bool:
        if all(resolved):
            return True
        self.rejected_rules += 1
        logger.debug(f"Rule {rule_id} references unknown ids, skipped")
        return False

    # ---- lookups ----

    def substance(self, substance_id: str) -> Optional[Substance]:
        return self._substances.get(substance_id)

    def condition(self, condition_id: str) -> Optional[Condition]:
        return self._conditions.get(condition_id)

    @property
    def substances(self) -> List[Substance]:
        return list(self._substances.values())

    @property
    def conditions(self) -> List[Condition]:
        return list(self._conditions.values())

    @property
    def contraindication_rules(self) -> Tuple[ContraindicationRule, ...]:
        return self._contraindication_rules

    @property
    def interaction_rules(self) -> Tuple[SubstanceInteractionRule, ...]:
        return self._interaction_rules

    # ---- availability ----

    @property
    def unavailable(self) -> List[str]:
        return [t for t in CATALOG_TABLES if t in self.errors]

    @property
    def is_complete(self) -> bool:
        return not self.errors

    @property
    def can_evaluate(self) -> bool:
        """Substances plus at least one rule table are needed to produce any alert"""
        if SUBSTANCES in self.errors:
            return False
        return not (CONTRAINDICATION_RULES in self.errors and SUBSTANCE_INTERACTIONS in self.errors)

    def statistics(self) -> Dict[str, Any]:
        type_counts = defaultdict(int)
        for s in self._substances.values():
            type_counts[s.substance_type.value] += 1

        return {
            "substances": len(self._substances),
            "conditions": len(self._conditions),
            "contraindication_rules": len(self._contraindication_rules),
            "interaction_rules": len(self._interaction_rules),
            "rejected_rules": self.rejected_rules,
            "substance_type_distribution": dict(type_counts),
            "unavailable": self.unavailable,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            SUBSTANCES: [s.to_dict() for s in self._substances.values()],
            CONDITIONS: [c.to_dict() for c in self._conditions.values()],
            CONTRAINDICATION_RULES: [r.to_dict() for r in self._contraindication_rules],
            SUBSTANCE_INTERACTIONS: [r.to_dict() for r in self._interaction_rules],
        }

    def export(self, output_path: str) -> None:
        """Export the normalised catalog to JSON"""
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
        logger.info(f"Exported catalog to {output_path}")


ROW_PARSERS = {
    SUBSTANCES: Substance.from_row,
    CONDITIONS: Condition.from_row,
    CONTRAINDICATION_RULES: ContraindicationRule.from_row,
    SUBSTANCE_INTERACTIONS: SubstanceInteractionRule.from_row,
}


def parse_rows(table: str, rows: List[Dict[str, Any]]) -> List[Any]:
    """Parse table rows, skipping rows that cannot be parsed"""
    parser = ROW_PARSERS[table]
    parsed = []
    for row in rows:
        try:
            item = parser(row)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to parse {table} row {row.get('id', 'Unknown')} - {e}")
            continue
        if not item.id:
            logger.warning(f"Skipping {table} row without id")
            continue
        parsed.append(item)
    return parsed


class CatalogStore:
    """
    Owns the catalog snapshot for the process lifetime.

    The first ``get_snapshot()`` loads every table; later calls reuse the
    cached snapshot until ``reload()`` or ``invalidate()``. While some tables
    are unavailable, a ``get_snapshot()`` made at least ``retry_interval``
    seconds after the last fetch tries those tables again and keeps the rows
    of the tables that already loaded.
    """

    def __init__(
        self,
        source: ReferenceDataSource,
        retry_interval: float = CATALOG_RETRY_INTERVAL_SECONDS,
        **retry_options
    ):
        self.source = source
        self.retry_interval = retry_interval
        self.retry_options = retry_options
        self._snapshot: Optional[CatalogSnapshot] = None
        self._tables: Dict[str, List[Any]] = {}
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def snapshot(self) -> Optional[CatalogSnapshot]:
        return self._snapshot

    async def load(self) -> CatalogSnapshot:
        """Read all four tables; a failing table is recorded, never fatal"""
        self._tables = {}
        return await self._fetch(CATALOG_TABLES)

    async def _fetch(self, tables: Iterable[str]) -> CatalogSnapshot:
        tables = tuple(tables)
        results = await asyncio.gather(*(self._load_table(t) for t in tables))

        errors: Dict[str, CatalogUnavailable] = {}
        for table, (items, error) in zip(tables, results):
            if error is None:
                self._tables[table] = items
            else:
                errors[table] = error
        self._fetched_at = time.monotonic()

        snapshot = CatalogSnapshot(
            substances=self._tables.get(SUBSTANCES, []),
            conditions=self._tables.get(CONDITIONS, []),
            contraindication_rules=self._tables.get(CONTRAINDICATION_RULES, []),
            interaction_rules=self._tables.get(SUBSTANCE_INTERACTIONS, []),
            errors=errors,
        )
        stats = snapshot.statistics()
        logger.info(
            f"Catalog loaded: {stats['substances']} substances, {stats['conditions']} conditions, "
            f"{stats['contraindication_rules']} contraindication rules, "
            f"{stats['interaction_rules']} interaction rules"
        )
        if errors:
            logger.warning(f"Catalog degraded, unavailable tables: {', '.join(snapshot.unavailable)}")
        return snapshot

    async def _load_table(self, table: str) -> Tuple[List[Any], Optional[CatalogUnavailable]]:
        try:
            rows = await call_with_retry(
                lambda: self.source.fetch_table(table),
                label=f"Catalog table {table}",
                **self.retry_options
            )
        except asyncio.TimeoutError:
            return [], CatalogUnavailable(f"Timed out loading {table}", table=table, details={"reason": "timeout"})
        except Exception as e:
            return [], CatalogUnavailable(f"Failed to load {table}: {e}", table=table)
        return parse_rows(table, rows), None

    def _retry_due(self) -> bool:
        if self._snapshot is None or self._snapshot.is_complete:
            return False
        return time.monotonic() - self._fetched_at >= self.retry_interval

    async def get_snapshot(self) -> CatalogSnapshot:
        if self._snapshot is not None and not self._retry_due():
            return self._snapshot
        async with self._lock:
            if self._snapshot is None:
                self._snapshot = await self.load()
            elif self._retry_due():
                logger.info(f"Retrying unavailable catalog tables: {', '.join(self._snapshot.unavailable)}")
                self._snapshot = await self._fetch(self._snapshot.unavailable)
            return self._snapshot

    async def reload(self) -> CatalogSnapshot:
        """Drop the cached snapshot and load again"""
        async with self._lock:
            self._snapshot = await self.load()
            return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None
