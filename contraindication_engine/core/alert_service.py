"""
Contraindication Alert Engine - Alert Service
Registry of per-individual alert streams plus one-shot evaluation
"""
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from contraindication_engine.config.settings import (
    CATALOG_PATH, DEBOUNCE_SECONDS, LEDGER_DATABASE_URL, MAX_ALERT_STREAMS, PRACTICE_API_URL
)
from contraindication_engine.core.catalog import (
    CatalogStore, CatalogSnapshot, FileReferenceDataSource, ReferenceDataSource
)
from contraindication_engine.core.controller import AlertStreamController
from contraindication_engine.core.evaluator import RuleEvaluator
from contraindication_engine.core.intake import IntakeSource, InMemoryIntakeSource
from contraindication_engine.core.ledger import AcknowledgementLedger, SqlLedgerBackend
from contraindication_engine.core.models import (
    AcknowledgementRecord, AlertReport, EvaluationStatus, IntakeRecord, Substance
)
from contraindication_engine.nlp.condition_inference import ConditionInferenceResolver
from contraindication_engine.nlp.substance_matcher import SubstanceMatcher
from contraindication_engine.nlp.text_processor import TextProcessor

logger = logging.getLogger(__name__)


class AlertEngine:
    """
    Wires the catalog, intake, ledger and inference components together.

    Streams are created lazily, one per individual, and share the catalog
    store so a catalog reload refreshes every open stream. At most
    ``max_streams`` are kept; the least recently used idle stream is shut
    down when a new one would exceed the limit.
    """

    def __init__(
        self,
        catalog_store: CatalogStore,
        intake_source: IntakeSource,
        ledger: AcknowledgementLedger,
        resolver: Optional[ConditionInferenceResolver] = None,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        max_streams: int = MAX_ALERT_STREAMS,
        **retry_options
    ):
        self.catalog_store = catalog_store
        self.intake_source = intake_source
        self.ledger = ledger
        self.resolver = resolver or ConditionInferenceResolver()
        self.debounce_seconds = debounce_seconds
        self.max_streams = max(1, max_streams)
        self.retry_options = retry_options
        self._streams: "OrderedDict[str, AlertStreamController]" = OrderedDict()
        self._matcher: Optional[SubstanceMatcher] = None

    @property
    def streams(self) -> Dict[str, AlertStreamController]:
        return dict(self._streams)

    def stream_for(self, individual_id: str) -> AlertStreamController:
        """Get or create the alert stream for an individual"""
        stream = self._streams.get(individual_id)
        if stream is None:
            stream = AlertStreamController(
                individual_id,
                catalog_store=self.catalog_store,
                intake_source=self.intake_source,
                ledger=self.ledger,
                resolver=self.resolver,
                debounce_seconds=self.debounce_seconds,
                **self.retry_options
            )
            self._streams[individual_id] = stream
            logger.debug(f"Opened alert stream for {individual_id}")
            self._evict()
        else:
            self._streams.move_to_end(individual_id)
        return stream

    def find_stream(self, individual_id: str) -> Optional[AlertStreamController]:
        """Existing stream for an individual, never creating one"""
        stream = self._streams.get(individual_id)
        if stream is not None:
            self._streams.move_to_end(individual_id)
        return stream

    async def current_report(self, individual_id: str) -> AlertReport:
        """Latest report, or a pending one when no plan was submitted in this process"""
        stream = self.find_stream(individual_id)
        if stream is None:
            return AlertReport(individual_id=individual_id)
        return await stream.wait_idle()

    def _evict(self) -> None:
        while len(self._streams) > self.max_streams:
            # The newest stream is never a candidate
            candidates = [i for i, s in list(self._streams.items())[:-1] if s.idle]
            if not candidates:
                return
            stream = self._streams.pop(candidates[0])
            stream.shutdown()
            logger.debug(f"Evicted idle alert stream for {candidates[0]}")

    async def evaluate_once(
        self,
        phrases: Optional[Sequence[str]] = None,
        text: Optional[str] = None,
        intake: Optional[IntakeRecord] = None,
        individual_id: str = "anonymous",
    ) -> AlertReport:
        """
        Evaluate a plan against inline intake data without touching any stream.

        Nothing is read from or written to the ledger; every alert is
        reported unacknowledged.
        """
        snapshot = await self.catalog_store.get_snapshot()
        issues = [snapshot.errors[t].message for t in snapshot.unavailable]
        if not snapshot.can_evaluate:
            return AlertReport(individual_id=individual_id, status=EvaluationStatus.FAILED, issues=issues)

        collected = [p for p in (phrases or []) if p and p.strip()]
        if text:
            collected.extend(TextProcessor.split_plan_text(text))

        matched = self._matcher_for(snapshot).match(collected)
        if not matched:
            return AlertReport(individual_id=individual_id, status=EvaluationStatus.COMPLETE)

        conditions = self.resolver.resolve(intake or IntakeRecord(individual_id=individual_id), snapshot)
        alerts = RuleEvaluator(snapshot).evaluate(matched, conditions)
        return AlertReport(
            individual_id=individual_id,
            alerts=alerts,
            status=EvaluationStatus.DEGRADED if issues else EvaluationStatus.COMPLETE,
            issues=issues,
        )

    async def preview_matches(self, phrase: str, limit: int = 20) -> List[Substance]:
        """Substances a plan phrase would resolve to"""
        snapshot = await self.catalog_store.get_snapshot()
        return self._matcher_for(snapshot).preview(phrase, limit)

    def _matcher_for(self, snapshot: CatalogSnapshot) -> SubstanceMatcher:
        if self._matcher is None or self._matcher.snapshot is not snapshot:
            self._matcher = SubstanceMatcher(snapshot)
        return self._matcher

    async def acknowledgements(self, individual_id: str) -> List[AcknowledgementRecord]:
        return await self.ledger.records(individual_id)

    async def reload_catalog(self) -> CatalogSnapshot:
        """Reload the reference catalog and recompute every open stream"""
        snapshot = await self.catalog_store.reload()
        for stream in self._streams.values():
            stream.refresh()
        logger.info(f"Catalog reloaded, refreshed {len(self._streams)} alert streams")
        return snapshot

    async def close(self) -> None:
        for stream in self._streams.values():
            await stream.close()
        self._streams.clear()


def build_default_engine() -> AlertEngine:
    """Engine backed by the practice API when configured, local files otherwise"""
    if PRACTICE_API_URL:
        from contraindication_engine.api.practice_adapter import get_practice_adapter
        adapter = get_practice_adapter()
        reference_source: ReferenceDataSource = adapter
        intake_source: IntakeSource = adapter
    else:
        reference_source = FileReferenceDataSource(CATALOG_PATH)
        intake_source = InMemoryIntakeSource()

    return AlertEngine(
        catalog_store=CatalogStore(reference_source),
        intake_source=intake_source,
        ledger=AcknowledgementLedger(SqlLedgerBackend(LEDGER_DATABASE_URL)),
    )


# Singleton instance
_alert_engine: Optional[AlertEngine] = None


def get_alert_engine() -> AlertEngine:
    """Get or create alert engine singleton"""
    global _alert_engine
    if _alert_engine is None:
        _alert_engine = build_default_engine()
    return _alert_engine
