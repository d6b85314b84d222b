"""
Contraindication Alert Engine - Alert Stream Controller
Latest-token-wins coordinator that keeps one individual's alert list current
"""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, Set

from contraindication_engine.config.settings import DEBOUNCE_SECONDS
from contraindication_engine.core.catalog import CatalogStore, CatalogSnapshot
from contraindication_engine.core.evaluator import RuleEvaluator, stamp_acknowledged
from contraindication_engine.core.exceptions import (
    ConditionInferenceFailed, LedgerReadFailed, UnknownAlert
)
from contraindication_engine.core.intake import IntakeSource
from contraindication_engine.core.ledger import AcknowledgementLedger
from contraindication_engine.core.models import (
    AcknowledgementRecord, Alert, AlertReport, EvaluationStatus,
    InferredConditions, SeverityCounts, Severity
)
from contraindication_engine.core.retry import call_with_retry
from contraindication_engine.nlp.condition_inference import ConditionInferenceResolver
from contraindication_engine.nlp.substance_matcher import SubstanceMatcher
from contraindication_engine.nlp.text_processor import TextProcessor

logger = logging.getLogger(__name__)

Subscriber = Callable[[AlertReport], None]


@dataclass
class Evaluation:
    """Outcome of one pipeline run, before acknowledgement state is merged"""
    alerts: List[Alert] = field(default_factory=list)
    acknowledged: Set[str] = field(default_factory=set)
    status: EvaluationStatus = EvaluationStatus.COMPLETE
    issues: List[str] = field(default_factory=list)


class AlertStreamController:
    """
    Single coordinator for one individual's alerts.

    Every plan change or refresh takes a new token. Recompute waits out the
    debounce window, then runs catalog, intake and ledger reads; after each
    await the token is compared with the latest one and a stale run stops
    without publishing. Acknowledgements are applied only after the ledger
    confirms the write.
    """

    def __init__(
        self,
        individual_id: str,
        catalog_store: CatalogStore,
        intake_source: IntakeSource,
        ledger: AcknowledgementLedger,
        resolver: ConditionInferenceResolver,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        **retry_options
    ):
        self.individual_id = individual_id
        self.catalog_store = catalog_store
        self.intake_source = intake_source
        self.ledger = ledger
        self.resolver = resolver
        self.debounce_seconds = debounce_seconds
        self.retry_options = retry_options

        self._phrases: List[str] = []
        self._token = 0
        self._tasks: Set[asyncio.Task] = set()
        self._acknowledged: Set[str] = set()
        self._confirmed: Set[str] = set()
        self._subscribers: List[Subscriber] = []
        self._matcher: Optional[SubstanceMatcher] = None
        self._report = AlertReport(individual_id=individual_id)
        self._closed = False

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def phrases(self) -> List[str]:
        return list(self._phrases)

    @property
    def token(self) -> int:
        return self._token

    def submit_plan(self, phrases: Optional[Sequence[str]] = None, text: Optional[str] = None) -> int:
        """Replace the plan's substance mentions and schedule a recompute"""
        collected = [p for p in (phrases or []) if p and p.strip()]
        if text:
            collected.extend(TextProcessor.split_plan_text(text))
        self._phrases = collected
        return self._schedule()

    def refresh(self) -> int:
        """Recompute with unchanged input, e.g. after intake or catalog changes"""
        return self._schedule()

    def _schedule(self) -> int:
        if self._closed:
            raise RuntimeError(f"Alert stream for {self.individual_id} is closed")
        self._token += 1
        task = asyncio.get_running_loop().create_task(self._run(self._token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return self._token

    def _is_stale(self, token: int) -> bool:
        return token != self._token

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, token: int) -> None:
        if self.debounce_seconds > 0:
            await asyncio.sleep(self.debounce_seconds)
        if self._is_stale(token):
            return

        try:
            evaluation = await self._evaluate(token, list(self._phrases))
        except Exception as e:
            if self._is_stale(token):
                return
            logger.exception(f"Alert evaluation {token} failed for {self.individual_id}")
            evaluation = Evaluation(status=EvaluationStatus.FAILED, issues=[f"Alert evaluation failed: {e}"])

        if evaluation is None:
            logger.debug(f"Discarded stale evaluation {token} for {self.individual_id}")
            return

        self._acknowledged = set(evaluation.acknowledged) | self._confirmed
        self._publish(AlertReport(
            individual_id=self.individual_id,
            alerts=stamp_acknowledged(evaluation.alerts, self._acknowledged),
            status=evaluation.status,
            issues=evaluation.issues,
            token=token,
        ))

    async def _evaluate(self, token: int, phrases: List[str]) -> Optional[Evaluation]:
        snapshot = await self.catalog_store.get_snapshot()
        if self._is_stale(token):
            return None

        if not snapshot.can_evaluate:
            issues = [snapshot.errors[t].message for t in snapshot.unavailable]
            logger.warning(f"Cannot evaluate alerts for {self.individual_id}: catalog unavailable")
            return Evaluation(status=EvaluationStatus.FAILED, issues=issues)

        matched = self._matcher_for(snapshot).match(phrases)
        if not matched:
            return Evaluation()

        status = EvaluationStatus.COMPLETE
        issues = [snapshot.errors[t].message for t in snapshot.unavailable]
        if issues:
            status = EvaluationStatus.DEGRADED

        intake, loaded = await asyncio.gather(
            self._fetch_intake(),
            self.ledger.load_acknowledged(self.individual_id),
            return_exceptions=True,
        )
        if self._is_stale(token):
            return None

        if isinstance(intake, ConditionInferenceFailed):
            conditions = InferredConditions()
            status = EvaluationStatus.DEGRADED
            issues.append(intake.message)
        elif isinstance(intake, BaseException):
            raise intake
        else:
            conditions = self.resolver.resolve(intake, snapshot)

        if isinstance(loaded, LedgerReadFailed):
            loaded = set()
            status = EvaluationStatus.DEGRADED
            issues.append("Prior acknowledgements unavailable; all alerts shown as unacknowledged")
        elif isinstance(loaded, BaseException):
            raise loaded

        alerts = RuleEvaluator(snapshot).evaluate(matched, conditions)
        return Evaluation(alerts=alerts, acknowledged=set(loaded), status=status, issues=issues)

    async def _fetch_intake(self):
        try:
            return await call_with_retry(
                lambda: self.intake_source.fetch(self.individual_id),
                label=f"Intake fetch {self.individual_id}",
                **self.retry_options
            )
        except Exception as e:
            raise ConditionInferenceFailed(
                f"Intake unavailable, conditions not checked: {e}", individual_id=self.individual_id
            ) from e

    def _matcher_for(self, snapshot: CatalogSnapshot) -> SubstanceMatcher:
        if self._matcher is None or self._matcher.snapshot is not snapshot:
            self._matcher = SubstanceMatcher(snapshot)
        return self._matcher

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    @property
    def report(self) -> AlertReport:
        return self._report

    @property
    def counts(self) -> SeverityCounts:
        return self._report.unacknowledged_counts

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for published reports; returns an unsubscribe function"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, report: AlertReport) -> None:
        self._report = report
        for callback in list(self._subscribers):
            try:
                callback(report)
            except Exception:
                logger.exception(f"Alert subscriber failed for {self.individual_id}")

    # ------------------------------------------------------------------
    # Acknowledgement
    # ------------------------------------------------------------------

    async def acknowledge(self, rule_id: str, practitioner_id: str) -> AcknowledgementRecord:
        """
        Persist an acknowledgement, then mark the alert.

        Raises UnknownAlert when the rule is not in the current list and
        LedgerWriteFailed when the write is not confirmed; in both cases
        the published list is unchanged.
        """
        alert = self._report.find(rule_id)
        if alert is None:
            raise UnknownAlert(rule_id, individual_id=self.individual_id)

        record = await self.ledger.acknowledge(
            self.individual_id, rule_id, alert.rule_kind, alert.severity, practitioner_id
        )

        self._confirmed.add(rule_id)
        self._acknowledged.add(rule_id)
        self._publish(replace(
            self._report,
            alerts=stamp_acknowledged(self._report.alerts, self._acknowledged),
        ))
        return record

    async def acknowledge_critical(self, practitioner_id: str) -> List[AcknowledgementRecord]:
        """Acknowledge every unacknowledged critical alert, stopping at the first failed write"""
        pending = [
            a.rule_id for a in self._report.alerts
            if a.severity == Severity.CRITICAL and not a.acknowledged
        ]
        records = []
        for rule_id in pending:
            records.append(await self.acknowledge(rule_id, practitioner_id))
        return records

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_idle(self) -> AlertReport:
        """Wait until no recompute is pending and return the current report"""
        while self._tasks:
            results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    raise result
        return self._report

    @property
    def idle(self) -> bool:
        return not self._tasks

    def shutdown(self) -> None:
        """Stop accepting input and cancel pending recomputes without waiting"""
        self._closed = True
        self._token += 1
        for task in list(self._tasks):
            task.cancel()
        self._subscribers.clear()

    async def close(self) -> None:
        self.shutdown()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
