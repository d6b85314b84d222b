"""
Contraindication Alert Engine - Rule Evaluator
Cross-evaluates matched substances against inferred conditions and each other
"""
import logging
from dataclasses import replace
from typing import List, Dict, AbstractSet, Any

from contraindication_engine.core.catalog import CatalogSnapshot
from contraindication_engine.core.models import (
    Alert, RuleKind, Severity, MatchResult, InferredConditions,
    SeverityCounts, ContraindicationRule, SubstanceInteractionRule
)

logger = logging.getLogger(__name__)


def sort_alerts(alerts: List[Alert]) -> List[Alert]:
    """Stable sort by severity rank, critical first; ties keep table order"""
    return sorted(alerts, key=lambda a: a.severity.rank)


def stamp_acknowledged(alerts: List[Alert], acknowledged: AbstractSet[str]) -> List[Alert]:
    """Return copies of alerts with ``acknowledged`` set from a rule-id set"""
    stamped = []
    for alert in alerts:
        flag = alert.rule_id in acknowledged
        if flag != alert.acknowledged:
            alert = replace(alert, acknowledged=flag)
        stamped.append(alert)
    return stamped


class RuleEvaluator:
    """Contraindication and interaction rule evaluation over a catalog snapshot"""

    def __init__(self, snapshot: CatalogSnapshot):
        self.snapshot = snapshot

    def evaluate(
        self,
        matched: MatchResult,
        conditions: InferredConditions,
        acknowledged: AbstractSet[str] = frozenset()
    ) -> List[Alert]:
        """
        Evaluate every rule against the matched substances and inferred conditions.

        Args:
            matched: substances resolved from the care plan
            conditions: conditions inferred for the individual
            acknowledged: rule ids already acknowledged for this individual

        Returns:
            Alerts sorted critical, warning, info
        """
        substance_ids = matched.id_set
        if not substance_ids:
            return []

        alerts: List[Alert] = []

        # Substance x condition
        if conditions.condition_ids:
            for rule in self.snapshot.contraindication_rules:
                if rule.substance_id in substance_ids and rule.condition_id in conditions.condition_ids:
                    alerts.append(self._condition_alert(rule, conditions, rule.id in acknowledged))

        # Substance x substance, both members must be present
        if len(substance_ids) > 1:
            for rule in self.snapshot.interaction_rules:
                if rule.substance_a_id in substance_ids and rule.substance_b_id in substance_ids:
                    alerts.append(self._interaction_alert(rule, rule.id in acknowledged))

        return sort_alerts(alerts)

    def _condition_alert(
        self,
        rule: ContraindicationRule,
        conditions: InferredConditions,
        acknowledged: bool
    ) -> Alert:
        substance = self.snapshot.substance(rule.substance_id)
        condition = self.snapshot.condition(rule.condition_id)
        counterpart = conditions.names.get(rule.condition_id) or (condition.name if condition else "")
        return Alert(
            id=f"rule-{rule.id}",
            rule_id=rule.id,
            rule_kind=RuleKind.CONDITION,
            severity=rule.severity,
            subject_name=substance.canonical_name if substance else "",
            counterpart_name=counterpart,
            message_text=rule.message_text,
            recommendation_text=rule.recommendation_text,
            source_citation=rule.source_citation,
            acknowledged=acknowledged,
        )

    def _interaction_alert(self, rule: SubstanceInteractionRule, acknowledged: bool) -> Alert:
        substance_a = self.snapshot.substance(rule.substance_a_id)
        substance_b = self.snapshot.substance(rule.substance_b_id)
        return Alert(
            id=f"interaction-{rule.id}",
            rule_id=rule.id,
            rule_kind=RuleKind.INTERACTION,
            severity=rule.severity,
            subject_name=substance_a.canonical_name if substance_a else "",
            counterpart_name=substance_b.canonical_name if substance_b else "",
            message_text=rule.message_text,
            recommendation_text=rule.recommendation_text,
            source_citation=rule.source_citation,
            acknowledged=acknowledged,
        )


def summarize(alerts: List[Alert]) -> Dict[str, Any]:
    """Get summary of alerts for banners"""
    summary = {
        "total": len(alerts),
        "by_severity": {s.value: 0 for s in Severity},
        "unacknowledged": SeverityCounts.unacknowledged(alerts).to_dict(),
        "requires_validation": False,
    }

    for alert in alerts:
        summary["by_severity"][alert.severity.value] += 1
        if alert.severity == Severity.CRITICAL and not alert.acknowledged:
            summary["requires_validation"] = True

    return summary
