"""
Contraindication Alert Engine - Data Models
Reference catalog entities, acknowledgements and derived alerts
"""
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, FrozenSet, Tuple, Mapping
from enum import Enum
from datetime import datetime, timezone

from contraindication_engine.config.settings import SEVERITY_RANK


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self.value]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Parse a severity from a table cell, tolerating case and whitespace"""
        if isinstance(value, Severity):
            return value
        return cls(str(value).strip().lower())


class RuleKind(str, Enum):
    CONDITION = "condition"
    INTERACTION = "interaction"


class SubstanceType(str, Enum):
    PLANT = "plante"
    ESSENTIAL_OIL = "huile_essentielle"
    SUPPLEMENT = "complement"
    OTHER = "autre"


class EvaluationStatus(str, Enum):
    PENDING = "pending"      # not evaluated yet
    COMPLETE = "complete"    # every input was available
    DEGRADED = "degraded"    # partial alerts, some input missing
    FAILED = "failed"        # could not evaluate


def _split_aliases(value: Any) -> FrozenSet[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        parts = value.split("|")
    else:
        parts = list(value)
    return frozenset(str(p).strip() for p in parts if p and str(p).strip())


def _text(row: Mapping[str, Any], key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value).strip()


@dataclass(frozen=True)
class Substance:
    """Herb, supplement or essential oil that can appear in a care plan"""
    id: str
    canonical_name: str
    aliases: FrozenSet[str] = frozenset()
    substance_type: SubstanceType = SubstanceType.OTHER

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Substance":
        """Parse a substance from a reference table row"""
        try:
            substance_type = SubstanceType(_text(row, "type") or "autre")
        except ValueError:
            substance_type = SubstanceType.OTHER
        return cls(
            id=_text(row, "id"),
            canonical_name=_text(row, "name"),
            aliases=_split_aliases(row.get("aliases")),
            substance_type=substance_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.canonical_name,
            "aliases": sorted(self.aliases),
            "type": self.substance_type.value,
        }


@dataclass(frozen=True)
class Condition:
    """Health state, age bracket or concurrent medication category"""
    id: str
    name: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Condition":
        return cls(id=_text(row, "id"), name=_text(row, "name"))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class ContraindicationRule:
    """Substance x condition rule"""
    id: str
    substance_id: str
    condition_id: str
    severity: Severity
    message_text: str = ""
    recommendation_text: str = ""
    source_citation: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ContraindicationRule":
        return cls(
            id=_text(row, "id"),
            substance_id=_text(row, "substance_id"),
            condition_id=_text(row, "condition_id"),
            severity=Severity.parse(row.get("severity")),
            message_text=_text(row, "message"),
            recommendation_text=_text(row, "recommendation"),
            source_citation=_text(row, "source"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "substance_id": self.substance_id,
            "condition_id": self.condition_id,
            "severity": self.severity.value,
            "message": self.message_text,
            "recommendation": self.recommendation_text,
            "source": self.source_citation,
        }


@dataclass(frozen=True)
class SubstanceInteractionRule:
    """Substance x substance rule, fires only when both members are present"""
    id: str
    substance_a_id: str
    substance_b_id: str
    severity: Severity
    message_text: str = ""
    recommendation_text: str = ""
    source_citation: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubstanceInteractionRule":
        return cls(
            id=_text(row, "id"),
            substance_a_id=_text(row, "substance_a_id"),
            substance_b_id=_text(row, "substance_b_id"),
            severity=Severity.parse(row.get("severity")),
            message_text=_text(row, "message"),
            recommendation_text=_text(row, "recommendation"),
            source_citation=_text(row, "source"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "substance_a_id": self.substance_a_id,
            "substance_b_id": self.substance_b_id,
            "severity": self.severity.value,
            "message": self.message_text,
            "recommendation": self.recommendation_text,
            "source": self.source_citation,
        }


@dataclass(frozen=True)
class AcknowledgementRecord:
    """Durable record that a practitioner accepted responsibility for an alert"""
    practitioner_id: str
    individual_id: str
    rule_id: str
    rule_kind: RuleKind
    severity: Severity
    acknowledged_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practitioner_id": self.practitioner_id,
            "individual_id": self.individual_id,
            "rule_id": self.rule_id,
            "rule_kind": self.rule_kind.value,
            "severity": self.severity.value,
            "acknowledged_at": self.acknowledged_at.isoformat(),
        }


@dataclass(frozen=True)
class Alert:
    """Computed warning that a rule currently holds for an individual"""
    id: str
    rule_id: str
    rule_kind: RuleKind
    severity: Severity
    subject_name: str
    counterpart_name: str
    message_text: str = ""
    recommendation_text: str = ""
    source_citation: str = ""
    acknowledged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_kind": self.rule_kind.value,
            "severity": self.severity.value,
            "subject_name": self.subject_name,
            "counterpart_name": self.counterpart_name,
            "message": self.message_text,
            "recommendation": self.recommendation_text,
            "source": self.source_citation,
            "acknowledged": self.acknowledged,
        }


@dataclass
class IntakeRecord:
    """Flattened intake answers and demographics for one individual"""
    individual_id: str
    answers: Dict[str, Any] = field(default_factory=dict)
    age: Optional[int] = None


@dataclass
class InferredConditions:
    condition_ids: FrozenSet[str] = frozenset()
    names: Dict[str, str] = field(default_factory=dict)

    def __contains__(self, condition_id: str) -> bool:
        return condition_id in self.condition_ids

    def __len__(self) -> int:
        return len(self.condition_ids)


@dataclass
class MatchResult:
    substance_ids: Tuple[str, ...] = ()
    substances: Dict[str, Substance] = field(default_factory=dict)

    @property
    def id_set(self) -> FrozenSet[str]:
        return frozenset(self.substance_ids)

    def __len__(self) -> int:
        return len(self.substance_ids)


@dataclass
class SeverityCounts:
    critical: int = 0
    warning: int = 0
    info: int = 0

    @classmethod
    def unacknowledged(cls, alerts: List[Alert]) -> "SeverityCounts":
        counts = cls()
        for alert in alerts:
            if alert.acknowledged:
                continue
            if alert.severity == Severity.CRITICAL:
                counts.critical += 1
            elif alert.severity == Severity.WARNING:
                counts.warning += 1
            elif alert.severity == Severity.INFO:
                counts.info += 1
        return counts

    @property
    def total(self) -> int:
        return self.critical + self.warning + self.info

    def to_dict(self) -> Dict[str, int]:
        return {"critical": self.critical, "warning": self.warning, "info": self.info}


@dataclass
class AlertReport:
    """Published alert list plus the status that qualifies it"""
    individual_id: str
    alerts: List[Alert] = field(default_factory=list)
    status: EvaluationStatus = EvaluationStatus.PENDING
    issues: List[str] = field(default_factory=list)
    token: int = 0
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def unacknowledged_counts(self) -> SeverityCounts:
        return SeverityCounts.unacknowledged(self.alerts)

    @property
    def requires_validation(self) -> bool:
        """Unacknowledged critical alerts, or no evaluation at all, block plan sharing"""
        if self.status in (EvaluationStatus.PENDING, EvaluationStatus.FAILED):
            return True
        return self.unacknowledged_counts.critical > 0

    def find(self, rule_id: str) -> Optional[Alert]:
        for alert in self.alerts:
            if alert.rule_id == rule_id:
                return alert
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "individual_id": self.individual_id,
            "status": self.status.value,
            "issues": list(self.issues),
            "alerts": [a.to_dict() for a in self.alerts],
            "unacknowledged_counts": self.unacknowledged_counts.to_dict(),
            "requires_validation": self.requires_validation,
            "evaluated_at": self.evaluated_at.isoformat(),
        }
