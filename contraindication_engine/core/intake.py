"""
Contraindication Alert Engine - Health Intake Sources
"""
from typing import Dict, Optional

from contraindication_engine.core.models import IntakeRecord


class IntakeSource:
    """Read access to an individual's intake answers and demographics"""

    async def fetch(self, individual_id: str) -> IntakeRecord:
        raise NotImplementedError


class InMemoryIntakeSource(IntakeSource):
    """Intake records held in a dict; an unknown individual has an empty intake"""

    def __init__(self, records: Optional[Dict[str, IntakeRecord]] = None):
        self.records: Dict[str, IntakeRecord] = dict(records or {})

    def put(self, record: IntakeRecord) -> None:
        self.records[record.individual_id] = record

    async def fetch(self, individual_id: str) -> IntakeRecord:
        return self.records.get(individual_id) or IntakeRecord(individual_id=individual_id)
