"""
Contraindication Alert Engine - Acknowledgement Ledger
Durable, idempotent record of practitioner acknowledgements
"""
import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple, Generator

from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from contraindication_engine.config.settings import LEDGER_DATABASE_URL
from contraindication_engine.core.exceptions import LedgerReadFailed, LedgerWriteFailed
from contraindication_engine.core.models import AcknowledgementRecord, RuleKind, Severity
from contraindication_engine.core.retry import call_with_retry

logger = logging.getLogger(__name__)

Base = declarative_base()


class AcknowledgementRow(Base):
    """Acknowledgement log table, one row per (individual, rule)"""

    __tablename__ = 'contraindication_acknowledgements'
    __table_args__ = (
        UniqueConstraint('individual_id', 'rule_id', name='uq_ack_individual_rule'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    practitioner_id = Column(String(64), nullable=False)
    individual_id = Column(String(64), nullable=False, index=True)
    rule_id = Column(String(64), nullable=False)
    rule_kind = Column(String(16), nullable=False)
    severity = Column(String(16), nullable=False)
    acknowledged_at = Column(DateTime(timezone=True), nullable=False)

    def to_record(self) -> AcknowledgementRecord:
        acknowledged_at = self.acknowledged_at
        if acknowledged_at.tzinfo is None:
            acknowledged_at = acknowledged_at.replace(tzinfo=timezone.utc)
        return AcknowledgementRecord(
            practitioner_id=self.practitioner_id,
            individual_id=self.individual_id,
            rule_id=self.rule_id,
            rule_kind=RuleKind(self.rule_kind),
            severity=Severity(self.severity),
            acknowledged_at=acknowledged_at,
        )


class LedgerBackend:
    """Storage for acknowledgement records; calls are blocking"""

    def upsert(self, record: AcknowledgementRecord) -> AcknowledgementRecord:
        """Store the record unless one exists for (individual, rule); return the stored one"""
        raise NotImplementedError

    def acknowledged_rule_ids(self, individual_id: str) -> Set[str]:
        raise NotImplementedError

    def records_for(self, individual_id: str) -> List[AcknowledgementRecord]:
        raise NotImplementedError


class InMemoryLedgerBackend(LedgerBackend):
    """Process-local ledger for tests and demos"""

    def __init__(self):
        self._records: Dict[Tuple[str, str], AcknowledgementRecord] = {}

    def upsert(self, record: AcknowledgementRecord) -> AcknowledgementRecord:
        key = (record.individual_id, record.rule_id)
        return self._records.setdefault(key, record)

    def acknowledged_rule_ids(self, individual_id: str) -> Set[str]:
        return {rule_id for (ind, rule_id) in self._records if ind == individual_id}

    def records_for(self, individual_id: str) -> List[AcknowledgementRecord]:
        return [r for (ind, _), r in self._records.items() if ind == individual_id]


class SqlLedgerBackend(LedgerBackend):
    """SQLAlchemy ledger, SQLite (dev) or PostgreSQL (production)"""

    def __init__(self, database_url: str = LEDGER_DATABASE_URL):
        # Handle PostgreSQL URL format from some cloud providers
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        if database_url.startswith("sqlite"):
            self.engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(database_url, pool_size=5, max_overflow=10, pool_pre_ping=True)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Ledger database ready: {database_url.split('@')[-1]}")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _find(self, session: Session, individual_id: str, rule_id: str) -> Optional[AcknowledgementRow]:
        return session.query(AcknowledgementRow).filter_by(
            individual_id=individual_id, rule_id=rule_id
        ).first()

    def upsert(self, record: AcknowledgementRecord) -> AcknowledgementRecord:
        try:
            with self.session_scope() as session:
                existing = self._find(session, record.individual_id, record.rule_id)
                if existing is not None:
                    return existing.to_record()
                session.add(AcknowledgementRow(
                    practitioner_id=record.practitioner_id,
                    individual_id=record.individual_id,
                    rule_id=record.rule_id,
                    rule_kind=record.rule_kind.value,
                    severity=record.severity.value,
                    acknowledged_at=record.acknowledged_at,
                ))
            return record
        except IntegrityError:
            # Concurrent insert won the unique constraint
            with self.session_scope() as session:
                return self._find(session, record.individual_id, record.rule_id).to_record()

    def acknowledged_rule_ids(self, individual_id: str) -> Set[str]:
        with self.session_scope() as session:
            rows = session.query(AcknowledgementRow.rule_id).filter_by(individual_id=individual_id).all()
            return {row.rule_id for row in rows}

    def records_for(self, individual_id: str) -> List[AcknowledgementRecord]:
        with self.session_scope() as session:
            rows = session.query(AcknowledgementRow).filter_by(
                individual_id=individual_id
            ).order_by(AcknowledgementRow.acknowledged_at).all()
            return [row.to_record() for row in rows]

    def close(self):
        self.engine.dispose()


class AcknowledgementLedger:
    """
    Async facade over a ledger backend.

    Writes and reads are retried with bounded backoff; persistent failure
    surfaces as LedgerWriteFailed / LedgerReadFailed so callers never treat
    an unconfirmed acknowledgement as done.
    """

    def __init__(self, backend: LedgerBackend, **retry_options):
        self.backend = backend
        self.retry_options = retry_options

    async def acknowledge(
        self,
        individual_id: str,
        rule_id: str,
        rule_kind: RuleKind,
        severity: Severity,
        actor_id: str
    ) -> AcknowledgementRecord:
        record = AcknowledgementRecord(
            practitioner_id=actor_id,
            individual_id=individual_id,
            rule_id=rule_id,
            rule_kind=RuleKind(rule_kind),
            severity=Severity.parse(severity),
            acknowledged_at=datetime.now(timezone.utc),
        )
        try:
            stored = await call_with_retry(
                lambda: asyncio.to_thread(self.backend.upsert, record),
                label=f"Ledger write {individual_id}/{rule_id}",
                **self.retry_options
            )
        except Exception as e:
            raise LedgerWriteFailed(
                f"Acknowledgement not persisted: {e}", individual_id=individual_id, rule_id=rule_id
            ) from e

        logger.info(f"Rule {rule_id} acknowledged for {individual_id} by {stored.practitioner_id}")
        return stored

    async def load_acknowledged(self, individual_id: str) -> Set[str]:
        try:
            return await call_with_retry(
                lambda: asyncio.to_thread(self.backend.acknowledged_rule_ids, individual_id),
                label=f"Ledger read {individual_id}",
                **self.retry_options
            )
        except Exception as e:
            raise LedgerReadFailed(f"Cannot read acknowledgements: {e}", individual_id=individual_id) from e

    async def records(self, individual_id: str) -> List[AcknowledgementRecord]:
        try:
            return await call_with_retry(
                lambda: asyncio.to_thread(self.backend.records_for, individual_id),
                label=f"Ledger history {individual_id}",
                **self.retry_options
            )
        except Exception as e:
            raise LedgerReadFailed(f"Cannot read acknowledgements: {e}", individual_id=individual_id) from e
