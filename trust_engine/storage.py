"""
Security event storage.

The event log is append-mostly: the anomaly detector appends, the
alerting consumer reads, and resolution is the only mutation, keyed
by event id.
"""

import dataclasses
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import Boolean, Column, DateTime, JSON, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import ActivityType, RecommendedAction, SecurityEvent, Severity
from .utils import as_utc, utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


class EventStore:
    """Interface shared by the in-memory and database-backed stores"""

    def append(self, event: SecurityEvent) -> None:
        raise NotImplementedError

    def get(self, event_id: str) -> Optional[SecurityEvent]:
        raise NotImplementedError

    def list_for_identity(self, identity: str) -> List[SecurityEvent]:
        raise NotImplementedError

    def list_unresolved(self) -> List[SecurityEvent]:
        raise NotImplementedError

    def resolve(self, event_id: str) -> bool:
        raise NotImplementedError

    def purge_resolved(self, older_than: timedelta) -> int:
        raise NotImplementedError


class InMemoryEventStore(EventStore):
    """Process-local event log guarded by a single lock"""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._events: List[SecurityEvent] = []
        self._lock = threading.Lock()
        self._clock = clock

    def append(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)

    def get(self, event_id: str) -> Optional[SecurityEvent]:
        with self._lock:
            return next((e for e in self._events if e.id == event_id), None)

    def list_for_identity(self, identity: str) -> List[SecurityEvent]:
        with self._lock:
            return [e for e in self._events if e.identity == identity]

    def list_unresolved(self) -> List[SecurityEvent]:
        with self._lock:
            return [e for e in self._events if not e.resolved]

    def resolve(self, event_id: str) -> bool:
        with self._lock:
            for position, event in enumerate(self._events):
                if event.id == event_id:
                    self._events[position] = dataclasses.replace(event, resolved=True)
                    return True
        return False

    def purge_resolved(self, older_than: timedelta) -> int:
        cutoff = self._clock() - older_than
        with self._lock:
            kept = [e for e in self._events if not (e.resolved and e.timestamp < cutoff)]
            removed = len(self._events) - len(kept)
            self._events = kept
        return removed


# ==================== DATABASE BACKED ====================

class SecurityEventRow(Base):
    __tablename__ = 'security_events'

    id = Column(String(40), primary_key=True)
    identity = Column(String(255), nullable=False, index=True)
    activity_type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    action = Column(String(16), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    resolved = Column(Boolean, default=False, nullable=False, index=True)


def _to_event(row: SecurityEventRow) -> SecurityEvent:
    return SecurityEvent(
        id=row.id,
        identity=row.identity,
        activity_type=ActivityType(row.activity_type),
        severity=Severity(row.severity),
        action=RecommendedAction(row.action),
        details=dict(row.details or {}),
        timestamp=as_utc(row.timestamp),  # SQLite drops tzinfo on the way back
        resolved=row.resolved,
    )


def create_db_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite is shared across threads"""
    if database_url in ('sqlite://', 'sqlite:///:memory:'):
        return create_engine(
            database_url,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    return create_engine(database_url)


class SQLAlchemyEventStore(EventStore):
    """Event log persisted in the security_events table"""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        Base.metadata.create_all(engine)
        self.SessionLocal = sessionmaker(bind=engine)
        self._clock = clock

    def append(self, event: SecurityEvent) -> None:
        with self.SessionLocal() as db:
            db.add(SecurityEventRow(
                id=event.id,
                identity=event.identity,
                activity_type=event.activity_type.value,
                severity=event.severity.value,
                action=event.action.value,
                timestamp=event.timestamp,
                details=dict(event.details),
                resolved=event.resolved,
            ))
            db.commit()

    def get(self, event_id: str) -> Optional[SecurityEvent]:
        with self.SessionLocal() as db:
            row = db.get(SecurityEventRow, event_id)
            return _to_event(row) if row else None

    def list_for_identity(self, identity: str) -> List[SecurityEvent]:
        with self.SessionLocal() as db:
            rows = db.query(SecurityEventRow).filter(
                SecurityEventRow.identity == identity
            ).order_by(SecurityEventRow.timestamp).all()
            return [_to_event(row) for row in rows]

    def list_unresolved(self) -> List[SecurityEvent]:
        with self.SessionLocal() as db:
            rows = db.query(SecurityEventRow).filter(
                SecurityEventRow.resolved == False  # noqa: E712
            ).order_by(SecurityEventRow.timestamp).all()
            return [_to_event(row) for row in rows]

    def resolve(self, event_id: str) -> bool:
        with self.SessionLocal() as db:
            updated = db.query(SecurityEventRow).filter(
                SecurityEventRow.id == event_id
            ).update({SecurityEventRow.resolved: True})
            db.commit()
        return updated > 0

    def purge_resolved(self, older_than: timedelta) -> int:
        cutoff = self._clock() - older_than
        with self.SessionLocal() as db:
            removed = db.query(SecurityEventRow).filter(
                SecurityEventRow.resolved == True,  # noqa: E712
                SecurityEventRow.timestamp < cutoff,
            ).delete()
            db.commit()
        if removed:
            logger.info(f"Purged {removed} resolved security events")
        return removed
