"""
Tests for the database-backed event store.
"""
from datetime import timedelta

import pytest

from trust_engine.anomaly import AnomalyDetector
from trust_engine.models import ActivityType, RecommendedAction, SecurityEvent, Severity
from trust_engine.storage import SQLAlchemyEventStore, create_db_engine


@pytest.fixture
def store(clock):
    return SQLAlchemyEventStore(create_db_engine('sqlite://'), clock)


def make_event(clock, identity='u1', **overrides):
    fields = dict(
        identity=identity,
        activity_type=ActivityType.IMPOSSIBLE_TRAVEL,
        severity=Severity.HIGH,
        action=RecommendedAction.VERIFY,
        details={'from_location': 'Mumbai', 'to_location': 'Delhi', 'distance_km': 1153},
        timestamp=clock(),
    )
    fields.update(overrides)
    return SecurityEvent(**fields)


def test_append_and_read_back(store, clock):
    event = make_event(clock)
    store.append(event)

    assert store.get(event.id) == event
    assert store.list_for_identity('u1') == [event]
    assert store.list_for_identity('u2') == []


def test_resolve_by_id(store, clock):
    first = make_event(clock)
    second = make_event(clock, identity='u2')
    store.append(first)
    store.append(second)

    assert store.resolve(first.id)
    assert not store.resolve('act_missing')
    assert store.get(first.id).resolved
    assert [e.id for e in store.list_unresolved()] == [second.id]


def test_purge_resolved(store, clock):
    old = make_event(clock)
    store.append(old)
    store.resolve(old.id)
    clock.advance(days=10)
    fresh = make_event(clock)
    store.append(fresh)
    store.resolve(fresh.id)

    assert store.purge_resolved(timedelta(days=5)) == 1
    assert store.get(old.id) is None
    assert store.get(fresh.id) is not None


def test_detector_on_database_store(store, clock):
    detector = AnomalyDetector(event_store=store, clock=clock)
    event = detector.check_rapid_logins('u1', 9, 15)

    assert detector.get_suspicious_activities('u1') == [event]
    assert detector.resolve_activity(event.id)
    assert detector.get_unresolved_activities() == []
