"""
Pytest configuration and shared fixtures.

This module provides common test fixtures for:
- A controllable clock shared by every component
- Recording delivery channels
- Isolated engine instances
"""
from datetime import datetime, timedelta, timezone

import pytest

from trust_engine.alerts import CallbackAlertSink
from trust_engine.config import TestingConfig
from trust_engine.delivery import EmailSender, SMSGateway
from trust_engine.engine import build_engine
from trust_engine.models import Location, UserSession


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSMSGateway(SMSGateway):
    def __init__(self):
        self.sent = []

    def send(self, phone_number, message):
        self.sent.append((phone_number, message))

    @property
    def last_code(self):
        return self.sent[-1][1][-6:]


class RecordingEmailSender(EmailSender):
    def __init__(self):
        self.sent = []

    def send(self, to_email, subject, body_html):
        self.sent.append((to_email, subject, body_html))


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return TestingConfig()


@pytest.fixture
def sms_gateway():
    return RecordingSMSGateway()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def alerts():
    """Collects every event dispatched to the alert sink"""
    received = []
    return received, CallbackAlertSink(received.append)


@pytest.fixture
def engine(config, clock, sms_gateway, email_sender, alerts):
    _, sink = alerts
    return build_engine(
        config,
        alert_sink=sink,
        sms_gateway=sms_gateway,
        email_sender=email_sender,
        clock=clock,
    )


@pytest.fixture
def make_session(clock):
    """Factory for sessions created at the clock's current time"""
    counter = {'n': 0}

    def _make(identity='u1', city='Mumbai', latitude=None, longitude=None,
              device_type='desktop', **overrides):
        counter['n'] += 1
        fields = dict(
            session_id=f"sess_{counter['n']}",
            identity=identity,
            device_id=f"device_{counter['n']}",
            device_type=device_type,
            browser='Firefox',
            ip_address='203.0.113.7',
            location=Location('India', city, latitude, longitude),
            created_at=clock(),
            last_activity=clock(),
            is_active=True,
        )
        fields.update(overrides)
        return UserSession(**fields)

    return _make
