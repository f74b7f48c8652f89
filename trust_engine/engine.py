"""
Engine assembly.

One TrustEngine is constructed per process (or per test) and handed to
request handlers; there is no module-level shared state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from .alerts import AlertSink
from .anomaly import AnomalyDetector
from .config import SecurityConfig, get_config
from .crypto import CryptoManager
from .delivery import EmailSender, LogSMSGateway, SMSGateway, SMTPEmailSender
from .rate_limiter import TwoFactorRateLimiter
from .session import SessionTracker
from .storage import EventStore, InMemoryEventStore, SQLAlchemyEventStore, create_db_engine
from .two_factor import TwoFactorService
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class TrustEngine:
    config: SecurityConfig
    rate_limiter: TwoFactorRateLimiter
    detector: AnomalyDetector
    sessions: SessionTracker
    two_factor: TwoFactorService

    def sweep(self) -> Dict[str, int]:
        """
        Evict stale state from every store.

        Note: Run periodically as maintenance task
        """
        swept = {
            'rate_limits': self.rate_limiter.sweep_expired(),
            'sessions': self.sessions.cleanup_stale_sessions(),
            'challenges': self.two_factor.sweep_expired(),
            'events': self.detector.purge_resolved(),
        }
        logger.info(f"Maintenance sweep: {swept}")
        return swept


def build_engine(config: Optional[SecurityConfig] = None,
                 event_store: Optional[EventStore] = None,
                 alert_sink: Optional[AlertSink] = None,
                 sms_gateway: Optional[SMSGateway] = None,
                 email_sender: Optional[EmailSender] = None,
                 use_database: bool = False,
                 clock: Callable[[], datetime] = utcnow) -> TrustEngine:
    """
    Wire the components together.

    Args:
        config: Configuration (defaults to get_config())
        event_store: Explicit event store; overrides use_database
        alert_sink: Consumer of high/critical events (logs by default)
        sms_gateway: SMS provider (logs by default)
        email_sender: E-mail transport (SMTP by default)
        use_database: Persist security events at config.DATABASE_URL
        clock: Source of the current UTC time
    """
    config = config or get_config()

    if event_store is None:
        if use_database:
            event_store = SQLAlchemyEventStore(create_db_engine(config.DATABASE_URL), clock)
        else:
            event_store = InMemoryEventStore(clock)

    rate_limiter = TwoFactorRateLimiter(config, clock)
    detector = AnomalyDetector(event_store, alert_sink, config, clock)
    sessions = SessionTracker(detector, config, clock)
    two_factor = TwoFactorService(
        rate_limiter,
        detector,
        CryptoManager.from_config(config),
        sms_gateway or LogSMSGateway(),
        email_sender or SMTPEmailSender(config),
        config,
        clock,
    )

    return TrustEngine(config, rate_limiter, detector, sessions, two_factor)
