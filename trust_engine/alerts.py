"""
Security alert dispatch.

High and critical events are handed to an alert sink; the sink (an
external alerting/lockout subsystem) decides what the recommended
action means for the user.
"""

import logging
from typing import Callable, List

from .models import SecurityEvent

logger = logging.getLogger(__name__)


class AlertSink:
    """Interface for the external consumer of security alerts"""

    def send_security_alert(self, event: SecurityEvent) -> None:
        raise NotImplementedError


class LoggingAlertSink(AlertSink):
    """Default sink: writes the alert to the security log"""

    def send_security_alert(self, event: SecurityEvent) -> None:
        logger.critical(
            f"SECURITY ALERT: {event.activity_type.value} for user {event.identity} "
            f"(severity={event.severity.value}, action={event.action.value}, id={event.id})"
        )


class CallbackAlertSink(AlertSink):
    """Fans alerts out to registered handlers (notification, lockout, ...)"""

    def __init__(self, *handlers: Callable[[SecurityEvent], None]):
        self.handlers: List[Callable[[SecurityEvent], None]] = list(handlers)

    def register(self, handler: Callable[[SecurityEvent], None]) -> None:
        self.handlers.append(handler)

    def send_security_alert(self, event: SecurityEvent) -> None:
        for handler in self.handlers:
            handler(event)
