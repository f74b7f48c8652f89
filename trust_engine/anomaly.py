"""
Anomaly Detection Module

Flags suspicious account activity from session and viewing data:
- Too many concurrently active sessions
- Impossible travel between two recent logins
- Viewing during unusual hours
- Rapid login / verification attempts

Every detection funnels through log_suspicious_activity, which appends
the event to the store and dispatches high/critical events to the
alert sink.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from .alerts import AlertSink, LoggingAlertSink
from .config import SecurityConfig
from .models import (
    ActivityType, RecommendedAction, SecurityEvent, Severity, UserSession, ViewingActivity,
)
from .storage import EventStore, InMemoryEventStore
from .utils import utcnow

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

ALERT_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two coordinates"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(d_lon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


class AnomalyDetector:
    """
    Evaluates new sessions and activity records against heuristics.

    The detector keeps no session state of its own; the session tracker
    hands it snapshots taken under its lock.
    """

    def __init__(self, event_store: Optional[EventStore] = None,
                 alert_sink: Optional[AlertSink] = None,
                 config: Optional[SecurityConfig] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.config = config or SecurityConfig()
        self.event_store = event_store or InMemoryEventStore(clock)
        self.alert_sink = alert_sink or LoggingAlertSink()
        self._clock = clock

    # ==================== SESSION CHECKS ====================

    def check_multiple_sessions(self, identity: str,
                                active_sessions: List[UserSession]) -> Optional[SecurityEvent]:
        """Flag more than MAX_CONCURRENT_SESSIONS active sessions"""
        if len(active_sessions) <= self.config.MAX_CONCURRENT_SESSIONS:
            return None

        return self._emit(
            identity,
            ActivityType.MULTIPLE_DEVICES,
            Severity.MEDIUM,
            RecommendedAction.ALERT,
            {
                'session_count': len(active_sessions),
                'devices': [s.device_type.value for s in active_sessions],
                'locations': [s.location.city for s in active_sessions],
            },
        )

    def check_impossible_travel(self, new_session: UserSession,
                                recent_sessions: Iterable[UserSession]) -> List[SecurityEvent]:
        """
        Compare the new session with every other recent session.

        One event is emitted per violating pair. Pairs where either
        side has no coordinates are skipped.
        """
        events = []
        if not new_session.location.has_coordinates:
            return events

        for session in recent_sessions:
            if session.session_id == new_session.session_id:
                continue
            if not session.location.has_coordinates:
                continue

            distance = haversine_distance(
                session.location.latitude,
                session.location.longitude,
                new_session.location.latitude,
                new_session.location.longitude,
            )
            minutes = abs((new_session.created_at - session.created_at).total_seconds()) / 60
            speed = self._travel_speed(distance, minutes)

            if speed > self.config.MAX_TRAVEL_SPEED_KMH:
                events.append(self._emit(
                    new_session.identity,
                    ActivityType.IMPOSSIBLE_TRAVEL,
                    Severity.HIGH,
                    RecommendedAction.VERIFY,
                    {
                        'from_location': session.location.city,
                        'to_location': new_session.location.city,
                        'from_session': session.session_id,
                        'to_session': new_session.session_id,
                        'distance_km': round(distance),
                        'time_diff_minutes': round(minutes),
                        'speed_kmh': round(speed) if math.isfinite(speed) else None,
                    },
                ))
        return events

    @staticmethod
    def _travel_speed(distance_km: float, minutes: float) -> float:
        if minutes == 0:
            # Simultaneous logins from two places
            return math.inf if distance_km > 0 else 0.0
        return distance_km / (minutes / 60)

    # ==================== ACTIVITY CHECKS ====================

    def check_unusual_hours(self, activity: ViewingActivity) -> Optional[SecurityEvent]:
        """Flag viewing that starts between 2 AM and 6 AM local time"""
        hour = activity.start_time.hour
        if not self.config.UNUSUAL_HOURS_START <= hour < self.config.UNUSUAL_HOURS_END:
            return None

        return self._emit(
            activity.identity,
            ActivityType.UNUSUAL_HOURS,
            Severity.LOW,
            RecommendedAction.NONE,
            {
                'time': activity.start_time.isoformat(),
                'content': activity.content_id,
            },
        )

    def check_rapid_logins(self, identity: str, attempts: int,
                           time_window: int) -> Optional[SecurityEvent]:
        """
        Flag more than RAPID_LOGIN_THRESHOLD attempts.

        Args:
            identity: Account the attempts were made against
            attempts: Number of attempts observed
            time_window: Window the attempts fell into, in minutes
        """
        if attempts <= self.config.RAPID_LOGIN_THRESHOLD:
            return None

        return self._emit(
            identity,
            ActivityType.RAPID_LOGINS,
            Severity.HIGH,
            RecommendedAction.LOCK,
            {
                'attempts': attempts,
                'time_window_minutes': time_window,
            },
        )

    def record_failed_2fa(self, identity: str, details: Dict[str, Any]) -> SecurityEvent:
        """A challenge was burned by repeated wrong codes"""
        return self._emit(
            identity,
            ActivityType.FAILED_2FA,
            Severity.MEDIUM,
            RecommendedAction.VERIFY,
            details,
        )

    # ==================== EVENT LOG ====================

    def _emit(self, identity: str, activity_type: ActivityType, severity: Severity,
              action: RecommendedAction, details: Dict[str, Any]) -> SecurityEvent:
        event = SecurityEvent(
            identity=identity,
            activity_type=activity_type,
            severity=severity,
            action=action,
            details=details,
            timestamp=self._clock(),
        )
        self.log_suspicious_activity(event)
        return event

    def log_suspicious_activity(self, event: SecurityEvent) -> None:
        """Append to the event store and alert on high/critical severity"""
        self.event_store.append(event)

        logger.warning(
            f"Suspicious activity detected: {event.activity_type.value} "
            f"user={event.identity} severity={event.severity.value} id={event.id}"
        )

        if event.severity in ALERT_SEVERITIES:
            self._send_security_alert(event)

    def _send_security_alert(self, event: SecurityEvent) -> None:
        try:
            self.alert_sink.send_security_alert(event)
        except Exception:
            logger.exception(f"Failed to dispatch security alert {event.id}")

    def get_suspicious_activities(self, identity: str) -> List[SecurityEvent]:
        return self.event_store.list_for_identity(identity)

    def get_unresolved_activities(self) -> List[SecurityEvent]:
        return self.event_store.list_unresolved()

    def resolve_activity(self, event_id: str) -> bool:
        resolved = self.event_store.resolve(event_id)
        if resolved:
            logger.info(f"Security event {event_id} resolved")
        return resolved

    def purge_resolved(self, older_than: Optional[timedelta] = None) -> int:
        return self.event_store.purge_resolved(older_than or self.config.SECURITY_EVENT_LOG_RETENTION)
