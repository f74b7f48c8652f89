"""
Session Tracking Module

Records the session lifecycle per identity:
- created at login, refreshed on each activity ping
- active while flagged active and seen within the idle timeout
- terminated explicitly or by inactivity (history is retained)

Every newly tracked session is evaluated by the anomaly detector.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .anomaly import AnomalyDetector
from .config import SecurityConfig
from .models import Location, SessionStats, UserSession
from .utils import Validator, utcnow

logger = logging.getLogger(__name__)


class SessionTracker:
    """
    Owns every tracked session, grouped by identity.

    Mutations happen under one lock; the anomaly checks run on
    snapshots after the lock is released.
    """

    def __init__(self, detector: AnomalyDetector,
                 config: Optional[SecurityConfig] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.detector = detector
        self.config = config or SecurityConfig()
        self._clock = clock
        self._sessions: Dict[str, List[UserSession]] = defaultdict(list)
        self._lock = threading.Lock()

    # ==================== LIFECYCLE ====================

    def track_session(self, session: UserSession) -> UserSession:
        """
        Track a new session and check it for suspicious patterns.

        Runs the multiple-sessions check and the impossible-travel check
        before returning.
        """
        now = self._clock()
        with self._lock:
            self._sessions[session.identity].append(session)
            active = self._active_sessions_locked(session.identity, now)
            recent = self._recent_sessions_locked(
                session.identity, now, self.config.IMPOSSIBLE_TRAVEL_WINDOW
            )

        logger.info(f"Session {session.session_id} tracked for user {session.identity}")

        self.detector.check_multiple_sessions(session.identity, active)
        self.detector.check_impossible_travel(session, recent)
        return session

    def start_session(self, identity: str, device_info: Dict, ip_address: str,
                      location: Dict) -> UserSession:
        """
        Build a session from request metadata and track it.

        Args:
            identity: User the session belongs to
            device_info: device_id, device_type, browser (all optional)
            ip_address: Client IP address
            location: Resolved geolocation: country, city, latitude, longitude
        """
        now = self._clock()
        session = UserSession(
            session_id=f"sess_{Validator.generate_token(16)}",
            identity=identity,
            device_id=device_info.get('device_id') or 'unknown',
            device_type=device_info.get('device_type') or 'desktop',
            browser=device_info.get('browser') or 'unknown',
            ip_address=ip_address,
            location=Location(
                country=location.get('country') or 'Unknown',
                city=location.get('city') or 'Unknown',
                latitude=location.get('latitude'),
                longitude=location.get('longitude'),
            ),
            created_at=now,
            last_activity=now,
            is_active=True,
        )
        return self.track_session(session)

    def touch_session(self, session_id: str) -> bool:
        """
        Refresh last activity of a session.

        Returns:
            False if the session is unknown, terminated or already idle
        """
        now = self._clock()
        with self._lock:
            session = self._find_locked(session_id)
            if session is None or not self._is_active(session, now):
                return False
            session.last_activity = now
        return True

    def terminate_session(self, session_id: str) -> bool:
        """Mark a session inactive; history is kept"""
        with self._lock:
            session = self._find_locked(session_id)
            if session is None:
                return False
            session.is_active = False
            identity = session.identity

        logger.info(f"Session {session_id} terminated for user {identity}")
        return True

    def terminate_all_sessions(self, identity: str) -> int:
        """
        Terminate every session of a user.

        Use Cases:
        - "Logout all devices" feature
        - Security incident response

        Returns:
            Number of sessions that were still flagged active
        """
        with self._lock:
            terminated = 0
            for session in self._sessions.get(identity, []):
                if session.is_active:
                    session.is_active = False
                    terminated += 1

        logger.info(f"All sessions terminated for user {identity} ({terminated} active)")
        return terminated

    def cleanup_stale_sessions(self, retention: Optional[timedelta] = None) -> int:
        """
        Drop sessions whose last activity is older than retention and
        that are no longer active, whether terminated or idled out.

        Returns:
            Number of sessions removed

        Note: Run periodically as maintenance task
        """
        now = self._clock()
        cutoff = now - (retention or self.config.SESSION_RETENTION)
        removed = 0
        with self._lock:
            for identity in list(self._sessions):
                kept = [
                    s for s in self._sessions[identity]
                    if self._is_active(s, now) or s.last_activity >= cutoff
                ]
                removed += len(self._sessions[identity]) - len(kept)
                if kept:
                    self._sessions[identity] = kept
                else:
                    del self._sessions[identity]

        if removed:
            logger.info(f"Cleaned up {removed} stale sessions")
        return removed

    # ==================== QUERIES ====================

    def get_session(self, session_id: str) -> Optional[UserSession]:
        with self._lock:
            return self._find_locked(session_id)

    def get_active_sessions(self, identity: str) -> List[UserSession]:
        """Sessions flagged active and seen within the idle timeout"""
        with self._lock:
            return self._active_sessions_locked(identity, self._clock())

    def get_recent_sessions(self, identity: str, minutes: int) -> List[UserSession]:
        """Sessions created within the last minutes"""
        with self._lock:
            return self._recent_sessions_locked(identity, self._clock(), timedelta(minutes=minutes))

    def get_session_stats(self, identity: str) -> SessionStats:
        now = self._clock()
        with self._lock:
            sessions = list(self._sessions.get(identity, []))
            active = self._active_sessions_locked(identity, now)

        return SessionStats(
            total=len(sessions),
            active=len(active),
            devices=list(dict.fromkeys(s.device_type.value for s in sessions)),
            locations=list(dict.fromkeys(s.location.city for s in sessions)),
        )

    # ==================== INTERNALS ====================

    def _is_active(self, session: UserSession, now: datetime) -> bool:
        return session.is_active and session.last_activity > now - self.config.SESSION_IDLE_TIMEOUT

    def _active_sessions_locked(self, identity: str, now: datetime) -> List[UserSession]:
        return [s for s in self._sessions.get(identity, []) if self._is_active(s, now)]

    def _recent_sessions_locked(self, identity: str, now: datetime,
                                window: timedelta) -> List[UserSession]:
        cutoff = now - window
        return [s for s in self._sessions.get(identity, []) if s.created_at > cutoff]

    def _find_locked(self, session_id: str) -> Optional[UserSession]:
        for sessions in self._sessions.values():
            for session in sessions:
                if session.session_id == session_id:
                    return session
        return None
