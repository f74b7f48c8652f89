"""
Domain records shared by the verification and session-trust components.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from .utils import ValidationError, Validator, utcnow


class FactorMethod(enum.Enum):
    SMS = "sms"
    EMAIL = "email"
    AUTHENTICATOR = "authenticator"


class DeviceType(enum.Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class ActivityType(enum.Enum):
    MULTIPLE_LOCATIONS = "multiple_locations"
    RAPID_LOGINS = "rapid_logins"
    UNUSUAL_HOURS = "unusual_hours"
    IMPOSSIBLE_TRAVEL = "impossible_travel"
    MULTIPLE_DEVICES = "multiple_devices"
    FAILED_2FA = "failed_2fa"
    PASSWORD_CHANGE = "password_change"
    UNUSUAL_PAYMENT = "unusual_payment"


class Severity(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(enum.Enum):
    NONE = "none"
    ALERT = "alert"
    LOCK = "lock"
    VERIFY = "verify"


# ==================== SECOND FACTOR ====================

@dataclass
class AuthFactor:
    """
    One pending second-factor challenge.

    The code is never accepted after expires_at, and once verified is set
    the challenge never validates again. For authenticator factors the
    secret holds the encrypted payload, not the base32 secret itself.
    """
    identity: str
    method: FactorMethod
    code: str
    expires_at: datetime
    secret: Optional[str] = None
    destination: Optional[str] = None
    verified: bool = False
    attempts: int = 0
    backup_codes: Optional[Set[str]] = None  # SHA-256 digests only
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at


# ==================== SESSIONS ====================

@dataclass
class Location:
    country: str = "Unknown"
    city: str = "Unknown"
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def __post_init__(self):
        Validator.validate_coordinates(self.latitude, self.longitude)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class UserSession:
    session_id: str
    identity: str
    device_id: str
    device_type: DeviceType
    browser: str
    ip_address: str
    location: Location
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    is_active: bool = True

    def __post_init__(self):
        self.identity = Validator.validate_identity(self.identity)
        if isinstance(self.device_type, str):
            try:
                self.device_type = DeviceType(self.device_type)
            except ValueError:
                raise ValidationError(f"Unknown device type: {self.device_type!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'identity': self.identity,
            'device_id': self.device_id,
            'device_type': self.device_type.value,
            'browser': self.browser,
            'ip_address': self.ip_address,
            'location': {
                'country': self.location.country,
                'city': self.location.city,
                'latitude': self.location.latitude,
                'longitude': self.location.longitude,
            },
            'created_at': self.created_at.isoformat(),
            'last_activity': self.last_activity.isoformat(),
            'is_active': self.is_active,
        }


@dataclass
class SessionStats:
    total: int
    active: int
    devices: List[str]
    locations: List[str]


@dataclass
class ViewingActivity:
    identity: str
    content_id: str
    content_type: str  # movie / series / live
    start_time: datetime
    duration: int = 0  # minutes
    end_time: Optional[datetime] = None
    quality: str = "HD"
    device_type: str = "desktop"
    location: str = "Unknown"
    ip_address: str = ""


# ==================== SECURITY EVENTS ====================

def generate_event_id() -> str:
    return f"act_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class SecurityEvent:
    """
    Append-only record emitted by the anomaly detector.
    Only the event store may flip resolved, by id.
    """
    identity: str
    activity_type: ActivityType
    severity: Severity
    action: RecommendedAction
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    resolved: bool = False
    id: str = field(default_factory=generate_event_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'identity': self.identity,
            'activity_type': self.activity_type.value,
            'severity': self.severity.value,
            'timestamp': self.timestamp.isoformat(),
            'details': dict(self.details),
            'resolved': self.resolved,
            'action': self.action.value,
        }


# ==================== RATE LIMITING ====================

@dataclass
class RateLimitRecord:
    identity: str
    count: int
    reset_at: datetime
    rejected: int = 0


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: Optional[datetime] = None
    rejected: int = 0

    def __iter__(self):
        # Unpacks as (allowed, remaining)
        return iter((self.allowed, self.remaining))
