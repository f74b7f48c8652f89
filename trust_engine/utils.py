import hashlib
import hmac
import math
import secrets
from datetime import datetime, timezone
from typing import Optional


class ValidationError(ValueError):
    """Malformed input rejected before any processing takes place."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Read a naive datetime as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Validator:
    @staticmethod
    def validate_identity(identity: str) -> str:
        """Identity references must be non-empty strings"""
        if not isinstance(identity, str) or not identity.strip():
            raise ValidationError("Identity must be a non-empty string")
        return identity.strip()

    @staticmethod
    def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
        """
        Either both coordinates are given or neither is.
        Both must be finite numbers, latitude in [-90, 90] and
        longitude in [-180, 180].
        """
        if latitude is None and longitude is None:
            return
        if latitude is None or longitude is None:
            raise ValidationError("Latitude and longitude must be supplied together")
        for name, value in (('Latitude', latitude), ('Longitude', longitude)):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"{name} must be a finite number: {value!r}")
        if not -90.0 <= latitude <= 90.0:
            raise ValidationError(f"Latitude out of range: {latitude}")
        if not -180.0 <= longitude <= 180.0:
            raise ValidationError(f"Longitude out of range: {longitude}")

    @staticmethod
    def is_numeric_code(code: str, length: int) -> bool:
        return isinstance(code, str) and len(code) == length and code.isdigit()

    @staticmethod
    def generate_token(length_bytes: int = 32) -> str:
        """Generates cryptographically secure URL-safe token"""
        return secrets.token_urlsafe(length_bytes)

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 hash for storing codes safely"""
        return hashlib.sha256(token.encode()).hexdigest()

    @staticmethod
    def constant_time_equals(a: str, b: str) -> bool:
        """Timing-safe string comparison"""
        if not isinstance(a, str) or not isinstance(b, str):
            return False
        return hmac.compare_digest(a.encode(), b.encode())
