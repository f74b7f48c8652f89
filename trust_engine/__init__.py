"""
Authentication-Factor & Session-Trust Engine
============================================

Second-factor codes (OTP, TOTP, backup codes) with attempt rate limiting,
and session tracking with anomaly detection.
"""

from .anomaly import AnomalyDetector, haversine_distance
from .backup_codes import generate_backup_codes, hash_backup_code, verify_backup_code
from .engine import TrustEngine, build_engine
from .mfa import (
    generate_authenticator_secret,
    generate_otp,
    verify_authenticator_code,
    verify_otp,
)
from .rate_limiter import TwoFactorRateLimiter
from .session import SessionTracker
from .two_factor import TwoFactorService
from .utils import ValidationError

__all__ = [
    'AnomalyDetector',
    'SessionTracker',
    'TrustEngine',
    'TwoFactorRateLimiter',
    'TwoFactorService',
    'ValidationError',
    'build_engine',
    'generate_authenticator_secret',
    'generate_backup_codes',
    'generate_otp',
    'hash_backup_code',
    'haversine_distance',
    'verify_authenticator_code',
    'verify_backup_code',
    'verify_otp',
]
