"""
One-Time Password Module

Implements the codes used as a second factor:
- 6-digit single-use codes delivered over SMS or e-mail
- TOTP (RFC 6238) codes from authenticator apps
- Provisioning URI and QR code generation for authenticator enrollment

All functions are pure over caller-supplied state; persistence and
single-use bookkeeping live in the two-factor service.
"""

import base64
import io
import secrets
import time
from datetime import datetime
from typing import Optional, Tuple

import pyotp
import qrcode

from .utils import Validator, as_utc, utcnow

OTP_MIN = 100000
OTP_MAX = 999999

TOTP_INTERVAL = 30
TOTP_DIGITS = 6


def generate_otp() -> str:
    """
    Generate a 6-digit one-time code.

    Drawn uniformly from [100000, 999999] using the secrets module,
    so the code never has a leading zero.
    """
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def verify_otp(input_code: str, stored_code: str, expires_at: datetime,
               now: Optional[datetime] = None) -> bool:
    """
    Verify a single-use code against the stored one.

    Returns False unconditionally once now is past expires_at. Naive
    datetimes are read as UTC. The comparison is timing-safe.
    """
    if as_utc(now or utcnow()) > as_utc(expires_at):
        return False
    return Validator.constant_time_equals(input_code, stored_code)


# ==================== TOTP ====================

def generate_authenticator_secret(length: int = 32) -> str:
    """
    Generate a new TOTP secret for authenticator enrollment.

    Returns:
        Base32-encoded secret (32 characters = 160 bits)
    """
    # pyotp.random_base32() uses secrets module internally
    return pyotp.random_base32(length=length)


def totp_counter(timestamp: Optional[float] = None, interval: int = TOTP_INTERVAL) -> int:
    """Time-step counter: floor(unix_time / interval)"""
    if timestamp is None:
        timestamp = time.time()
    return int(timestamp // interval)


def compute_totp(secret: str, counter: int, digits: int = TOTP_DIGITS) -> str:
    """Derive the TOTP code for one time step"""
    return _build_totp(secret, digits=digits).generate_otp(counter)


def _build_totp(secret: str, interval: int = TOTP_INTERVAL, digits: int = TOTP_DIGITS) -> pyotp.TOTP:
    try:
        totp = pyotp.TOTP(secret, interval=interval, digits=digits)
        totp.byte_secret()
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid TOTP secret: {e}")
    return totp


def matching_totp_counter(code: str, secret: str, at: Optional[float] = None,
                          window: int = 1, interval: int = TOTP_INTERVAL) -> Optional[int]:
    """
    Find the time step a code belongs to.

    Checks the current step and window steps on either side to
    tolerate clock skew.

    Returns:
        The matching counter, or None when no step in the window matches
    """
    if not Validator.is_numeric_code(code, TOTP_DIGITS):
        return None

    totp = _build_totp(secret, interval)
    current = totp_counter(at, interval)
    match = None
    # Every step in the window is evaluated
    for counter in range(max(0, current - window), current + window + 1):
        if Validator.constant_time_equals(code, totp.generate_otp(counter)) and match is None:
            match = counter
    return match


def verify_authenticator_code(code: str, secret: str, at: Optional[float] = None,
                              window: int = 1) -> bool:
    """
    Verify a code from an authenticator app.

    Args:
        code: 6-digit code entered by user
        secret: Base32 TOTP secret
        at: Unix timestamp to verify against (defaults to now)
        window: Time window tolerance (default 1 = +-30 seconds)
    """
    if not secret:
        return False
    return matching_totp_counter(code, secret, at, window) is not None


# ==================== ENROLLMENT ====================

def get_provisioning_uri(secret: str, account_identifier: str, issuer: str) -> str:
    """
    Generate provisioning URI for QR code.

    Format: otpauth://totp/Issuer:account?secret=SECRET&issuer=Issuer
    """
    return _build_totp(secret).provisioning_uri(name=account_identifier, issuer_name=issuer)


def generate_qr_code(provisioning_uri: str) -> str:
    """
    Generate QR code image for TOTP setup.

    Returns:
        Base64-encoded PNG image

    Usage:
        Display in <img> tag: <img src="data:image/png;base64,{qr_code}">
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(provisioning_uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return base64.b64encode(buffer.getvalue()).decode()


def setup_authenticator(account_identifier: str, issuer: str,
                        secret_length: int = 32) -> Tuple[str, str, str]:
    """
    Setup authenticator-based MFA for an account.

    Returns:
        Tuple of (secret, provisioning_uri, qr_code_base64)

    Usage:
        1. Display QR code to user
        2. User scans with authenticator app
        3. User provides first TOTP code to confirm
        4. Store encrypted secret
    """
    secret = generate_authenticator_secret(secret_length)
    uri = get_provisioning_uri(secret, account_identifier, issuer)
    return secret, uri, generate_qr_code(uri)
