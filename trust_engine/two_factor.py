"""
Two-Factor Verification Service

Issues and verifies second-factor challenges for an identity:
- SMS / e-mail one-time codes (send, resend, verify)
- Authenticator enrollment and TOTP verification
- Backup code issuance and recovery

Every verification attempt passes the rate limiter first. A code that
verifies is consumed in the same critical section as the check, so it
can never validate twice.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from .anomaly import AnomalyDetector
from .backup_codes import BackupCodeSet, generate_and_hash_backup_codes
from .config import SecurityConfig
from .crypto import CryptoManager
from .delivery import EmailSender, SMSGateway, send_email_otp, send_sms_otp
from .mfa import generate_otp, matching_totp_counter, setup_authenticator, verify_otp
from .models import AuthFactor, FactorMethod, RateLimitResult
from .rate_limiter import RateLimiter
from .utils import ValidationError, Validator, utcnow

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Invalid or expired code"


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: str  # ok / invalid / expired / not_found / rate_limited
    remaining: int = 0
    retry_after: Optional[datetime] = None

    @property
    def message(self) -> str:
        """User-facing message; never reveals which check failed"""
        if self.ok:
            return "Verified"
        if self.reason == 'rate_limited' and self.retry_after is not None:
            return f"Too many attempts, try again after {self.retry_after:%H:%M} UTC"
        return INVALID_CODE_MESSAGE


class TwoFactorService:
    """Holds pending challenges and enrolled factors per identity"""

    def __init__(self, rate_limiter: RateLimiter, detector: AnomalyDetector,
                 crypto: CryptoManager, sms_gateway: SMSGateway, email_sender: EmailSender,
                 config: Optional[SecurityConfig] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.rate_limiter = rate_limiter
        self.detector = detector
        self.crypto = crypto
        self.sms_gateway = sms_gateway
        self.email_sender = email_sender
        self.config = config or SecurityConfig()
        self._clock = clock

        self._pending: Dict[str, AuthFactor] = {}
        self._enrollments: Dict[str, AuthFactor] = {}
        self._authenticators: Dict[str, AuthFactor] = {}
        self._last_totp_counter: Dict[str, int] = {}
        self._backup_codes: Dict[str, BackupCodeSet] = {}
        self._lock = threading.Lock()

    # ==================== SMS / E-MAIL CODES ====================

    def issue_code(self, identity: str, method: Union[FactorMethod, str],
                   destination: str) -> Tuple[bool, Optional[datetime]]:
        """
        Create a challenge and deliver its code.

        Any pending challenge for the identity is replaced.

        Returns:
            Tuple of (sent, expires_at); expires_at is None when delivery failed
        """
        identity = Validator.validate_identity(identity)
        method = self._parse_method(method)
        if method is FactorMethod.AUTHENTICATOR:
            raise ValidationError("Authenticator codes are not issued, enroll instead")
        if not isinstance(destination, str) or not destination.strip():
            raise ValidationError("A phone number or e-mail address is required")

        now = self._clock()
        factor = AuthFactor(
            identity=identity,
            method=method,
            code=generate_otp(),
            expires_at=now + self.config.OTP_TTL,
            destination=destination.strip(),
            created_at=now,
        )

        with self._lock:
            self._pending[identity] = factor

        logger.info(f"{method.value} challenge issued for user {identity}")

        if not self._deliver(factor):
            with self._lock:
                # Undelivered codes are dropped
                if self._pending.get(identity) is factor:
                    del self._pending[identity]
            return False, None

        return True, factor.expires_at

    def resend_code(self, identity: str) -> Tuple[bool, Optional[datetime]]:
        """Issue a fresh code to the same method and destination"""
        with self._lock:
            factor = self._pending.get(identity)
        if factor is None:
            return False, None
        return self.issue_code(identity, factor.method, factor.destination)

    def verify_code(self, identity: str, code: str) -> VerificationResult:
        """Verify an SMS / e-mail code and consume it on success"""
        identity = Validator.validate_identity(identity)
        limit = self.rate_limiter.check_attempt(identity)
        if not limit.allowed:
            return self._rate_limited(identity, limit)

        now = self._clock()
        burned = None
        with self._lock:
            factor = self._pending.get(identity)
            if factor is None:
                reason = 'not_found'
            elif factor.is_expired(now):
                del self._pending[identity]
                reason = 'expired'
            elif verify_otp(code, factor.code, factor.expires_at, now):
                factor.verified = True
                del self._pending[identity]
                reason = 'ok'
            else:
                factor.attempts += 1
                if factor.attempts >= self.config.OTP_MAX_ATTEMPTS:
                    del self._pending[identity]
                    burned = factor
                reason = 'invalid'

        if burned is not None:
            logger.warning(f"Challenge for user {identity} burned after {burned.attempts} wrong codes")
            self.detector.record_failed_2fa(identity, {
                'method': burned.method.value,
                'attempts': burned.attempts,
            })

        return self._finish(identity, reason, limit)

    def get_pending(self, identity: str) -> Optional[AuthFactor]:
        with self._lock:
            return self._pending.get(identity)

    # ==================== AUTHENTICATOR ====================

    def enroll_authenticator(self, identity: str, account_name: str) -> Tuple[str, str, str]:
        """
        Start authenticator enrollment.

        Returns:
            Tuple of (secret, provisioning_uri, qr_code_base64)

        The secret is kept encrypted and only becomes usable once a
        first code is confirmed within AUTHENTICATOR_ENROLLMENT_TTL.
        """
        identity = Validator.validate_identity(identity)
        secret, uri, qr_code = setup_authenticator(
            account_name, self.config.TOTP_ISSUER, self.config.TOTP_SECRET_LENGTH
        )

        now = self._clock()
        factor = AuthFactor(
            identity=identity,
            method=FactorMethod.AUTHENTICATOR,
            code='',
            expires_at=now + self.config.AUTHENTICATOR_ENROLLMENT_TTL,
            secret=self.crypto.encrypt(secret, bound_to=identity),
            created_at=now,
        )
        with self._lock:
            self._enrollments[identity] = factor

        logger.info(f"Authenticator enrollment started for user {identity}")
        return secret, uri, qr_code

    def confirm_authenticator(self, identity: str, code: str) -> VerificationResult:
        """Confirm enrollment with the first code from the app"""
        identity = Validator.validate_identity(identity)
        limit = self.rate_limiter.check_attempt(identity)
        if not limit.allowed:
            return self._rate_limited(identity, limit)

        now = self._clock()
        with self._lock:
            factor = self._enrollments.get(identity)
            if factor is None:
                reason = 'not_found'
            elif factor.is_expired(now):
                del self._enrollments[identity]
                reason = 'expired'
            else:
                counter = self._match_totp(factor, code, now)
                if counter is None:
                    reason = 'invalid'
                else:
                    factor.verified = True
                    del self._enrollments[identity]
                    self._authenticators[identity] = factor
                    self._last_totp_counter[identity] = counter
                    reason = 'ok'

        if reason == 'ok':
            logger.info(f"Authenticator enrolled for user {identity}")
        return self._finish(identity, reason, limit)

    def verify_authenticator(self, identity: str, code: str) -> VerificationResult:
        """
        Verify a TOTP code for an enrolled authenticator.

        A time step that was already accepted is rejected, so a code
        cannot be replayed within its validity window.
        """
        identity = Validator.validate_identity(identity)
        limit = self.rate_limiter.check_attempt(identity)
        if not limit.allowed:
            return self._rate_limited(identity, limit)

        now = self._clock()
        with self._lock:
            factor = self._authenticators.get(identity)
            if factor is None:
                reason = 'not_found'
            else:
                counter = self._match_totp(factor, code, now)
                last = self._last_totp_counter.get(identity)
                if counter is None or (last is not None and counter <= last):
                    reason = 'invalid'
                else:
                    self._last_totp_counter[identity] = counter
                    reason = 'ok'

        return self._finish(identity, reason, limit)

    def has_authenticator(self, identity: str) -> bool:
        with self._lock:
            return identity in self._authenticators

    # ==================== BACKUP CODES ====================

    def issue_backup_codes(self, identity: str, count: Optional[int] = None) -> List[str]:
        """
        Generate a fresh set of backup codes, replacing any previous set.

        Returns:
            Plain codes, to be displayed to the user once
        """
        identity = Validator.validate_identity(identity)
        if count is None:
            count = self.config.MFA_BACKUP_CODE_COUNT

        plain_codes, hashed_codes = generate_and_hash_backup_codes(count)
        with self._lock:
            self._backup_codes[identity] = BackupCodeSet(hashed_codes)

        logger.info(f"{count} backup codes issued for user {identity}")
        return plain_codes

    def verify_backup(self, identity: str, code: str) -> VerificationResult:
        """Verify and consume a backup code"""
        identity = Validator.validate_identity(identity)
        limit = self.rate_limiter.check_attempt(identity)
        if not limit.allowed:
            return self._rate_limited(identity, limit)

        with self._lock:
            codes = self._backup_codes.get(identity)

        if codes is None:
            reason = 'not_found'
        elif codes.consume(code.strip().upper() if isinstance(code, str) else code):
            reason = 'ok'
        else:
            reason = 'invalid'

        return self._finish(identity, reason, limit)

    def backup_codes_remaining(self, identity: str) -> int:
        with self._lock:
            codes = self._backup_codes.get(identity)
        return len(codes) if codes is not None else 0

    # ==================== MAINTENANCE ====================

    def sweep_expired(self) -> int:
        """
        Drop expired pending challenges and enrollments.

        Note: Run periodically as maintenance task
        """
        now = self._clock()
        removed = 0
        with self._lock:
            for store in (self._pending, self._enrollments):
                expired = [key for key, factor in store.items() if factor.is_expired(now)]
                for key in expired:
                    del store[key]
                removed += len(expired)
        return removed

    # ==================== INTERNALS ====================

    @staticmethod
    def _parse_method(method: Union[FactorMethod, str]) -> FactorMethod:
        try:
            return FactorMethod(method)
        except ValueError:
            raise ValidationError(f"Unknown verification method: {method!r}")

    def _deliver(self, factor: AuthFactor) -> bool:
        if factor.method is FactorMethod.SMS:
            return send_sms_otp(self.sms_gateway, factor.destination, factor.code)
        ttl_minutes = int(self.config.OTP_TTL.total_seconds() // 60)
        return send_email_otp(self.email_sender, factor.destination, factor.code, ttl_minutes)

    def _match_totp(self, factor: AuthFactor, code: str, now: datetime) -> Optional[int]:
        secret = self.crypto.decrypt(factor.secret, bound_to=factor.identity)
        return matching_totp_counter(
            code, secret, at=now.timestamp(),
            window=self.config.TOTP_VALID_WINDOW, interval=self.config.TOTP_INTERVAL,
        )

    def _rate_limited(self, identity: str, limit: RateLimitResult) -> VerificationResult:
        if limit.rejected == 1:
            # Only on the first denial of the window
            window_minutes = int(self.rate_limiter.window.total_seconds() // 60)
            self.detector.check_rapid_logins(
                identity, self.rate_limiter.max_attempts + limit.rejected, window_minutes
            )
        return VerificationResult(False, 'rate_limited', 0, limit.reset_at)

    def _finish(self, identity: str, reason: str, limit: RateLimitResult) -> VerificationResult:
        if reason == 'ok':
            self.rate_limiter.reset(identity)
            return VerificationResult(True, reason)
        logger.info(f"Verification failed for user {identity}: {reason}")
        return VerificationResult(False, reason, limit.remaining)
