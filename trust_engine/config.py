"""
Configuration Module for the Session-Trust Engine

This module manages all security configuration parameters.
CRITICAL: Load all secrets from environment variables in production.
"""

import os
from datetime import timedelta


class SecurityConfig:
    """
    Central configuration class for second-factor verification and
    session anomaly detection. All security-critical parameters are
    defined here with secure defaults.
    """

    # ==================== CRYPTOGRAPHIC SETTINGS ====================

    # CRITICAL: Load from environment variables - NEVER hardcode in production
    # urlsafe-base64 encoded 32 byte key used to encrypt authenticator secrets
    DATA_ENCRYPTION_KEY = os.getenv('DATA_ENCRYPTION_KEY', '')

    # AES-256-GCM encryption settings
    AES_KEY_SIZE = 32  # 256 bits
    AES_NONCE_SIZE = 12  # 96 bits (recommended for GCM)

    # ==================== ONE-TIME CODES ====================

    OTP_TTL = timedelta(minutes=5)  # Absolute expiry of an SMS/e-mail code
    OTP_MAX_ATTEMPTS = 3  # Wrong guesses before a challenge is burned

    # ==================== MFA SETTINGS ====================

    # TOTP settings (RFC 6238)
    TOTP_INTERVAL = 30  # Time step in seconds
    TOTP_DIGITS = 6  # Number of digits in OTP
    TOTP_VALID_WINDOW = 1  # Steps of clock skew tolerated on either side
    TOTP_SECRET_LENGTH = 32  # Base32 characters (160 bits)
    TOTP_ISSUER = os.getenv('TOTP_ISSUER', 'SplitShare')  # App name in authenticator
    AUTHENTICATOR_ENROLLMENT_TTL = timedelta(minutes=10)  # Time to confirm the first code

    # Backup codes
    MFA_BACKUP_CODE_COUNT = 10

    # ==================== BRUTE FORCE PROTECTION ====================

    # Verification attempts per identity
    MAX_2FA_ATTEMPTS = 5
    TWO_FACTOR_WINDOW = timedelta(minutes=15)

    # ==================== SESSION MANAGEMENT ====================

    # Idle timeout - time of inactivity before a session stops counting as active
    SESSION_IDLE_TIMEOUT = timedelta(minutes=30)

    # How long inactive sessions are kept for history before sweeping
    SESSION_RETENTION = timedelta(days=30)

    # ==================== ANOMALY DETECTION ====================

    MAX_CONCURRENT_SESSIONS = 3  # More active sessions than this is flagged
    IMPOSSIBLE_TRAVEL_WINDOW = timedelta(minutes=60)
    MAX_TRAVEL_SPEED_KMH = 800  # Faster than a commercial flight
    UNUSUAL_HOURS_START = 2  # Inclusive, local hour
    UNUSUAL_HOURS_END = 6  # Exclusive, local hour
    RAPID_LOGIN_THRESHOLD = 5  # More attempts than this is flagged

    # ==================== AUDIT LOGGING ====================

    SECURITY_EVENT_LOG_RETENTION = timedelta(days=365)
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # ==================== DATABASE SETTINGS ====================

    # Connection settings (load from environment)
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///trust_engine.db')

    # ==================== EMAIL SETTINGS ====================

    # SMTP configuration (load from environment)
    SMTP_HOST = os.getenv('SMTP_HOST', 'localhost')
    SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
    SMTP_USERNAME = os.getenv('SMTP_USERNAME', '')
    SMTP_PASSWORD = os.getenv('SMTP_PASSWORD', '')
    SMTP_USE_TLS = True
    SMTP_TIMEOUT = 10  # Seconds

    EMAIL_FROM = os.getenv('EMAIL_FROM', 'noreply@splitshare.com')


class DevelopmentConfig(SecurityConfig):
    """Development configuration - less strict for testing"""
    SMTP_USE_TLS = False
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(SecurityConfig):
    """Production configuration - maximum security"""
    # Shorter code lifetime in production
    OTP_TTL = timedelta(minutes=2)


class TestingConfig(SecurityConfig):
    """Test configuration - isolated in-memory database, fixed key"""
    DATABASE_URL = 'sqlite://'
    DATA_ENCRYPTION_KEY = 'MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY='
    LOG_LEVEL = 'DEBUG'


# Configuration selector based on environment
def get_config() -> SecurityConfig:
    """
    Returns appropriate configuration based on environment.
    Default to production for safety.
    """
    env = os.getenv('TRUST_ENGINE_ENV', 'production')
    if env == 'development':
        return DevelopmentConfig()
    if env == 'testing':
        return TestingConfig()
    return ProductionConfig()
