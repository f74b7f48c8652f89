"""
Backup Code Module

Recovery codes that substitute for a regular one-time code:
- XXXX-XXXX uppercase hex codes, displayed to the user once
- Stored as SHA-256 digests, never plaintext
- Single use (a matched code is removed from the stored set)
"""

import logging
import secrets
import threading
from typing import Iterable, List, Set, Tuple

from .utils import ValidationError, Validator

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_CODE_COUNT = 10


def _new_code() -> str:
    raw = secrets.token_hex(4).upper()
    return f"{raw[:4]}-{raw[4:]}"


def generate_backup_codes(count: int = DEFAULT_BACKUP_CODE_COUNT) -> List[str]:
    """
    Generate backup codes for account recovery.

    Args:
        count: Number of codes to generate

    Returns:
        List of pairwise-distinct codes formatted as XXXX-XXXX
    """
    if not isinstance(count, int) or count < 0:
        raise ValidationError(f"Backup code count must be a non-negative integer, got {count!r}")

    codes: List[str] = []
    seen: Set[str] = set()
    while len(codes) < count:
        code = _new_code()
        if code in seen:
            # 32 bits per code, so collisions are rare but possible
            continue
        seen.add(code)
        codes.append(code)
    return codes


def hash_backup_code(code: str) -> str:
    """
    Hash backup code for secure storage.

    Deterministic, so a stored digest can be looked up again.
    """
    return Validator.hash_token(code)


def verify_backup_code(input_code: str, stored_hashes: Iterable[str]) -> bool:
    """
    Check a backup code against the stored digests.

    The caller must remove the matched digest to enforce single use
    (BackupCodeSet.consume does both).
    """
    if not isinstance(input_code, str) or not input_code:
        return False

    candidate = hash_backup_code(input_code)
    found = False
    for stored in stored_hashes:
        if Validator.constant_time_equals(candidate, stored):
            found = True
    return found


def generate_and_hash_backup_codes(count: int = DEFAULT_BACKUP_CODE_COUNT) -> Tuple[List[str], List[str]]:
    """
    Generate backup codes and return both plain and hashed versions.

    Usage:
        1. Display plain_codes to user (one-time only)
        2. Store hashed_codes
    """
    plain_codes = generate_backup_codes(count)
    hashed_codes = [hash_backup_code(code) for code in plain_codes]
    return plain_codes, hashed_codes


class BackupCodeSet:
    """Stored digests for one identity, consumed atomically."""

    def __init__(self, hashed_codes: Iterable[str] = ()):
        self._hashes = set(hashed_codes)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hashes)

    def consume(self, input_code: str) -> bool:
        """Verify a code and remove it in the same critical section."""
        with self._lock:
            if not verify_backup_code(input_code, self._hashes):
                return False
            self._hashes.discard(hash_backup_code(input_code))

        logger.info(f"Backup code consumed, {len(self)} remaining")
        return True
