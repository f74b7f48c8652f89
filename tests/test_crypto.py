"""
Tests for authenticator secret encryption.
"""
import base64
import os

import pytest

from trust_engine.config import SecurityConfig, TestingConfig
from trust_engine.crypto import CryptoManager


@pytest.fixture
def crypto():
    return CryptoManager.from_config(TestingConfig())


def test_round_trip(crypto):
    payload = crypto.encrypt("JBSWY3DPEHPK3PXP")
    assert payload.count(':') == 2
    assert crypto.decrypt(payload) == "JBSWY3DPEHPK3PXP"


def test_fresh_iv_per_encryption(crypto):
    assert crypto.encrypt("secret") != crypto.encrypt("secret")


def test_tampered_payload_rejected(crypto):
    iv, ciphertext, tag = crypto.encrypt("secret").split(':')
    flipped = format(int(ciphertext[:2], 16) ^ 0x01, '02x') + ciphertext[2:]

    with pytest.raises(ValueError):
        crypto.decrypt(f"{iv}:{flipped}:{tag}")


def test_wrong_key_rejected(crypto):
    other = CryptoManager(base64.urlsafe_b64encode(os.urandom(32)).decode())
    with pytest.raises(ValueError):
        other.decrypt(crypto.encrypt("secret"))


@pytest.mark.parametrize("key", ["c2hvcnQ=", "not base64 at all!"])
def test_invalid_key(key):
    with pytest.raises(ValueError):
        CryptoManager(key)


def test_ephemeral_key_when_unset():
    config = SecurityConfig()
    config.DATA_ENCRYPTION_KEY = ''
    crypto = CryptoManager.from_config(config)
    assert crypto.decrypt(crypto.encrypt("x")) == "x"


def test_payload_bound_to_identity(crypto):
    payload = crypto.encrypt("JBSWY3DPEHPK3PXP", bound_to='u1')

    assert crypto.decrypt(payload, bound_to='u1') == "JBSWY3DPEHPK3PXP"
    with pytest.raises(ValueError):
        crypto.decrypt(payload, bound_to='u2')
    with pytest.raises(ValueError):
        crypto.decrypt(payload)
