import base64
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .config import SecurityConfig

logger = logging.getLogger(__name__)


class CryptoManager:
    """
    AES-256-GCM encryption of authenticator secrets at rest.

    Each payload can be bound to the identity it belongs to through the
    GCM associated data, so a secret copied onto another account fails
    to decrypt.
    """

    def __init__(self, encoded_key: str, nonce_size: int = 12):
        try:
            self.key = base64.urlsafe_b64decode(encoded_key)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid Encryption Key configuration: {e}")
        if len(self.key) != 32:
            raise ValueError("Invalid Encryption Key configuration: key must be 32 bytes (256 bits) for AES-256")
        self.nonce_size = nonce_size

    @classmethod
    def from_config(cls, config: SecurityConfig) -> "CryptoManager":
        """
        Build from DATA_ENCRYPTION_KEY, or an ephemeral key when unset.
        Secrets encrypted with an ephemeral key do not survive a restart.
        """
        encoded_key = config.DATA_ENCRYPTION_KEY
        if not encoded_key:
            logger.warning("DATA_ENCRYPTION_KEY not set, using an ephemeral key")
            encoded_key = base64.urlsafe_b64encode(os.urandom(config.AES_KEY_SIZE)).decode()
        return cls(encoded_key, config.AES_NONCE_SIZE)

    def encrypt(self, plaintext: str, bound_to: Optional[str] = None) -> str:
        """
        Encrypt with a fresh nonce.

        Args:
            plaintext: Secret to protect
            bound_to: Identity authenticated alongside the ciphertext

        Returns:
            nonce_hex:ciphertext_hex:tag_hex
        """
        nonce = os.urandom(self.nonce_size)
        encryptor = Cipher(algorithms.AES(self.key), modes.GCM(nonce)).encryptor()
        if bound_to is not None:
            encryptor.authenticate_additional_data(bound_to.encode())

        ciphertext = encryptor.update(plaintext.encode()) + encryptor.finalize()
        return f"{nonce.hex()}:{ciphertext.hex()}:{encryptor.tag.hex()}"

    def decrypt(self, payload: str, bound_to: Optional[str] = None) -> str:
        """
        Decrypt and verify the tag.

        Raises:
            ValueError: Malformed payload, wrong key, wrong identity or tampering
        """
        try:
            nonce_hex, ct_hex, tag_hex = payload.split(':')
            decryptor = Cipher(
                algorithms.AES(self.key),
                modes.GCM(bytes.fromhex(nonce_hex), bytes.fromhex(tag_hex)),
            ).decryptor()
            if bound_to is not None:
                decryptor.authenticate_additional_data(bound_to.encode())

            return (decryptor.update(bytes.fromhex(ct_hex)) + decryptor.finalize()).decode()
        except Exception:
            raise ValueError("Decryption failed or data tampered")
