import base64
import binascii
import logging
from typing import Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from fastapi import Request

from sql_gateway.core.config import Settings
from sql_gateway.core.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
BLOCK_SIZE_BITS = 128


class CredentialCipher:
    """
    AES-256-CBC with PKCS7 padding over short credential strings.

    The IV is fixed for the whole process so that ciphertexts stay compatible
    with clients that already store encrypted credentials. As a consequence
    encryption is deterministic: the same plaintext always gives the same
    ciphertext.

    There is no authentication tag. A wrong key is detected through broken
    PKCS7 padding or invalid UTF-8, which catches it with high probability but
    not with certainty. CBC without a MAC is also malleable: flipping bits in
    one ciphertext block changes the next plaintext block without a padding
    failure. Ciphertexts only protect credentials from casual disclosure, the
    database still authenticates whatever they decrypt to.
    """

    def __init__(self, key: bytes, iv: bytes):
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(
                f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        if len(iv) != IV_LENGTH:
            raise ConfigurationError(
                f"Encryption IV must be {IV_LENGTH} bytes, got {len(iv)}"
            )
        self._algorithm = algorithms.AES(key)
        self._iv = iv

    @classmethod
    def from_hex(cls, key_hex: str, iv_hex: str) -> "CredentialCipher":
        if not key_hex or not iv_hex:
            raise ConfigurationError("Encryption key or IV is not configured")
        try:
            key = bytes.fromhex(key_hex.strip())
            iv = bytes.fromhex(iv_hex.strip())
        except ValueError:
            raise ConfigurationError("Encryption key and IV must be hex encoded")
        return cls(key, iv)

    def _cipher(self) -> Cipher:
        # Cipher contexts are single use, build a fresh one per call
        return Cipher(self._algorithm, modes.CBC(self._iv))

    def encrypt(self, plaintext: str) -> str:
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = self._cipher().encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(ciphertext).decode("ascii")

    def decrypt(self, ciphertext_b64: str) -> str:
        try:
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionError("Encrypted value is not valid base64")

        if not ciphertext or len(ciphertext) % (BLOCK_SIZE_BITS // 8) != 0:
            raise DecryptionError("Encrypted value has an invalid length")

        decryptor = self._cipher().decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        # A wrong key or IV shows up as broken padding or broken UTF-8
        try:
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            raise DecryptionError(
                "Encrypted value could not be decrypted with the configured key"
            )


class UnavailableCipher:
    """Stands in for the cipher when the key/IV configuration is invalid."""

    def __init__(self, error: ConfigurationError):
        self.error = error

    def encrypt(self, plaintext: str) -> str:
        raise ConfigurationError(self.error.message)

    def decrypt(self, ciphertext_b64: str) -> str:
        raise ConfigurationError(self.error.message)


CipherLike = Union[CredentialCipher, UnavailableCipher]


def build_cipher(config: Settings) -> CipherLike:
    """Validate the key/IV once at startup. Never logs key material."""
    try:
        cipher = CredentialCipher.from_hex(config.ENCRYPTION_KEY, config.ENCRYPTION_IV)
    except ConfigurationError as error:
        logger.warning(f"Credential encryption disabled: {error.message}")
        return UnavailableCipher(error)

    logger.info("Credential encryption enabled (AES-256-CBC)")
    return cipher


# The cipher is built once in create_app and read from the app state per request
def get_cipher(request: Request) -> CipherLike:
    return request.app.state.cipher
