"""Encryption of stored Redmine API keys.

Two formats are understood:

* ``cbc``: AES-256-CBC with PKCS7 padding and an IV derived from the MD5 of
  the username, hex encoded. This matches secrets saved by earlier releases.
  When no username is known a random IV is prefixed as ``<iv>:<ciphertext>``.
* ``gcm``: AES-256-GCM with a random nonce per call and the username bound as
  associated data, written as ``v2:<nonce || ciphertext || tag>`` in hex.

``decrypt`` recognises both, so switching the configured scheme never strands
existing secrets.
"""

import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .models import ConfigError, CryptoError

GCM_PREFIX = "v2:"
IV_SIZE = 16
NONCE_SIZE = 12


def _parse_key(key: Optional[str]) -> bytes:
    if not key:
        raise ConfigError(
            "REDMINE_TIMESHEET_SECRET_KEY is not set. "
            "Please set it to a 256-bit key (64 hex characters)."
        )
    if len(key) == 64:
        try:
            return bytes.fromhex(key)
        except ValueError:
            pass
    raw = key.encode("utf-8")
    if len(raw) == 32:
        return raw
    raise ConfigError(
        "REDMINE_TIMESHEET_SECRET_KEY must be 64 hex characters or 32 bytes long."
    )


def derive_iv(username: str) -> bytes:
    """Deterministic 16-byte IV for ``username``."""
    return hashlib.md5(username.encode("utf-8")).digest()


class SecretCipher:
    """Symmetric encryption bound to one process-wide key."""

    def __init__(self, key: Optional[str], scheme: str = "gcm"):
        if scheme not in ("gcm", "cbc"):
            raise ConfigError(f"Unknown cipher scheme: {scheme!r}")
        self._key = _parse_key(key)
        self.scheme = scheme

    def encrypt(self, plaintext: str, username: Optional[str] = None) -> str:
        if self.scheme == "gcm":
            return self._encrypt_gcm(plaintext, username)
        return self._encrypt_cbc(plaintext, username)

    def decrypt(self, ciphertext: str, username: Optional[str] = None) -> str:
        """Decrypt a value written by :meth:`encrypt` under either scheme.

        Raises:
            CryptoError: If the value is malformed or was produced under a
                different key or username
        """
        try:
            if ciphertext.startswith(GCM_PREFIX):
                data = self._decrypt_gcm(ciphertext[len(GCM_PREFIX):], username)
            else:
                data = self._decrypt_cbc(ciphertext, username)
            return data.decode("utf-8")
        except CryptoError:
            raise
        except InvalidTag:
            raise CryptoError("Authentication tag mismatch") from None
        except ValueError as e:
            raise CryptoError(str(e)) from e

    def _encrypt_cbc(self, plaintext: str, username: Optional[str]) -> str:
        iv = derive_iv(username) if username else os.urandom(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        encrypted = (encryptor.update(padded) + encryptor.finalize()).hex()
        if username:
            return encrypted
        return f"{iv.hex()}:{encrypted}"

    def _decrypt_cbc(self, ciphertext: str, username: Optional[str]) -> bytes:
        if ":" in ciphertext:
            iv_hex, _, ciphertext = ciphertext.partition(":")
            iv = bytes.fromhex(iv_hex)
        elif username:
            iv = derive_iv(username)
        else:
            raise CryptoError("A username is required to decrypt this value")
        if len(iv) != IV_SIZE:
            raise CryptoError("Invalid initialization vector")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(bytes.fromhex(ciphertext)) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()

    def _encrypt_gcm(self, plaintext: str, username: Optional[str]) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(self._key).encrypt(
            nonce, plaintext.encode("utf-8"), _associated_data(username)
        )
        return GCM_PREFIX + (nonce + sealed).hex()

    def _decrypt_gcm(self, ciphertext: str, username: Optional[str]) -> bytes:
        raw = bytes.fromhex(ciphertext)
        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        return AESGCM(self._key).decrypt(nonce, sealed, _associated_data(username))


def _associated_data(username: Optional[str]) -> Optional[bytes]:
    return username.encode("utf-8") if username else None
