"""
Vault module for the restock monitor.

Authenticated symmetric encryption of opaque payloads under a
human-supplied passphrase. Records are encoded as a single base64 string:

    salt (32 bytes) || nonce (12 bytes) || tag (16 bytes) || ciphertext

The key is derived with scrypt from the passphrase and the record's own
salt, and the payload is sealed with AES-256-GCM. A fresh salt and nonce
are drawn on every call, so no (key, nonce) pair is ever reused.
"""

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .exceptions import VaultAuthenticationError

SALT_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16
KEY_LEN = 32
HEADER_LEN = SALT_LEN + NONCE_LEN + TAG_LEN


@dataclass(frozen=True)
class KdfParams:
    """scrypt cost parameters."""

    n: int
    r: int
    p: int
    length: int = KEY_LEN


# Versioned cost parameters. Bump KDF_VERSION and add an entry when the
# defaults change; existing records were sealed with the older entry.
KDF_PARAMS: dict[int, KdfParams] = {
    1: KdfParams(n=2**14, r=8, p=1),
}
KDF_VERSION = 1


class Vault:
    """Passphrase-based AES-256-GCM encryption."""

    def __init__(self, kdf_params: KdfParams = KDF_PARAMS[KDF_VERSION]) -> None:
        self._kdf_params = kdf_params

    @property
    def kdf_params(self) -> KdfParams:
        return self._kdf_params

    def derive_key(self, passphrase: str, salt: bytes) -> bytes:
        """Derive the 256-bit record key from a passphrase and salt."""
        params = self._kdf_params
        kdf = Scrypt(salt=salt, length=params.length, n=params.n, r=params.r, p=params.p)
        return kdf.derive(passphrase.encode("utf-8"))

    def encrypt(self, plaintext: Union[bytes, str], passphrase: str) -> str:
        """
        Encrypt a payload into a VaultRecord string.

        Args:
            plaintext: Bytes, or text that is encoded as UTF-8
            passphrase: The master passphrase

        Returns:
            base64(salt || nonce || tag || ciphertext)
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")

        salt = os.urandom(SALT_LEN)
        nonce = os.urandom(NONCE_LEN)
        key = self.derive_key(passphrase, salt)

        # AESGCM appends the tag to the ciphertext.
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        ciphertext, tag = sealed[:-TAG_LEN], sealed[-TAG_LEN:]

        return base64.b64encode(salt + nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, record: str, passphrase: str) -> bytes:
        """
        Decrypt a VaultRecord string.

        Raises:
            VaultAuthenticationError: If the record is malformed, was tampered
                with, or the passphrase is wrong
        """
        try:
            raw = base64.b64decode(record.strip(), validate=True)
        except (binascii.Error, ValueError, AttributeError) as e:
            raise VaultAuthenticationError(
                code="malformed_record",
                message="Vault record is not valid base64",
            ) from e

        if len(raw) < HEADER_LEN:
            raise VaultAuthenticationError(
                code="malformed_record",
                message="Vault record is too short",
                details={"length": len(raw), "minimum": HEADER_LEN},
            )

        salt = raw[:SALT_LEN]
        nonce = raw[SALT_LEN:SALT_LEN + NONCE_LEN]
        tag = raw[SALT_LEN + NONCE_LEN:HEADER_LEN]
        ciphertext = raw[HEADER_LEN:]

        key = self.derive_key(passphrase, salt)
        try:
            return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise VaultAuthenticationError(
                code="authentication_failed",
                message="Vault authentication failed - wrong passphrase or corrupted record",
            ) from e

    def decrypt_text(self, record: str, passphrase: str) -> str:
        """Decrypt a record holding UTF-8 text."""
        plaintext = self.decrypt(record, passphrase)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise VaultAuthenticationError(
                code="malformed_record",
                message="Vault record does not contain UTF-8 text",
            ) from e


_default_vault = Vault()


def encrypt(plaintext: Union[bytes, str], passphrase: str) -> str:
    """Encrypt with the current default cost parameters."""
    return _default_vault.encrypt(plaintext, passphrase)


def decrypt(record: str, passphrase: str) -> bytes:
    """Decrypt with the current default cost parameters."""
    return _default_vault.decrypt(record, passphrase)
