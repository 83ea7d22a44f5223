from __future__ import annotations

import os
from dataclasses import dataclass

from Cryptodome.Cipher import AES
from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.KDF import PBKDF2

from .constants import KEY_SIZE, NONCE_SIZE, PBKDF2_ITERATIONS, SALT_SIZE, TAG_SIZE
from .errors import AuthenticationError, InputError, PayloadFormatError


@dataclass(frozen=True)
class EncryptionResult:
    salt: bytes
    nonce: bytes
    ciphertext: bytes  # GCM tag appended
    iterations: int = PBKDF2_ITERATIONS

    def __repr__(self) -> str:
        return (
            f"EncryptionResult(salt={self.salt.hex()}, nonce={self.nonce.hex()}, "
            f"ciphertext=<{len(self.ciphertext)} bytes>, iterations={self.iterations})"
        )


def _password_bytes(password: str) -> bytes:
    if not password:
        raise InputError("Password must not be empty")
    return password.encode("utf-8")


def derive_key(password: str, salt: bytes) -> bytes:
    """PBKDF2-HMAC-SHA256 over the UTF-8 password, matching WebCrypto's deriveKey."""
    if len(salt) != SALT_SIZE:
        raise PayloadFormatError(f"Salt must be {SALT_SIZE} bytes")
    return PBKDF2(
        _password_bytes(password),
        salt,
        dkLen=KEY_SIZE,
        count=PBKDF2_ITERATIONS,
        hmac_hash_module=SHA256,
    )


def seal(plaintext: bytes, password: str) -> EncryptionResult:
    """Encrypt ``plaintext`` under a key derived from ``password``.

    A fresh salt and nonce are drawn for every call; both are returned
    because they are needed (and safe to publish) for decryption.
    """
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    cipher = AES.new(derive_key(password, salt), AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
    ciphertext, tag = cipher.encrypt_and_digest(bytes(plaintext))
    return EncryptionResult(salt=salt, nonce=nonce, ciphertext=ciphertext + tag)


def unseal(ciphertext: bytes, password: str, salt: bytes, nonce: bytes) -> bytes:
    """Verify and decrypt a payload produced by :func:`seal`.

    Raises:
        AuthenticationError: the tag does not verify (wrong password or
            tampered payload).
        PayloadFormatError: salt, nonce or ciphertext have impossible sizes.
    """
    if len(nonce) != NONCE_SIZE:
        raise PayloadFormatError(f"Nonce must be {NONCE_SIZE} bytes")
    if len(ciphertext) < TAG_SIZE:
        raise PayloadFormatError("Encrypted payload too short")
    key = derive_key(password, salt)
    cipher = AES.new(key, AES.MODE_GCM, nonce=bytes(nonce), mac_len=TAG_SIZE)
    del key
    body = bytes(ciphertext[:-TAG_SIZE])
    tag = bytes(ciphertext[-TAG_SIZE:])
    try:
        return cipher.decrypt_and_verify(body, tag)
    except ValueError as exc:
        raise AuthenticationError("Invalid password") from exc
