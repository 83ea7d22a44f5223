from __future__ import annotations

import hashlib
import os
import unittest

from Cryptodome.Cipher import AES

from frontcrypt.constants import NONCE_SIZE, PBKDF2_ITERATIONS, SALT_SIZE, TAG_SIZE
from frontcrypt.encryption import EncryptionResult, derive_key, seal, unseal
from frontcrypt.errors import (
    ArchiveFormatError,
    AuthenticationError,
    InputError,
    PayloadFormatError,
)


class SealTests(unittest.TestCase):
    def test_roundtrip(self):
        plaintext = os.urandom(5000)
        result = seal(plaintext, "correct horse")
        self.assertIsInstance(result, EncryptionResult)
        self.assertEqual(len(result.salt), SALT_SIZE)
        self.assertEqual(len(result.nonce), NONCE_SIZE)
        self.assertEqual(len(result.ciphertext), len(plaintext) + TAG_SIZE)
        self.assertEqual(result.iterations, PBKDF2_ITERATIONS)
        self.assertEqual(unseal(result.ciphertext, "correct horse", result.salt, result.nonce), plaintext)

    def test_empty_plaintext_and_unicode_password(self):
        result = seal(b"", "pässwörd ✓")
        self.assertEqual(len(result.ciphertext), TAG_SIZE)
        self.assertEqual(unseal(result.ciphertext, "pässwörd ✓", result.salt, result.nonce), b"")

    def test_wrong_password_is_authentication_error(self):
        result = seal(b"secret archive", "right")
        with self.assertRaises(AuthenticationError) as ctx:
            unseal(result.ciphertext, "wrong", result.salt, result.nonce)
        self.assertNotIsInstance(ctx.exception, ArchiveFormatError)
        self.assertNotIsInstance(ctx.exception, PayloadFormatError)

    def test_tampered_payload_is_authentication_error(self):
        result = seal(b"secret archive", "pw")
        tampered = bytearray(result.ciphertext)
        tampered[0] ^= 0x01
        with self.assertRaises(AuthenticationError):
            unseal(bytes(tampered), "pw", result.salt, result.nonce)
        with self.assertRaises(AuthenticationError):
            unseal(result.ciphertext, "pw", result.salt, bytes(NONCE_SIZE))

    def test_fresh_salt_and_nonce_per_seal(self):
        a = seal(b"same", "pw")
        b = seal(b"same", "pw")
        self.assertNotEqual(a.salt, b.salt)
        self.assertNotEqual(a.nonce, b.nonce)
        self.assertNotEqual(a.ciphertext, b.ciphertext)

    def test_malformed_inputs(self):
        result = seal(b"x", "pw")
        with self.assertRaises(PayloadFormatError):
            unseal(result.ciphertext[:TAG_SIZE - 1], "pw", result.salt, result.nonce)
        with self.assertRaises(PayloadFormatError):
            unseal(result.ciphertext, "pw", result.salt[:8], result.nonce)
        with self.assertRaises(PayloadFormatError):
            unseal(result.ciphertext, "pw", result.salt, result.nonce + b"\x00")

    def test_empty_password_rejected(self):
        with self.assertRaises(InputError):
            seal(b"x", "")
        with self.assertRaises(InputError):
            unseal(b"\x00" * TAG_SIZE, "", bytes(SALT_SIZE), bytes(NONCE_SIZE))

    def test_repr_hides_ciphertext(self):
        result = seal(b"plaintext bytes", "pw")
        self.assertNotIn(repr(result.ciphertext), repr(result))


class InteropTests(unittest.TestCase):
    """The browser re-derives the key with WebCrypto; check against independent primitives."""

    def test_key_matches_hashlib_pbkdf2(self):
        salt = bytes(range(SALT_SIZE))
        expected = hashlib.pbkdf2_hmac("sha256", "hunter2".encode("utf-8"), salt, PBKDF2_ITERATIONS, dklen=32)
        self.assertEqual(derive_key("hunter2", salt), expected)

    def test_layout_is_gcm_ciphertext_then_tag(self):
        result = seal(b"layout check", "pw")
        key = hashlib.pbkdf2_hmac("sha256", b"pw", result.salt, PBKDF2_ITERATIONS, dklen=32)
        cipher = AES.new(key, AES.MODE_GCM, nonce=result.nonce)
        body, tag = result.ciphertext[:-TAG_SIZE], result.ciphertext[-TAG_SIZE:]
        self.assertEqual(cipher.decrypt_and_verify(body, tag), b"layout check")


if __name__ == "__main__":
    unittest.main()
