"""
Tests for the crypto codec.

Tests:
  - encrypt/decrypt with and without compression
  - wrong password and tampered bytes raise DecryptionError
  - short blobs and unknown headers raise FormatError
  - password verification hash
"""
import os
import unittest

from brainsync.core import crypto
from brainsync.core.errors import DecryptionError, FormatError


PASSWORD = "correct horse battery staple"


class TestEncryptDecrypt(unittest.TestCase):

    def test_compressed_blob_opens(self):
        """A compressed blob decrypts to the original bytes and carries the gzip header."""
        data = b"hello brain " * 200
        blob = crypto.encrypt(data, PASSWORD, compress=True)
        self.assertEqual(blob[:8], crypto.HEADER_GZIP)
        self.assertLess(len(blob), len(data))
        self.assertEqual(crypto.decrypt(blob, PASSWORD), data)

    def test_raw_blob_opens(self):
        """An uncompressed blob uses the raw header and decrypts as well."""
        blob = crypto.encrypt(b"\x00\x01binary", PASSWORD, compress=False)
        self.assertEqual(blob[:8], crypto.HEADER_RAW)
        self.assertEqual(crypto.decrypt(blob, PASSWORD), b"\x00\x01binary")

    def test_empty_payload(self):
        """Empty data still round-trips."""
        self.assertEqual(crypto.decrypt(crypto.encrypt(b"", PASSWORD), PASSWORD), b"")

    def test_fresh_salt_and_nonce(self):
        """Encrypting the same bytes twice never yields the same blob."""
        a = crypto.encrypt(b"same", PASSWORD)
        b = crypto.encrypt(b"same", PASSWORD)
        self.assertNotEqual(a, b)
        self.assertNotEqual(a[8:40], b[8:40])

    def test_layout_lengths(self):
        """header|salt|nonce|tag prefix is 72 bytes; raw ciphertext matches the plaintext length."""
        blob = crypto.encrypt(b"x" * 10, PASSWORD, compress=False)
        self.assertEqual(len(blob), 8 + 32 + 16 + 16 + 10)


class TestDecryptFailures(unittest.TestCase):

    def test_wrong_password(self):
        """A wrong password raises DecryptionError."""
        blob = crypto.encrypt(b"secret", PASSWORD)
        with self.assertRaises(DecryptionError):
            crypto.decrypt(blob, "wrong password")

    def test_tampered_ciphertext(self):
        """Flipping a ciphertext byte fails authentication."""
        blob = bytearray(crypto.encrypt(b"secret payload", PASSWORD, compress=False))
        blob[-1] ^= 0x01
        with self.assertRaises(DecryptionError):
            crypto.decrypt(bytes(blob), PASSWORD)

    def test_tampered_tag(self):
        """Flipping a tag byte fails authentication."""
        blob = bytearray(crypto.encrypt(b"secret payload", PASSWORD))
        blob[8 + 32 + 16] ^= 0x80
        with self.assertRaises(DecryptionError):
            crypto.decrypt(bytes(blob), PASSWORD)

    def test_unknown_header(self):
        """A blob with an unknown header raises FormatError."""
        blob = crypto.encrypt(b"secret", PASSWORD)
        with self.assertRaises(FormatError):
            crypto.decrypt(b"AGSYNC99" + blob[8:], PASSWORD)

    def test_short_blob(self):
        """A blob shorter than the fixed prefix raises FormatError."""
        with self.assertRaises(FormatError):
            crypto.decrypt(crypto.HEADER_RAW + b"\x00" * 10, PASSWORD)

    def test_string_helpers(self):
        """encrypt_string/decrypt_string use base64 text; garbage is a FormatError."""
        encoded = crypto.encrypt_string("héllo", PASSWORD)
        self.assertIsInstance(encoded, str)
        self.assertEqual(crypto.decrypt_string(encoded, PASSWORD), "héllo")
        with self.assertRaises(FormatError):
            crypto.decrypt_string("!!not base64!!", PASSWORD)


class TestPasswordHash(unittest.TestCase):

    def test_verify(self):
        """verify_password_hash accepts the right password only."""
        salt = os.urandom(32)
        digest = crypto.hash_password(PASSWORD, salt)
        self.assertEqual(len(digest), 64)
        self.assertTrue(crypto.verify_password_hash(PASSWORD, salt, digest))
        self.assertFalse(crypto.verify_password_hash("other", salt, digest))

    def test_machine_id_is_stable(self):
        """generate_machine_id is deterministic for this host and user."""
        self.assertEqual(crypto.generate_machine_id(), crypto.generate_machine_id())
        self.assertEqual(len(crypto.generate_machine_id()), 32)


if __name__ == "__main__":
    unittest.main()
