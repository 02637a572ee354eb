"""
Crypto codec: password-based AES-256-GCM with optional gzip compression

Blob layout:
  +---------+---------+----------+----------+------------+
  | header  | salt    | nonce    | tag      | ciphertext |
  | 8 bytes | 32 B    | 16 bytes | 16 bytes | N bytes    |
  +---------+---------+----------+----------+------------+

HEADER_RAW marks a raw payload, HEADER_GZIP a gzip-compressed one. Both are
accepted on decrypt so blobs written before compression existed still open.
"""
import base64
import getpass
import gzip
import hashlib
import hmac
import os
import socket
import zlib

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError, FormatError

HEADER_RAW = b"AGSYNC01"
HEADER_GZIP = b"AGSYNC02"
HEADER_LENGTH = 8
SALT_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000

_PREFIX_LENGTH = HEADER_LENGTH + SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH


def derive_key(password: str, salt: bytes) -> bytes:
    """PBKDF2-HMAC-SHA256 of the password over salt, 32 bytes."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def generate_salt() -> bytes:
    return os.urandom(SALT_LENGTH)


def encrypt(data: bytes, password: str, compress: bool = True) -> bytes:
    """Encrypt data under password; fresh salt and nonce on every call."""
    salt = generate_salt()
    nonce = os.urandom(NONCE_LENGTH)
    key = derive_key(password, salt)

    header = HEADER_RAW
    payload = data
    if compress:
        payload = gzip.compress(data, compresslevel=6)
        header = HEADER_GZIP

    # AESGCM returns ciphertext || tag
    sealed = AESGCM(key).encrypt(nonce, payload, None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return b"".join((header, salt, nonce, tag, ciphertext))


def decrypt(blob: bytes, password: str) -> bytes:
    """Decrypt a blob produced by encrypt().

    Raises FormatError for a short blob or an unknown header and
    DecryptionError when the tag does not verify (wrong password or
    tampered bytes).
    """
    if len(blob) < _PREFIX_LENGTH:
        raise FormatError("Encrypted data is too short")

    header = blob[:HEADER_LENGTH]
    if header not in (HEADER_RAW, HEADER_GZIP):
        raise FormatError("Invalid file format or unsupported version")

    off = HEADER_LENGTH
    salt = blob[off:off + SALT_LENGTH]
    off += SALT_LENGTH
    nonce = blob[off:off + NONCE_LENGTH]
    off += NONCE_LENGTH
    tag = blob[off:off + TAG_LENGTH]
    ciphertext = blob[off + TAG_LENGTH:]

    key = derive_key(password, salt)
    try:
        payload = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise DecryptionError("Decryption failed: incorrect password or corrupted data") from None

    if header == HEADER_GZIP:
        try:
            return gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as exc:
            # Authenticated but not gzip: written by a broken encoder
            raise FormatError(f"Compressed payload is corrupt: {exc}") from exc
    return payload


def encrypt_string(text: str, password: str) -> str:
    """Encrypt a short string (uncompressed) and return base64 text."""
    return base64.b64encode(encrypt(text.encode("utf-8"), password, compress=False)).decode("ascii")


def decrypt_string(encoded: str, password: str) -> str:
    try:
        blob = base64.b64decode(encoded.encode("ascii"), validate=True)
    except (ValueError, UnicodeEncodeError) as exc:
        raise FormatError(f"Not base64: {exc}") from exc
    return decrypt(blob, password).decode("utf-8")


def hash_password(password: str, salt: bytes) -> str:
    """Hex PBKDF2 key, stored in the manifest to check that every machine
    uses the same password."""
    return derive_key(password, salt).hex()


def verify_password_hash(password: str, salt: bytes, expected: str) -> bool:
    return hmac.compare_digest(hash_password(password, salt), expected)


def generate_machine_id() -> str:
    """Stable id for this machine: survives reinstalls on the same host/user."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    ident = f"{socket.gethostname()}-{user}"
    machine_id = hashlib.md5(ident.encode("utf-8")).hexdigest()[:32]
    return machine_id
