"""
Credential Engine: AES-GCM sealing of registration names.

Why:
    A registration record must be useless without the secret handed to the
    member out of band. Each name is sealed under its own random AES-256 key;
    the hex-encoded key *is* the secret, so possession of the secret and a
    successful tag check are the whole access-control mechanism.

Wire format:
    ciphertext = hex(nonce[12]) + hex(aes_gcm_seal(key, nonce, name))
    secret     = hex(key[32])

    The browser uploader seals names the same way, so records it produced
    can be redeemed here (see `with_key_and_nonce`).

Security:
    Never log secrets. `lookup_hash` is only a candidate filter, see below.
"""

from __future__ import annotations

import binascii
import hashlib
import secrets
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import BadCiphertext, BadKey, Inauthentic

NONCE_LENGTH = 12
KEY_LENGTH = 32


def _unhex(value: str) -> bytes:
    # Strict decoding: no whitespace, even length, hex digits only.
    return binascii.unhexlify(value.encode("ascii"))


def _cipher(key: bytes) -> AESGCM:
    try:
        return AESGCM(key)
    except ValueError as exc:
        raise BadKey(f"invalid key size {len(key)}") from exc


def encrypt(plaintext: str) -> Tuple[str, str]:
    """Seal `plaintext` under a fresh key and nonce.

    Returns:
        (ciphertext, secret), both hex strings. Two calls never share a key,
        even for identical plaintext.
    """
    key = secrets.token_bytes(KEY_LENGTH)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    return with_key_and_nonce(plaintext, key, nonce), key.hex()


def with_key_and_nonce(plaintext: str, key: bytes, nonce: bytes) -> str:
    """Seal with an explicit key and nonce.

    The caller is responsible for key/nonce generation. Intended for test
    vectors and cross-implementation checks; production code uses `encrypt`.
    """
    if len(nonce) != NONCE_LENGTH:
        raise ValueError("nonce must be 12 bytes")
    sealed = _cipher(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return nonce.hex() + sealed.hex()


def decrypt(ciphertext: str, secret: str) -> str:
    """Open `ciphertext` with `secret`.

    Raises:
        BadCiphertext: ciphertext is not hex or shorter than the nonce.
        BadKey: secret is not hex or not a 16/24/32-byte key.
        Inauthentic: the secret does not belong to this ciphertext.
    """
    try:
        raw = _unhex(ciphertext)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise BadCiphertext(f"ciphertext is not hex: {exc}") from exc
    if len(raw) < NONCE_LENGTH:
        raise BadCiphertext("ciphertext too short")

    try:
        key = _unhex(secret)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise BadKey(f"key is not hex: {exc}") from exc
    cipher = _cipher(key)

    try:
        plain = cipher.decrypt(raw[:NONCE_LENGTH], raw[NONCE_LENGTH:], None)
    except InvalidTag as exc:
        raise Inauthentic("message authentication failed") from exc
    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise BadCiphertext("plaintext is not UTF-8") from exc


def lookup_hash(secret: str) -> str:
    """Return the MD5 hex digest of the decoded secret bytes.

    This is a fast filter to shrink the candidate set before the expensive
    authenticated decrypt. It is NOT a security boundary: collisions are
    tolerated by the resolver, and admission correctness rests entirely on the
    AES-GCM tag check in `decrypt`.

    Raises:
        BadKey: secret is not hex.
    """
    try:
        key = _unhex(secret)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise BadKey(f"key is not hex: {exc}") from exc
    return hashlib.md5(key, usedforsecurity=False).hexdigest()


__all__ = [
    "NONCE_LENGTH",
    "KEY_LENGTH",
    "encrypt",
    "with_key_and_nonce",
    "decrypt",
    "lookup_hash",
]
