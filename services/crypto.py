"""
Token encryption at rest.

Tokens are sealed with AES-256-GCM. Each stored value looks like
``<key_id>:<base64(nonce | ciphertext | tag)>`` where ``key_id`` fingerprints
the key that sealed it, so values written under a previous secret can still
be opened while TOKEN_ENCRYPTION_PREVIOUS_SECRETS lists that secret.
"""
import base64
import hashlib
import os
from typing import Dict, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from settings import get_settings

NONCE_BYTES = 12
KEY_INFO = b"square-token-encryption"


class TokenDecryptionError(Exception):
    """Stored token could not be authenticated or decoded"""


def derive_key(secret: str) -> bytes:
    """Derive a 256-bit AES key from a configured secret"""
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=KEY_INFO)
    return hkdf.derive(secret.encode("utf-8"))


def key_id(key: bytes) -> str:
    return hashlib.sha256(key).hexdigest()[:8]


def _keyring() -> Tuple[str, Dict[str, bytes]]:
    """Return the current key id and every key accepted for decryption"""
    settings = get_settings()
    current = derive_key(settings.TOKEN_ENCRYPTION_SECRET)
    keys = {key_id(current): current}
    for secret in settings.TOKEN_ENCRYPTION_PREVIOUS_SECRETS:
        previous = derive_key(secret)
        keys.setdefault(key_id(previous), previous)
    return key_id(current), keys


def encrypt_token(token: str) -> str:
    """Encrypt a token with the current key and a fresh random nonce"""
    current_id, keys = _keyring()
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(keys[current_id]).encrypt(nonce, token.encode("utf-8"), None)
    return f"{current_id}:{base64.urlsafe_b64encode(nonce + sealed).decode('ascii')}"


def decrypt_token(encoded: str) -> str:
    """
    Decrypt a stored token.

    Raises:
        TokenDecryptionError: unknown key id, malformed value, or the
            authentication tag does not verify.
    """
    _, keys = _keyring()
    try:
        stored_id, body = encoded.split(":", 1)
        blob = base64.urlsafe_b64decode(body.encode("ascii"))
    except (AttributeError, ValueError) as e:
        raise TokenDecryptionError(f"Malformed encrypted token: {e}") from e

    key = keys.get(stored_id)
    if key is None:
        raise TokenDecryptionError(f"No encryption key with id {stored_id}")
    if len(blob) <= NONCE_BYTES:
        raise TokenDecryptionError("Encrypted token is truncated")

    nonce, sealed = blob[:NONCE_BYTES], blob[NONCE_BYTES:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise TokenDecryptionError("Encrypted token failed authentication") from e
    return plaintext.decode("utf-8")
