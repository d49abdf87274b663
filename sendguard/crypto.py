"""At-rest encryption for provider secrets."""

import base64
import binascii
import hashlib
import json
import os
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_VERSION = "v1"
NONCE_SIZE = 12
TAG_SIZE = 16

_DEV_SEED = b"sendguard-dev-encryption-key"


def _resolve_master_key(encryption_key: Optional[str]) -> bytes:
    if not encryption_key:
        # Development fallback; production deployments set SENDGUARD_ENCRYPTION_KEY.
        return hashlib.sha256(_DEV_SEED).digest()
    try:
        decoded = base64.b64decode(encryption_key, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == 32:
        return decoded
    return hashlib.sha256(encryption_key.encode("utf-8")).digest()


class SecretBox:
    """AES-256-GCM envelope for secrets stored in the database."""

    def __init__(self, encryption_key: Optional[str] = None):
        self._aesgcm = AESGCM(_resolve_master_key(encryption_key))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret into a JSON envelope string."""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, auth_tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return json.dumps(
            {
                "keyVersion": KEY_VERSION,
                "nonce": base64.b64encode(nonce).decode("ascii"),
                "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
                "authTag": base64.b64encode(auth_tag).decode("ascii"),
            }
        )

    def decrypt(self, envelope: str) -> str:
        """Decrypt a JSON envelope produced by :meth:`encrypt`.

        Raises ``cryptography.exceptions.InvalidTag`` when the envelope was
        tampered with or sealed under a different master key.
        """
        payload = json.loads(envelope)
        nonce = base64.b64decode(payload["nonce"])
        sealed = base64.b64decode(payload["ciphertext"]) + base64.b64decode(
            payload["authTag"]
        )
        return self._aesgcm.decrypt(nonce, sealed, None).decode("utf-8")


def hash_string(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
