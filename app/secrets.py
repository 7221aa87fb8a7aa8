"""Fernet encryption for stored credentials.

``AGENTKIT_SECRET_KEY`` holds one key or a comma-separated list; the first
key encrypts and every key is tried on decrypt, so keys can be rotated by
prepending a new one. A 32-character raw key is accepted and base64-encoded.
"""

from __future__ import annotations

import base64
import logging
import os
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger("agentkit")

_DEV_KEY: dict = {"key": None}


class SecretStoreError(RuntimeError):
    pass


def _app_env() -> str:
    return os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"


def _as_fernet(raw: str) -> Fernet:
    if len(raw) == 32:
        raw = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("utf-8")
    try:
        return Fernet(raw.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise SecretStoreError("Invalid AGENTKIT_SECRET_KEY") from exc


def _configured_keys() -> List[str]:
    keys = [part.strip() for part in os.getenv("AGENTKIT_SECRET_KEY", "").split(",") if part.strip()]
    if keys:
        return keys
    if _app_env() != "dev":
        raise SecretStoreError("AGENTKIT_SECRET_KEY is not set")
    # dev only: process-local key, credentials do not survive a restart
    if _DEV_KEY["key"] is None:
        _DEV_KEY["key"] = Fernet.generate_key().decode("utf-8")
        logger.warning("secret_key_ephemeral env=dev")
    return [_DEV_KEY["key"]]


def _cipher() -> MultiFernet:
    return MultiFernet([_as_fernet(key) for key in _configured_keys()])


def encrypt_secret(value: str) -> str:
    return _cipher().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(token: str) -> str:
    try:
        return _cipher().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise SecretStoreError("Invalid secret token") from exc


def rotate_secret(token: str) -> str:
    """Re-encrypt ``token`` under the current primary key."""
    try:
        return _cipher().rotate(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise SecretStoreError("Invalid secret token") from exc


def mask_secret(value: str | None, visible: int = 4) -> str | None:
    if not value:
        return None
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * 4 + value[-visible:]


def resolve_secret(credentials, secret_ref: str | None, env_key: str | None = None) -> str:
    """Plaintext for a stored credential id, or the env var in dev when no id is given."""
    if secret_ref:
        plaintext: Optional[str] = credentials.get_plaintext(secret_ref)
        if not plaintext:
            raise SecretStoreError(f"Credential {secret_ref} has no stored secret")
        return plaintext
    if _app_env() != "dev":
        raise SecretStoreError("A credential id is required outside dev")
    if not env_key:
        raise SecretStoreError("No credential id or env var given")
    plaintext = os.getenv(env_key, "").strip()
    if not plaintext:
        raise SecretStoreError(f"{env_key} is not set")
    return plaintext
