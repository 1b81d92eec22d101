from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet

from lifeapp.settings import get_settings


def _fernet() -> Fernet:
    settings = get_settings()
    digest = hashlib.sha256(settings.token_encryption_key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_token(value: str) -> str:
    return _fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_token(value: str) -> str:
    return _fernet().decrypt(value.encode("utf-8")).decode("utf-8")


def expires_at(token_data: dict) -> str:
    expires_in = int(token_data.get("expires_in", 3600) or 3600)
    return (datetime.now(timezone.utc) + timedelta(seconds=expires_in)).isoformat()


def is_fresh(token_row: dict) -> bool:
    """True when the stored access token exists and has not expired yet."""
    if not token_row.get("access_token") or not token_row.get("expires_at"):
        return False
    try:
        expires_dt = datetime.fromisoformat(str(token_row["expires_at"]).replace("Z", "+00:00"))
    except ValueError:
        return False
    return expires_dt > datetime.now(timezone.utc)
