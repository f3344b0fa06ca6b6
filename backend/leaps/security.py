from __future__ import annotations
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt
from leaps.config import settings

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
ACCESS_TTL_MIN = int(os.getenv("ACCESS_TTL_MIN", "15"))

def make_access_token(sub: str, *, role: str, cohort: str | None = None, school: str | None = None) -> str:
    """Tokens are minted by the auth service; this exists for local tooling and tests."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "type": "access",
        "role": role,
        "cohort": cohort,
        "school": school,
        "iat": now.timestamp(),
        "exp": int((now + timedelta(minutes=ACCESS_TTL_MIN)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)

def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])

def sign_webhook(body: bytes, secret: str | None = None) -> str:
    secret = settings.kajabi_webhook_secret if secret is None else secret
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

def verify_webhook_signature(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    secret = settings.kajabi_webhook_secret if secret is None else secret
    if not secret or not signature:
        return False
    sig = signature.strip()
    if sig.startswith("sha256="):
        sig = sig[len("sha256="):]
    return hmac.compare_digest(sign_webhook(body, secret), sig)
