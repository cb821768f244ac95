"""
Access and refresh tokens.

An access token names the user, their tenant and the role they are *acting
as*: a demo role switch re-issues the token and the user row keeps its
stored role. Refresh tokens are opaque and live in Redis as
``refresh:<token>`` → ``<user_id>:<role>``, so refreshing keeps the
switched role.
"""

import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from assessment_platform.config import settings

ALGORITHM = "HS256"
ISSUER = "assessment-platform"


class AccessClaims(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    sub: str
    tenant_id: str
    role: str
    email: str | None = None


def create_access_token(user_id: str, tenant_id: str, role: str, email: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id),
        "role": role,
        "email": email,
        "iss": ISSUER,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> AccessClaims:
    """
    Verify signature, expiry and issuer. Raises JWTError for any token that
    is not one of our access tokens or lacks the tenant/role claims.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM], issuer=ISSUER)
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    try:
        return AccessClaims.model_validate(payload)
    except ValidationError as exc:
        raise JWTError(f"Incomplete token claims ({exc.error_count()} missing or invalid)") from exc


# ── Refresh tokens ───────────────────────────────────────────────────────────

def create_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def refresh_key(token: str) -> str:
    return f"refresh:{token}"


def refresh_grant(user_id: str, role: str) -> str:
    return f"{user_id}:{role}"


def parse_refresh_grant(stored: str) -> tuple[str, str | None]:
    """``(user_id, role)``; grants written before role switching carry no role."""
    user_id, _, role = stored.partition(":")
    return user_id, role or None
