from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from backend.auth.principal import PrincipalKind
from backend.core import config


class InvalidTokenError(Exception):
    """Raised when a token is unsigned, tampered with, malformed or expired."""


@dataclass(frozen=True)
class TokenClaims:
    principal_id: str
    principal_kind: PrincipalKind


def create_access_token(
    principal_id: str,
    principal_kind: PrincipalKind | str,
    expires_minutes: int | None = None,
) -> str:
    kind = PrincipalKind.parse(principal_kind)
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": str(principal_id),
        "kind": kind.value,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=expire_minutes),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET_KEY,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as exc:
        raise InvalidTokenError(str(exc)) from exc

    principal_id = payload.get("sub")
    if not isinstance(principal_id, str) or not principal_id:
        raise InvalidTokenError("Token subject is missing")

    try:
        kind = PrincipalKind.parse(payload.get("kind"))
    except ValueError as exc:
        raise InvalidTokenError(str(exc)) from exc

    return TokenClaims(principal_id=principal_id, principal_kind=kind)
