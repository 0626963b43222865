"""Turns a bearer token into a loaded principal.

This is the only place that maps a principal kind to its storage table. The
outcome of ``resolve_principal`` is one of:

* ``None`` when no token was sent (anonymous request),
* a :class:`Principal` when the token verifies and its record exists,
* ``InvalidTokenError`` / ``PrincipalNotFoundError`` when the token is bad or
  stale; callers must treat both as unauthenticated,
* ``StoreUnavailableError`` when the store stayed unreachable after retrying.
"""

import logging

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, defer
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.auth.jwt_handler import InvalidTokenError, decode_access_token
from backend.auth.principal import Principal, PrincipalKind
from backend.core import config
from backend.models.mentor import Mentor
from backend.models.school import School
from backend.models.user import User

logger = logging.getLogger(__name__)

PRINCIPAL_MODELS = {
    PrincipalKind.USER: User,
    PrincipalKind.MENTOR: Mentor,
    PrincipalKind.SCHOOL: School,
}

_unmapped_kinds = set(PrincipalKind) - set(PRINCIPAL_MODELS)
if _unmapped_kinds:
    raise RuntimeError(f"No credential table registered for: {sorted(k.value for k in _unmapped_kinds)}")


class PrincipalNotFoundError(Exception):
    """The token verified but no record of its kind backs the embedded id."""


class StoreUnavailableError(Exception):
    """The credential store could not be reached after bounded retries."""


def model_for_kind(kind: PrincipalKind):
    return PRINCIPAL_MODELS[kind]


@retry(
    stop=stop_after_attempt(config.STORE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def load_principal_record(db: Session, kind: PrincipalKind, principal_id: str):
    model = model_for_kind(kind)
    try:
        return (
            db.query(model)
            .options(defer(model.hashed_password))
            .filter(model.id == principal_id)
            .first()
        )
    except OperationalError:
        db.rollback()
        raise


def resolve_principal(db: Session, token: str | None) -> Principal | None:
    """Resolve a bearer token to the principal it names, or None without a token.

    The record is looked up in the table for the token's kind only, so a
    forged kind claim finds no record and is rejected as not found.
    """
    if not token:
        return None

    claims = decode_access_token(token)

    try:
        record = load_principal_record(db, claims.principal_kind, claims.principal_id)
    except OperationalError as exc:
        logger.exception("Credential store unavailable while resolving a %s principal", claims.principal_kind.value)
        raise StoreUnavailableError("Credential store unavailable") from exc

    if record is None:
        raise PrincipalNotFoundError(f"No {claims.principal_kind.value} record for token subject")

    return Principal(kind=claims.principal_kind, record=record)


__all__ = [
    "InvalidTokenError",
    "PRINCIPAL_MODELS",
    "PrincipalNotFoundError",
    "StoreUnavailableError",
    "load_principal_record",
    "model_for_kind",
    "resolve_principal",
]
