import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from backend.auth.principal import Principal, PrincipalKind
from backend.auth.resolver import (
    InvalidTokenError,
    PrincipalNotFoundError,
    StoreUnavailableError,
    resolve_principal,
)
from backend.database import get_db
from backend.models.course import CourseEnrollment

logger = logging.getLogger(__name__)

# a missing header means an anonymous request, not an error
security = HTTPBearer(auto_error=False)

NO_TOKEN_MESSAGE = "Not authorized, no token"
TOKEN_FAILED_MESSAGE = "Not authorized, token failed"
STORE_UNAVAILABLE_MESSAGE = "Authentication service unavailable, please retry"
ADMIN_REQUIRED_MESSAGE = "Not authorized as an admin"
PREMIUM_REQUIRED_MESSAGE = "Access denied. Premium or course registration required."
KIND_REQUIRED_MESSAGES = {
    PrincipalKind.USER: "Access denied. Students only.",
    PrincipalKind.MENTOR: "Access denied. Mentors only.",
    PrincipalKind.SCHOOL: "Access denied. Schools only.",
}


def is_kind(principal: Principal | None, kind: PrincipalKind) -> bool:
    return principal is not None and principal.kind is kind


def is_admin(principal: Principal | None) -> bool:
    return is_kind(principal, PrincipalKind.USER) and principal.record.role == "admin"


def is_premium_or_enrolled(principal: Principal | None, enrollment_count: int) -> bool:
    if not is_kind(principal, PrincipalKind.USER):
        return False
    return bool(principal.record.is_premium) or enrollment_count > 0


def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> Principal | None:
    token = credentials.credentials if credentials else None
    try:
        return resolve_principal(db, token)
    except (InvalidTokenError, PrincipalNotFoundError) as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=TOKEN_FAILED_MESSAGE,
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=STORE_UNAVAILABLE_MESSAGE,
        ) from exc


def get_current_principal(principal: Principal | None = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NO_TOKEN_MESSAGE,
        )
    return principal


def require_kind(kind: PrincipalKind):
    """Build a dependency that admits only principals of ``kind``."""
    message = KIND_REQUIRED_MESSAGES[kind]

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not is_kind(principal, kind):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)
        return principal

    dependency.__name__ = f"require_{kind.value}"
    return dependency


require_user = require_kind(PrincipalKind.USER)
require_mentor = require_kind(PrincipalKind.MENTOR)
require_school = require_kind(PrincipalKind.SCHOOL)


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not is_admin(principal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=ADMIN_REQUIRED_MESSAGE)
    return principal


def require_premium_or_enrolled(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> Principal:
    enrollment_count = 0
    if is_kind(principal, PrincipalKind.USER) and not principal.record.is_premium:
        enrollment_count = db.query(CourseEnrollment).filter(CourseEnrollment.user_id == principal.id).count()

    if not is_premium_or_enrolled(principal, enrollment_count):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=PREMIUM_REQUIRED_MESSAGE)
    return principal
