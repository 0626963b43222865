import logging
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.passwords import verify_password
from backend.core.clock import as_naive_utc

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_MESSAGE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def database_unavailable(exc: Exception) -> HTTPException:
    logger.exception('Database operation failed', exc_info=exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_MESSAGE,
    )


def get_or_404(db: Session, model, resource_id: str, detail: str):
    resource = db.query(model).filter(model.id == resource_id).first()
    if resource is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return resource


def commit_changes(db: Session, *refresh, conflict_detail: str | None = None) -> None:
    """Commit the session, refreshing ``refresh`` objects afterwards.

    A unique-constraint violation becomes 409 when ``conflict_detail`` is
    given; every other database failure is rolled back and reported as 503.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if conflict_detail is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=conflict_detail) from exc
        raise database_unavailable(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    for instance in refresh:
        db.refresh(instance)


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized or '@' not in normalized:
        raise ValueError('A valid email address is required.')
    return normalized


def require_text(value: str, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{field_name} is required.')
    return normalized


def normalize_datetime(value: datetime | None) -> datetime | None:
    return as_naive_utc(value)


def apply_updates(resource, updates: dict) -> None:
    for field_name, value in updates.items():
        setattr(resource, field_name, value)


def authenticate_principal(db: Session, model, email_column, email: str, password: str):
    """Load the record whose ``email_column`` matches and check its password.

    Unknown email and wrong password answer with the same 401 message.
    """
    record = db.query(model).filter(email_column == email).first()
    if record is None or not verify_password(password, record.hashed_password):
        logger.info('Failed %s login attempt', model.__tablename__)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid email or password',
        )
    return record
