import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_admin, require_user
from backend.auth.jwt_handler import create_access_token
from backend.auth.passwords import MIN_PASSWORD_LENGTH, hash_password
from backend.auth.principal import Principal, PrincipalKind
from backend.database import get_db
from backend.models.competition import CompetitionParticipant
from backend.models.course import CourseEnrollment
from backend.models.mock_test import MockTestAttempt
from backend.models.user import User
from backend.routes.competition_routes import ParticipantResponse
from backend.routes.course_routes import CourseEnrollmentResponse
from backend.routes.mock_test_routes import AttemptResultResponse
from backend.routes.shared import (
    apply_updates,
    authenticate_principal,
    commit_changes,
    get_or_404,
    normalize_email,
    require_text,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=['users'])


class RegisterUserRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str
    contact_number: str
    school_organization_name: str | None = None

    @field_validator('first_name', 'last_name', 'contact_number')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return require_text(value, 'This field')

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class UpdateUserProfileRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    contact_number: str | None = None
    school_organization_name: str | None = None
    password: str | None = None

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str | None) -> str | None:
        if value is not None and len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value


class BelowPovertyRequest(BaseModel):
    document_url: str

    @field_validator('document_url')
    @classmethod
    def validate_document_url(cls, value: str) -> str:
        return require_text(value, 'Document')


class UserResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    contact_number: str
    role: str
    is_premium: bool
    below_poverty_status: bool
    below_poverty_verified: bool
    school_organization_name: str | None = None
    attendance_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class UserAuthResponse(UserResponse):
    token: str


def build_auth_response(user: User) -> UserAuthResponse:
    payload = UserResponse.model_validate(user).model_dump()
    return UserAuthResponse(**payload, token=create_access_token(user.id, PrincipalKind.USER))


@router.post('/register', response_model=UserAuthResponse, status_code=status.HTTP_201_CREATED)
def register_user(data: RegisterUserRequest, db: Session = Depends(get_db)):
    if db.query(User).filter(User.email == data.email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='User already exists')

    user = User(
        first_name=data.first_name,
        last_name=data.last_name,
        email=data.email,
        hashed_password=hash_password(data.password),
        contact_number=data.contact_number,
        school_organization_name=data.school_organization_name,
        role='student',
    )
    db.add(user)
    commit_changes(db, user, conflict_detail='User already exists')
    logger.info('Registered user %s', user.id)

    return build_auth_response(user)


@router.post('/login', response_model=UserAuthResponse)
def login_user(data: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate_principal(db, User, User.email, data.email, data.password)
    return build_auth_response(user)


@router.get('/profile', response_model=UserResponse)
def get_user_profile(principal: Principal = Depends(require_user)):
    return principal.record


@router.put('/profile', response_model=UserResponse)
def update_user_profile(
    data: UpdateUserProfileRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    user = principal.record
    updates = data.model_dump(exclude_unset=True, exclude={'password'})
    apply_updates(user, {key: value for key, value in updates.items() if value is not None})
    if data.password:
        user.hashed_password = hash_password(data.password)

    commit_changes(db, user)
    return user


@router.put('/below-poverty', response_model=UserResponse)
def submit_below_poverty_document(
    data: BelowPovertyRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    user = principal.record
    user.below_poverty_status = True
    user.below_poverty_document = data.document_url
    # a new document always goes back through admin verification
    user.below_poverty_verified = False

    commit_changes(db, user)
    return user


@router.get('/courses', response_model=list[CourseEnrollmentResponse])
def list_my_course_enrollments(
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    return db.query(CourseEnrollment).filter(
        CourseEnrollment.user_id == principal.id,
    ).order_by(CourseEnrollment.enrolled_on.desc()).all()


@router.get('/competitions', response_model=list[ParticipantResponse])
def list_my_competitions(
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    return db.query(CompetitionParticipant).filter(
        CompetitionParticipant.user_id == principal.id,
    ).order_by(CompetitionParticipant.registered_at.desc()).all()


@router.get('/mock-tests', response_model=list[AttemptResultResponse])
def list_my_mock_test_results(
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    return db.query(MockTestAttempt).filter(
        MockTestAttempt.user_id == principal.id,
        MockTestAttempt.submitted_at.is_not(None),
    ).order_by(MockTestAttempt.submitted_at.desc()).all()


@router.get('/', response_model=list[UserResponse])
def list_users(_: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(User).order_by(User.created_at.desc()).all()


@router.get('/{user_id}', response_model=UserResponse)
def get_user(user_id: str, _: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return get_or_404(db, User, user_id, 'User not found')


@router.put('/{user_id}/below-poverty/verify', response_model=UserResponse)
def verify_below_poverty_status(
    user_id: str,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = get_or_404(db, User, user_id, 'User not found')
    if not user.below_poverty_status or not user.below_poverty_document:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='User has not submitted a below-poverty document',
        )

    user.below_poverty_verified = True
    commit_changes(db, user)
    return user
