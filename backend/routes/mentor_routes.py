import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_admin, require_mentor
from backend.auth.jwt_handler import create_access_token
from backend.auth.passwords import MIN_PASSWORD_LENGTH, hash_password
from backend.auth.principal import Principal, PrincipalKind
from backend.database import get_db
from backend.models.course import Course, CourseEnrollment
from backend.models.live_class import LiveClass
from backend.models.mentor import Mentor
from backend.models.user import User
from backend.routes.class_routes import ClassResponse
from backend.routes.course_routes import CourseResponse
from backend.routes.shared import (
    apply_updates,
    authenticate_principal,
    commit_changes,
    get_or_404,
    normalize_email,
    require_text,
)
from backend.routes.user_routes import LoginRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=['mentors'])

MENTOR_STATUSES = {'pending', 'active', 'inactive'}


def normalize_string_list(values: list[str]) -> list[str]:
    return [value.strip() for value in values if value and value.strip()]


class RegisterMentorRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str
    contact_number: str
    skills: list[str] = []
    languages: list[str] = []
    about: str | None = None

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

    @field_validator('skills', 'languages')
    @classmethod
    def validate_lists(cls, value: list[str]) -> list[str]:
        return normalize_string_list(value)


class UpdateMentorProfileRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    contact_number: str | None = None
    skills: list[str] | None = None
    languages: list[str] | None = None
    about: str | None = None
    profile_image: str | None = None

    @field_validator('skills', 'languages')
    @classmethod
    def validate_lists(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return normalize_string_list(value)


class MentorStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in MENTOR_STATUSES:
            raise ValueError('Invalid mentor status.')
        return normalized


class MentorResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    contact_number: str
    status: str
    skills: list[str]
    languages: list[str]
    about: str | None = None
    profile_image: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class MentorAuthResponse(MentorResponse):
    token: str


class MentorStudentResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str

    class Config:
        from_attributes = True


def build_auth_response(mentor: Mentor) -> MentorAuthResponse:
    payload = MentorResponse.model_validate(mentor).model_dump()
    return MentorAuthResponse(**payload, token=create_access_token(mentor.id, PrincipalKind.MENTOR))


@router.post('/register', response_model=MentorAuthResponse, status_code=status.HTTP_201_CREATED)
def register_mentor(data: RegisterMentorRequest, db: Session = Depends(get_db)):
    if db.query(Mentor).filter(Mentor.email == data.email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Mentor already exists')

    mentor = Mentor(
        first_name=data.first_name,
        last_name=data.last_name,
        email=data.email,
        hashed_password=hash_password(data.password),
        contact_number=data.contact_number,
        skills=data.skills,
        languages=data.languages,
        about=data.about,
        status='pending',
    )
    db.add(mentor)
    commit_changes(db, mentor, conflict_detail='Mentor already exists')
    logger.info('Registered mentor %s', mentor.id)

    return build_auth_response(mentor)


@router.post('/login', response_model=MentorAuthResponse)
def login_mentor(data: LoginRequest, db: Session = Depends(get_db)):
    mentor = authenticate_principal(db, Mentor, Mentor.email, data.email, data.password)
    return build_auth_response(mentor)


@router.get('/', response_model=list[MentorResponse])
def list_active_mentors(db: Session = Depends(get_db)):
    return db.query(Mentor).filter(Mentor.status == 'active').order_by(Mentor.created_at.desc()).all()


@router.get('/profile', response_model=MentorResponse)
def get_mentor_profile(principal: Principal = Depends(require_mentor)):
    return principal.record


@router.put('/profile', response_model=MentorResponse)
def update_mentor_profile(
    data: UpdateMentorProfileRequest,
    principal: Principal = Depends(require_mentor),
    db: Session = Depends(get_db),
):
    mentor = principal.record
    updates = data.model_dump(exclude_unset=True)
    apply_updates(mentor, {key: value for key, value in updates.items() if value is not None})

    commit_changes(db, mentor)
    return mentor


@router.get('/courses', response_model=list[CourseResponse])
def list_mentor_courses(principal: Principal = Depends(require_mentor), db: Session = Depends(get_db)):
    return db.query(Course).filter(Course.created_by == principal.id).order_by(Course.created_at.desc()).all()


@router.get('/classes', response_model=list[ClassResponse])
def list_mentor_classes(principal: Principal = Depends(require_mentor), db: Session = Depends(get_db)):
    return db.query(LiveClass).filter(LiveClass.mentor_id == principal.id).order_by(LiveClass.start_time.asc()).all()


@router.get('/students', response_model=list[MentorStudentResponse])
def list_mentor_students(principal: Principal = Depends(require_mentor), db: Session = Depends(get_db)):
    return db.query(User).join(
        CourseEnrollment, CourseEnrollment.user_id == User.id,
    ).join(
        Course, Course.id == CourseEnrollment.course_id,
    ).filter(
        Course.created_by == principal.id,
    ).distinct().order_by(User.last_name.asc(), User.first_name.asc()).all()


@router.get('/{mentor_id}', response_model=MentorResponse)
def get_mentor(mentor_id: str, db: Session = Depends(get_db)):
    return get_or_404(db, Mentor, mentor_id, 'Mentor not found')


@router.put('/{mentor_id}/status', response_model=MentorResponse)
def update_mentor_status(
    mentor_id: str,
    data: MentorStatusRequest,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    mentor = get_or_404(db, Mentor, mentor_id, 'Mentor not found')
    mentor.status = data.status

    commit_changes(db, mentor)
    return mentor
