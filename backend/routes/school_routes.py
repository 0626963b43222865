import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_admin, require_school
from backend.auth.jwt_handler import create_access_token
from backend.auth.passwords import MIN_PASSWORD_LENGTH, hash_password
from backend.auth.principal import Principal, PrincipalKind
from backend.core.clock import utcnow
from backend.database import get_db
from backend.models.course import Course
from backend.models.school import School, SchoolCourse, SchoolStudent
from backend.models.user import User
from backend.routes.shared import (
    apply_updates,
    authenticate_principal,
    commit_changes,
    get_or_404,
    normalize_datetime,
    normalize_email,
    require_text,
)
from backend.routes.user_routes import LoginRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=['schools'])

ENROLLMENT_STATUSES = {'open', 'closed', 'coming-soon'}
ADDRESS_FIELDS = ('street', 'city', 'state', 'country', 'pincode')


class AddressPayload(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    pincode: str | None = None


class RegisterSchoolRequest(BaseModel):
    organization_name: str
    organization_email: str
    password: str
    head_name: str
    head_email: str
    head_contact_number: str
    address: AddressPayload | None = None
    website: str | None = None
    established: int | None = None
    description: str | None = None

    @field_validator('organization_name', 'head_name', 'head_contact_number')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return require_text(value, 'This field')

    @field_validator('organization_email', 'head_email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value


class UpdateSchoolProfileRequest(BaseModel):
    organization_name: str | None = None
    head_name: str | None = None
    head_email: str | None = None
    head_contact_number: str | None = None
    address: AddressPayload | None = None
    website: str | None = None
    established: int | None = None
    description: str | None = None


class SchoolResponse(BaseModel):
    id: str
    organization_name: str
    organization_email: str
    head_name: str
    head_email: str
    head_contact_number: str
    address: dict
    website: str | None = None
    established: int | None = None
    description: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class SchoolAuthResponse(SchoolResponse):
    token: str


class AddStudentRequest(BaseModel):
    user_id: str
    remarks: str | None = None


class ExamResultPayload(BaseModel):
    exam_name: str
    score: float
    max_score: float
    date: datetime | None = None

    @field_validator('exam_name')
    @classmethod
    def validate_exam_name(cls, value: str) -> str:
        return require_text(value, 'Exam name')

    @field_validator('date')
    @classmethod
    def validate_date(cls, value: datetime | None) -> datetime | None:
        return normalize_datetime(value)


class UpdateStudentRequest(BaseModel):
    remarks: str | None = None
    results: list[ExamResultPayload] = []


class AttendanceRequest(BaseModel):
    present: int = 0
    total: int = 0

    @field_validator('present', 'total')
    @classmethod
    def validate_counts(cls, value: int) -> int:
        if value < 0:
            raise ValueError('Attendance counts cannot be negative.')
        return value


class SchoolStudentResponse(BaseModel):
    id: str
    school_id: str
    user_id: str
    remarks: str | None = None
    results: list[dict]
    attendance_present: int
    attendance_total: int
    attendance_percentage: float
    added_at: datetime

    class Config:
        from_attributes = True


class AddSchoolCourseRequest(BaseModel):
    course_id: str
    enrollment_status: str = 'open'

    @field_validator('enrollment_status')
    @classmethod
    def validate_enrollment_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ENROLLMENT_STATUSES:
            raise ValueError('Invalid enrollment status.')
        return normalized


class SchoolCourseStatusRequest(BaseModel):
    enrollment_status: str

    @field_validator('enrollment_status')
    @classmethod
    def validate_enrollment_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ENROLLMENT_STATUSES:
            raise ValueError('Invalid enrollment status.')
        return normalized


class SchoolCourseResponse(BaseModel):
    id: str
    school_id: str
    course_id: str
    enrollment_status: str

    class Config:
        from_attributes = True


def build_auth_response(school: School) -> SchoolAuthResponse:
    payload = SchoolResponse.model_validate(school).model_dump()
    return SchoolAuthResponse(**payload, token=create_access_token(school.id, PrincipalKind.SCHOOL))


def attendance_percentage(present: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return present / total * 100


def get_roster_entry(db: Session, school_id: str, user_id: str) -> SchoolStudent:
    entry = db.query(SchoolStudent).filter(
        SchoolStudent.school_id == school_id,
        SchoolStudent.user_id == user_id,
    ).first()
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found in school')
    return entry


def get_offering(db: Session, school_id: str, course_id: str) -> SchoolCourse:
    offering = db.query(SchoolCourse).filter(
        SchoolCourse.school_id == school_id,
        SchoolCourse.course_id == course_id,
    ).first()
    if offering is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found in school')
    return offering


@router.post('/register', response_model=SchoolAuthResponse, status_code=status.HTTP_201_CREATED)
def register_school(data: RegisterSchoolRequest, db: Session = Depends(get_db)):
    if db.query(School).filter(School.organization_email == data.organization_email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='School already exists')

    school = School(
        organization_name=data.organization_name,
        organization_email=data.organization_email,
        hashed_password=hash_password(data.password),
        head_name=data.head_name,
        head_email=data.head_email,
        head_contact_number=data.head_contact_number,
        address=data.address.model_dump() if data.address else {},
        website=data.website,
        established=data.established,
        description=data.description,
    )
    db.add(school)
    commit_changes(db, school, conflict_detail='School already exists')
    logger.info('Registered school %s', school.id)

    return build_auth_response(school)


@router.post('/login', response_model=SchoolAuthResponse)
def login_school(data: LoginRequest, db: Session = Depends(get_db)):
    school = authenticate_principal(db, School, School.organization_email, data.email, data.password)
    return build_auth_response(school)


@router.get('/', response_model=list[SchoolResponse])
def list_schools(db: Session = Depends(get_db)):
    return db.query(School).order_by(School.organization_name.asc()).all()


@router.get('/profile', response_model=SchoolResponse)
def get_school_profile(principal: Principal = Depends(require_school)):
    return principal.record


@router.put('/profile', response_model=SchoolResponse)
def update_school_profile(
    data: UpdateSchoolProfileRequest,
    principal: Principal = Depends(require_school),
    db: Session = Depends(get_db),
):
    school = principal.record
    updates = data.model_dump(exclude_unset=True, exclude={'address'})
    apply_updates(school, {key: value for key, value in updates.items() if value is not None})
    if data.address is not None:
        merged = dict(school.address or {})
        merged.update(data.address.model_dump(exclude_none=True))
        school.address = merged

    commit_changes(db, school)
    return school


@router.get('/students', response_model=list[SchoolStudentResponse])
def list_school_students(principal: Principal = Depends(require_school), db: Session = Depends(get_db)):
    return db.query(SchoolStudent).filter(
        SchoolStudent.school_id == principal.id,
    ).order_by(SchoolStudent.added_at.asc()).all()


@router.post('/students', response_model=SchoolStudentResponse, status_code=status.HTTP_201_CREATED)
def add_school_student(
    data: AddStudentRequest,
    principal: Principal = Depends(require_school),
    db: Session = Depends(get_db),
):
    get_or_404(db, User, data.user_id, 'User not found')

    existing = db.query(SchoolStudent).filter(
        SchoolStudent.school_id == principal.id,
        SchoolStudent.user_id == data.user_id,
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Student already added to school')

    entry = SchoolStudent(school_id=principal.id, user_id=data.user_id, remarks=data.remarks, results=[])
    db.add(entry)
    commit_changes(db, entry, conflict_detail='Student already added to school')
    return entry


@router.put('/students/{user_id}', response_model=SchoolStudentResponse)
def update_school_student(
    user_id: str,
    data: UpdateStudentRequest,
    principal: Principal = Depends(require_school),
    db: Session = Depends(get_db),
):
    entry = get_roster_entry(db, principal.id, user_id)

    if data.remarks is not None:
        entry.remarks = data.remarks
    if data.results:
        recorded = [
            {
                'exam_name': result.exam_name,
                'score': result.score,
                'max_score': result.max_score,
                'date': (result.date or utcnow()).isoformat(),
            }
            for result in data.results
        ]
        # reassign so the JSON column is flagged dirty
        entry.results = [*(entry.results or []), *recorded]

    commit_changes(db, entry)
    return entry


@router.put('/students/{user_id}/attendance', response_model=SchoolStudentResponse)
def update_school_student_attendance(
    user_id: str,
    data: AttendanceRequest,
    principal: Principal = Depends(require_school),
    db: Session = Depends(get_db),
):
    entry = get_roster_entry(db, principal.id, user_id)
    if data.present > data.total:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Present count cannot exceed total count',
        )

    entry.attendance_present += data.present
    entry.attendance_total += data.total
    entry.attendance_percentage = attendance_percentage(entry.attendance_present, entry.attendance_total)

    user = db.query(User).filter(User.id == user_id).first()
    if user is not None:
        user.attendance_count = entry.attendance_present

    commit_changes(db, entry)
    return entry


@router.get('/courses', response_model=list[SchoolCourseResponse])
def list_school_courses(principal: Principal = Depends(require_school), db: Session = Depends(get_db)):
    return db.query(SchoolCourse).filter(SchoolCourse.school_id == principal.id).all()


@router.post('/courses', response_model=SchoolCourseResponse, status_code=status.HTTP_201_CREATED)
def add_school_course(
    data: AddSchoolCourseRequest,
    principal: Principal = Depends(require_school),
    db: Session = Depends(get_db),
):
    get_or_404(db, Course, data.course_id, 'Course not found')

    existing = db.query(SchoolCourse).filter(
        SchoolCourse.school_id == principal.id,
        SchoolCourse.course_id == data.course_id,
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Course already added to school')

    offering = SchoolCourse(
        school_id=principal.id,
        course_id=data.course_id,
        enrollment_status=data.enrollment_status,
    )
    db.add(offering)
    commit_changes(db, offering, conflict_detail='Course already added to school')
    return offering


@router.put('/courses/{course_id}', response_model=SchoolCourseResponse)
def update_school_course_status(
    course_id: str,
    data: SchoolCourseStatusRequest,
    principal: Principal = Depends(require_school),
    db: Session = Depends(get_db),
):
    offering = get_offering(db, principal.id, course_id)
    offering.enrollment_status = data.enrollment_status

    commit_changes(db, offering)
    return offering


@router.delete('/courses/{course_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_school_course(
    course_id: str,
    principal: Principal = Depends(require_school),
    db: Session = Depends(get_db),
):
    offering = get_offering(db, principal.id, course_id)
    db.delete(offering)
    commit_changes(db)


@router.get('/{school_id}', response_model=SchoolResponse)
def get_school(school_id: str, db: Session = Depends(get_db)):
    return get_or_404(db, School, school_id, 'School not found')


@router.delete('/{school_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_school(school_id: str, _: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    school = get_or_404(db, School, school_id, 'School not found')

    db.query(SchoolStudent).filter(SchoolStudent.school_id == school.id).delete(synchronize_session=False)
    db.query(SchoolCourse).filter(SchoolCourse.school_id == school.id).delete(synchronize_session=False)
    db.delete(school)
    commit_changes(db)
    logger.info('Deleted school %s', school_id)
