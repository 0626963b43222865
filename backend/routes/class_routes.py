import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal, require_mentor, require_user
from backend.auth.ownership import ensure_can_mutate, is_owner
from backend.auth.principal import Principal
from backend.core.clock import utcnow
from backend.database import get_db
from backend.models.course import Course, CourseEnrollment
from backend.models.live_class import DEFAULT_MAX_STUDENTS, ClassEnrollment, ClassWaitlistEntry, LiveClass
from backend.routes.shared import apply_updates, commit_changes, get_or_404, normalize_datetime, require_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=['classes'])

CLASS_STATUSES = {'scheduled', 'completed', 'cancelled'}
CLASS_NOT_FOUND = 'Class not found'
ENROLLED = 'enrolled'
WAITLISTED = 'waitlisted'


class CreateClassRequest(BaseModel):
    title: str
    description: str | None = None
    course_id: str | None = None
    start_time: datetime
    end_time: datetime
    meeting_link: str | None = None
    max_students: int = DEFAULT_MAX_STUDENTS

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return require_text(value, 'Title')

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime) -> datetime:
        return normalize_datetime(value)

    @field_validator('max_students')
    @classmethod
    def validate_max_students(cls, value: int) -> int:
        if value < 1:
            raise ValueError('A class must allow at least one student.')
        return value


class UpdateClassRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    meeting_link: str | None = None
    max_students: int | None = None
    status: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime | None) -> datetime | None:
        return normalize_datetime(value)

    @field_validator('max_students')
    @classmethod
    def validate_max_students(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError('A class must allow at least one student.')
        return value

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in CLASS_STATUSES:
            raise ValueError('Invalid class status.')
        return normalized


class ClassResponse(BaseModel):
    id: str
    title: str
    description: str | None = None
    mentor_id: str
    course_id: str | None = None
    start_time: datetime
    end_time: datetime
    meeting_link: str | None = None
    max_students: int
    is_cancelled: bool
    status: str
    materials: list[dict]
    created_at: datetime

    class Config:
        from_attributes = True


class ClassDetailResponse(ClassResponse):
    enrolled_students: list[str] = []
    waiting_list: list[str] = []


class ClassEnrollmentResult(BaseModel):
    status: str
    live_class: ClassDetailResponse


class AttendanceRequest(BaseModel):
    attendance: dict[str, bool]


class AttendanceRecord(BaseModel):
    user_id: str
    attended: bool | None = None


class AttendanceResponse(BaseModel):
    class_id: str
    status: str
    records: list[AttendanceRecord]


class MaterialRequest(BaseModel):
    title: str
    file_url: str

    @field_validator('title', 'file_url')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return require_text(value, 'This field')


def enrolled_user_ids(db: Session, class_id: str) -> list[str]:
    rows = db.query(ClassEnrollment.user_id).filter(
        ClassEnrollment.class_id == class_id,
    ).order_by(ClassEnrollment.enrolled_at.asc()).all()
    return [row.user_id for row in rows]


def waitlisted_user_ids(db: Session, class_id: str) -> list[str]:
    rows = db.query(ClassWaitlistEntry.user_id).filter(
        ClassWaitlistEntry.class_id == class_id,
    ).order_by(ClassWaitlistEntry.added_at.asc()).all()
    return [row.user_id for row in rows]


def find_waitlist_entry(db: Session, class_id: str, user_id: str) -> ClassWaitlistEntry | None:
    return db.query(ClassWaitlistEntry).filter(
        ClassWaitlistEntry.class_id == class_id,
        ClassWaitlistEntry.user_id == user_id,
    ).first()


def build_class_detail(db: Session, live_class: LiveClass) -> ClassDetailResponse:
    payload = ClassResponse.model_validate(live_class).model_dump()
    return ClassDetailResponse(
        **payload,
        enrolled_students=enrolled_user_ids(db, live_class.id),
        waiting_list=waitlisted_user_ids(db, live_class.id),
    )


def validate_time_range(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='End time must be after start time',
        )


@router.get('/', response_model=list[ClassResponse])
def list_upcoming_classes(db: Session = Depends(get_db)):
    return db.query(LiveClass).filter(
        LiveClass.is_cancelled.is_(False),
        LiveClass.end_time > utcnow(),
    ).order_by(LiveClass.start_time.asc()).all()


@router.post('/', response_model=ClassDetailResponse, status_code=status.HTTP_201_CREATED)
def create_class(
    data: CreateClassRequest,
    principal: Principal = Depends(require_mentor),
    db: Session = Depends(get_db),
):
    validate_time_range(data.start_time, data.end_time)

    course = None
    if data.course_id:
        course = get_or_404(db, Course, data.course_id, 'Course not found')
        if not is_owner(course.owner_ref, principal):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Classes can only be linked to your own courses',
            )

    live_class = LiveClass(
        title=data.title,
        description=data.description,
        mentor_id=principal.id,
        course_id=course.id if course else None,
        start_time=data.start_time,
        end_time=data.end_time,
        meeting_link=data.meeting_link,
        max_students=data.max_students,
        materials=[],
    )
    db.add(live_class)
    db.flush()

    if course is not None:
        # course students fill the class first; the overflow waits
        student_ids = [
            row.user_id
            for row in db.query(CourseEnrollment.user_id).filter(
                CourseEnrollment.course_id == course.id,
            ).order_by(CourseEnrollment.enrolled_on.asc()).all()
        ]
        for position, user_id in enumerate(student_ids):
            if position < live_class.max_students:
                db.add(ClassEnrollment(class_id=live_class.id, user_id=user_id))
            else:
                db.add(ClassWaitlistEntry(class_id=live_class.id, user_id=user_id))

    commit_changes(db, live_class)
    logger.info('Mentor %s scheduled class %s', principal.id, live_class.id)

    return build_class_detail(db, live_class)


@router.get('/mentor', response_model=list[ClassResponse])
def list_my_mentor_classes(principal: Principal = Depends(require_mentor), db: Session = Depends(get_db)):
    return db.query(LiveClass).filter(LiveClass.mentor_id == principal.id).order_by(LiveClass.start_time.asc()).all()


@router.get('/student', response_model=list[ClassResponse])
def list_my_student_classes(principal: Principal = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(LiveClass).join(
        ClassEnrollment, ClassEnrollment.class_id == LiveClass.id,
    ).filter(
        ClassEnrollment.user_id == principal.id,
    ).order_by(LiveClass.start_time.asc()).all()


@router.get('/{class_id}', response_model=ClassDetailResponse)
def get_class(
    class_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    live_class = get_or_404(db, LiveClass, class_id, CLASS_NOT_FOUND)
    ensure_can_mutate(live_class, principal, 'Not authorized to view this class')
    return build_class_detail(db, live_class)


@router.put('/{class_id}', response_model=ClassDetailResponse)
def update_class(
    class_id: str,
    data: UpdateClassRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    live_class = get_or_404(db, LiveClass, class_id, CLASS_NOT_FOUND)
    ensure_can_mutate(live_class, principal, 'Not authorized to update this class')

    updates = {key: value for key, value in data.model_dump(exclude_unset=True).items() if value is not None}
    validate_time_range(
        updates.get('start_time', live_class.start_time),
        updates.get('end_time', live_class.end_time),
    )
    apply_updates(live_class, updates)
    if 'status' in updates:
        live_class.is_cancelled = updates['status'] == 'cancelled'

    commit_changes(db, live_class)
    return build_class_detail(db, live_class)


@router.delete('/{class_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_class(
    class_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    live_class = get_or_404(db, LiveClass, class_id, CLASS_NOT_FOUND)
    ensure_can_mutate(live_class, principal, 'Not authorized to delete this class')

    db.query(ClassEnrollment).filter(ClassEnrollment.class_id == live_class.id).delete(synchronize_session=False)
    db.query(ClassWaitlistEntry).filter(ClassWaitlistEntry.class_id == live_class.id).delete(synchronize_session=False)
    db.delete(live_class)
    commit_changes(db)


@router.post('/{class_id}/attendance', response_model=AttendanceResponse)
def take_attendance(
    class_id: str,
    data: AttendanceRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    live_class = get_or_404(db, LiveClass, class_id, CLASS_NOT_FOUND)
    ensure_can_mutate(live_class, principal, 'Not authorized to take attendance for this class')

    now = utcnow()
    if now < live_class.start_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Cannot take attendance before the class starts',
        )

    enrollments = {
        enrollment.user_id: enrollment
        for enrollment in db.query(ClassEnrollment).filter(ClassEnrollment.class_id == live_class.id).all()
    }
    unknown = sorted(set(data.attendance) - set(enrollments))
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Attendance can only be recorded for enrolled students',
        )

    for user_id, attended in data.attendance.items():
        enrollments[user_id].attended = attended
    if now >= live_class.end_time and not live_class.is_cancelled:
        live_class.status = 'completed'

    commit_changes(db, live_class)
    return get_attendance(class_id, principal, db)


@router.get('/{class_id}/attendance', response_model=AttendanceResponse)
def get_attendance(
    class_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    live_class = get_or_404(db, LiveClass, class_id, CLASS_NOT_FOUND)
    ensure_can_mutate(live_class, principal, 'Not authorized to view attendance for this class')

    enrollments = db.query(ClassEnrollment).filter(
        ClassEnrollment.class_id == live_class.id,
    ).order_by(ClassEnrollment.enrolled_at.asc()).all()
    return AttendanceResponse(
        class_id=live_class.id,
        status=live_class.status,
        records=[AttendanceRecord(user_id=item.user_id, attended=item.attended) for item in enrollments],
    )


@router.post('/{class_id}/materials', response_model=ClassDetailResponse)
def add_class_material(
    class_id: str,
    data: MaterialRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    live_class = get_or_404(db, LiveClass, class_id, CLASS_NOT_FOUND)
    ensure_can_mutate(live_class, principal, 'Not authorized to update this class')

    material = {'title': data.title, 'file_url': data.file_url, 'added_at': utcnow().isoformat()}
    live_class.materials = [*(live_class.materials or []), material]

    commit_changes(db, live_class)
    return build_class_detail(db, live_class)


@router.post('/{class_id}/enroll', response_model=ClassEnrollmentResult)
def enroll_in_class(
    class_id: str,
    response: Response,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    """Enroll the student, or put them on the waitlist when the class is full.

    The capacity check and the insert are separate statements, so two
    concurrent requests for the last seat can both succeed.
    """
    live_class = get_or_404(db, LiveClass, class_id, CLASS_NOT_FOUND)

    if live_class.is_cancelled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This class has been cancelled')
    if live_class.end_time <= utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This class has already ended')

    enrolled = enrolled_user_ids(db, live_class.id)
    if principal.id in enrolled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already enrolled in this class')

    waitlist_entry = find_waitlist_entry(db, live_class.id, principal.id)

    if len(enrolled) >= live_class.max_students:
        if waitlist_entry is None:
            db.add(ClassWaitlistEntry(class_id=live_class.id, user_id=principal.id))
            try:
                commit_changes(db, live_class, conflict_detail='Already on the waitlist for this class')
            except HTTPException as exc:
                # A concurrent request inserted the same entry first.
                if exc.status_code != status.HTTP_409_CONFLICT:
                    raise
            else:
                logger.info('User %s waitlisted for class %s', principal.id, live_class.id)
        response.status_code = status.HTTP_202_ACCEPTED
        return ClassEnrollmentResult(status=WAITLISTED, live_class=build_class_detail(db, live_class))

    if waitlist_entry is not None:
        db.delete(waitlist_entry)
    db.add(ClassEnrollment(class_id=live_class.id, user_id=principal.id))
    commit_changes(db, live_class, conflict_detail='Already enrolled in this class')
    logger.info('User %s enrolled in class %s', principal.id, live_class.id)

    return ClassEnrollmentResult(status=ENROLLED, live_class=build_class_detail(db, live_class))
