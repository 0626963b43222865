import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal, require_mentor, require_user
from backend.auth.ownership import ensure_can_mutate
from backend.auth.principal import Principal
from backend.database import get_db
from backend.models.course import Course, CourseContent, CourseEnrollment, CourseRating
from backend.models.live_class import LiveClass
from backend.models.mock_test import MockTest, MockTestAttempt
from backend.models.payment import Payment
from backend.models.school import SchoolCourse
from backend.models.user import User
from backend.routes.shared import apply_updates, commit_changes, get_or_404, require_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=['courses'])

COURSE_AUDIENCES = {'elementary', 'undergraduate', 'graduate', 'professional'}
COURSE_STATUSES = {'draft', 'published', 'archived'}
CONTENT_TYPES = {'lesson', 'video', 'quiz'}
COURSE_SORTS = {'newest', 'popularity', 'rating'}
COURSE_NOT_FOUND = 'Course not found'


def validate_choice(value: str, choices: set[str], label: str) -> str:
    normalized = value.strip().lower()
    if normalized not in choices:
        raise ValueError(f'Invalid {label}.')
    return normalized


class CreateCourseRequest(BaseModel):
    title: str
    description: str
    category: str
    course_for: str = 'undergraduate'
    is_premium: bool = False
    price: float = 0.0
    thumbnail: str | None = None
    objectives: list[str] = []
    status: str = 'draft'

    @field_validator('title', 'description', 'category')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return require_text(value, 'This field')

    @field_validator('course_for')
    @classmethod
    def validate_course_for(cls, value: str) -> str:
        return validate_choice(value, COURSE_AUDIENCES, 'course audience')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return validate_choice(value, COURSE_STATUSES, 'course status')

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: float) -> float:
        if value < 0:
            raise ValueError('Price cannot be negative.')
        return value


class UpdateCourseRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    course_for: str | None = None
    is_premium: bool | None = None
    price: float | None = None
    thumbnail: str | None = None
    objectives: list[str] | None = None
    status: str | None = None

    @field_validator('course_for')
    @classmethod
    def validate_course_for(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_choice(value, COURSE_AUDIENCES, 'course audience')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_choice(value, COURSE_STATUSES, 'course status')

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError('Price cannot be negative.')
        return value


class CourseResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    course_for: str
    is_premium: bool
    price: float
    thumbnail: str | None = None
    objectives: list[str]
    status: str
    total_enrollments: int
    created_by: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CourseContentRequest(BaseModel):
    title: str
    description: str | None = None
    content_type: str = 'lesson'
    video_url: str | None = None
    duration: int | None = None
    text_content: str | None = None
    position: int | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return require_text(value, 'Title')

    @field_validator('content_type')
    @classmethod
    def validate_content_type(cls, value: str) -> str:
        return validate_choice(value, CONTENT_TYPES, 'content type')


class UpdateCourseContentRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    content_type: str | None = None
    video_url: str | None = None
    duration: int | None = None
    text_content: str | None = None
    position: int | None = None

    @field_validator('content_type')
    @classmethod
    def validate_content_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_choice(value, CONTENT_TYPES, 'content type')


class CourseContentResponse(BaseModel):
    id: str
    course_id: str
    title: str
    description: str | None = None
    content_type: str
    video_url: str | None = None
    duration: int | None = None
    text_content: str | None = None
    position: int

    class Config:
        from_attributes = True


class CourseDetailResponse(CourseResponse):
    content: list[CourseContentResponse] = []


class EnrollCourseRequest(BaseModel):
    payment_id: str | None = None
    payment_completed: bool = False


class CourseEnrollmentResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    enrolled_on: datetime
    progress: int
    completed: bool
    payment_id: str | None = None
    is_paid: bool

    class Config:
        from_attributes = True


class EnrollmentStatusResponse(BaseModel):
    enrolled: bool
    enrollment: CourseEnrollmentResponse | None = None


class EnrolledStudentResponse(BaseModel):
    user_id: str
    first_name: str
    last_name: str
    email: str
    enrolled_on: datetime
    progress: int
    completed: bool


class RateCourseRequest(BaseModel):
    rating: int
    review: str | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int) -> int:
        if value < 1 or value > 5:
            raise ValueError('Rating must be between 1 and 5.')
        return value


class CourseRatingResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    rating: int
    review: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class CourseRatingsResponse(BaseModel):
    average_rating: float
    total_ratings: int
    ratings: list[CourseRatingResponse]


class UpdateProgressRequest(BaseModel):
    progress: int | None = None
    completed: bool | None = None

    @field_validator('progress')
    @classmethod
    def validate_progress(cls, value: int | None) -> int | None:
        if value is not None and (value < 0 or value > 100):
            raise ValueError('Progress must be between 0 and 100.')
        return value


def get_enrollment(db: Session, user_id: str, course_id: str) -> CourseEnrollment | None:
    return db.query(CourseEnrollment).filter(
        CourseEnrollment.user_id == user_id,
        CourseEnrollment.course_id == course_id,
    ).first()


def get_course_content_or_404(db: Session, course_id: str, content_id: str) -> CourseContent:
    content = db.query(CourseContent).filter(
        CourseContent.id == content_id,
        CourseContent.course_id == course_id,
    ).first()
    if content is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Content item not found')
    return content


def find_captured_payment(db: Session, user: User, course: Course, data: EnrollCourseRequest) -> Payment | None:
    """Return the verified payment backing this enrollment request, if any.

    A payment only counts when it was recorded through payment verification
    for the same user and course.
    """
    if not data.payment_id or not data.payment_completed:
        return None
    return (
        db.query(Payment)
        .filter(
            Payment.payment_id == data.payment_id,
            Payment.user_id == user.id,
            Payment.course_id == course.id,
            Payment.status == 'captured',
        )
        .first()
    )


def has_premium_access(user: User, payment: Payment | None) -> bool:
    if user.is_premium:
        return True
    if user.below_poverty_status and user.below_poverty_verified:
        return True
    return payment is not None


@router.post('/', response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
def create_course(
    data: CreateCourseRequest,
    principal: Principal = Depends(require_mentor),
    db: Session = Depends(get_db),
):
    course = Course(
        title=data.title,
        description=data.description,
        category=data.category,
        course_for=data.course_for,
        is_premium=data.is_premium,
        price=data.price if data.is_premium else 0.0,
        thumbnail=data.thumbnail,
        objectives=data.objectives,
        status=data.status,
        created_by=principal.id,
    )
    db.add(course)
    commit_changes(db, course)
    logger.info('Mentor %s created course %s', principal.id, course.id)

    return course


@router.get('/', response_model=list[CourseResponse])
def list_courses(
    category: str | None = Query(default=None),
    course_for: str | None = Query(default=None),
    is_premium: bool | None = Query(default=None),
    keyword: str | None = Query(default=None),
    sort: str = Query(default='newest'),
    db: Session = Depends(get_db),
):
    if sort not in COURSE_SORTS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid sort option')

    query = db.query(Course)
    if category:
        query = query.filter(Course.category == category)
    if course_for:
        query = query.filter(Course.course_for == course_for.strip().lower())
    if is_premium is not None:
        query = query.filter(Course.is_premium.is_(is_premium))
    if keyword and keyword.strip():
        pattern = f'%{keyword.strip()}%'
        query = query.filter(or_(Course.title.ilike(pattern), Course.description.ilike(pattern)))

    if sort == 'popularity':
        query = query.order_by(Course.total_enrollments.desc(), Course.created_at.desc())
    elif sort == 'rating':
        averages = db.query(
            CourseRating.course_id.label('course_id'),
            func.avg(CourseRating.rating).label('average_rating'),
        ).group_by(CourseRating.course_id).subquery()
        query = query.outerjoin(averages, averages.c.course_id == Course.id).order_by(
            func.coalesce(averages.c.average_rating, 0).desc(),
            Course.created_at.desc(),
        )
    else:
        query = query.order_by(Course.created_at.desc())

    return query.all()


@router.get('/mentor', response_model=list[CourseResponse])
def list_my_courses(principal: Principal = Depends(require_mentor), db: Session = Depends(get_db)):
    return db.query(Course).filter(Course.created_by == principal.id).order_by(Course.created_at.desc()).all()


@router.get('/{course_id}', response_model=CourseDetailResponse)
def get_course(course_id: str, db: Session = Depends(get_db)):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    content = db.query(CourseContent).filter(
        CourseContent.course_id == course.id,
    ).order_by(CourseContent.position.asc()).all()

    payload = CourseResponse.model_validate(course).model_dump()
    return CourseDetailResponse(**payload, content=[CourseContentResponse.model_validate(item) for item in content])


@router.put('/{course_id}', response_model=CourseResponse)
def update_course(
    course_id: str,
    data: UpdateCourseRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    ensure_can_mutate(course, principal, 'Not authorized to update this course')

    updates = data.model_dump(exclude_unset=True)
    apply_updates(course, {key: value for key, value in updates.items() if value is not None})
    if not course.is_premium:
        course.price = 0.0

    commit_changes(db, course)
    return course


@router.delete('/{course_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_course(
    course_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    ensure_can_mutate(course, principal, 'Not authorized to delete this course')

    mock_test_ids = [row.id for row in db.query(MockTest.id).filter(MockTest.course_id == course.id).all()]
    if mock_test_ids:
        db.query(MockTestAttempt).filter(
            MockTestAttempt.mock_test_id.in_(mock_test_ids),
        ).delete(synchronize_session=False)
        db.query(MockTest).filter(MockTest.id.in_(mock_test_ids)).delete(synchronize_session=False)

    db.query(CourseEnrollment).filter(CourseEnrollment.course_id == course.id).delete(synchronize_session=False)
    db.query(CourseRating).filter(CourseRating.course_id == course.id).delete(synchronize_session=False)
    db.query(CourseContent).filter(CourseContent.course_id == course.id).delete(synchronize_session=False)
    db.query(SchoolCourse).filter(SchoolCourse.course_id == course.id).delete(synchronize_session=False)
    # classes outlive the course they were linked to
    db.query(LiveClass).filter(LiveClass.course_id == course.id).update(
        {LiveClass.course_id: None},
        synchronize_session=False,
    )
    db.delete(course)
    commit_changes(db)
    logger.info('Course %s deleted by %s %s', course_id, principal.kind.value, principal.id)


@router.post('/{course_id}/content', response_model=CourseContentResponse, status_code=status.HTTP_201_CREATED)
def add_course_content(
    course_id: str,
    data: CourseContentRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    ensure_can_mutate(course, principal, 'Not authorized to update this course')

    position = data.position
    if position is None:
        position = db.query(CourseContent).filter(CourseContent.course_id == course.id).count()

    content = CourseContent(
        course_id=course.id,
        title=data.title,
        description=data.description,
        content_type=data.content_type,
        video_url=data.video_url,
        duration=data.duration,
        text_content=data.text_content,
        position=position,
    )
    db.add(content)
    commit_changes(db, content)
    return content


@router.put('/{course_id}/content/{content_id}', response_model=CourseContentResponse)
def update_course_content(
    course_id: str,
    content_id: str,
    data: UpdateCourseContentRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    content = get_course_content_or_404(db, course.id, content_id)
    ensure_can_mutate(course, principal, 'Not authorized to update this course')

    updates = data.model_dump(exclude_unset=True)
    apply_updates(content, {key: value for key, value in updates.items() if value is not None})

    commit_changes(db, content)
    return content


@router.delete('/{course_id}/content/{content_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_course_content(
    course_id: str,
    content_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    content = get_course_content_or_404(db, course.id, content_id)
    ensure_can_mutate(course, principal, 'Not authorized to update this course')

    db.delete(content)
    commit_changes(db)


@router.post('/{course_id}/enroll', response_model=CourseEnrollmentResponse, status_code=status.HTTP_201_CREATED)
def enroll_in_course(
    course_id: str,
    data: EnrollCourseRequest | None = None,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    data = data or EnrollCourseRequest()
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    user = principal.record

    if get_enrollment(db, user.id, course.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already enrolled in this course')

    payment = find_captured_payment(db, user, course, data) if course.is_premium else None
    if course.is_premium and not has_premium_access(user, payment):
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail='Payment required for this premium course',
        )

    enrollment = CourseEnrollment(
        user_id=user.id,
        course_id=course.id,
        payment_id=payment.payment_id if payment else None,
        is_paid=payment is not None,
    )
    db.add(enrollment)
    commit_changes(db, enrollment, conflict_detail='Already enrolled in this course')

    # Separate write: if this commit fails the enrollment above stays and the
    # counter lags behind until the next successful enrollment.
    course.total_enrollments = db.query(CourseEnrollment).filter(CourseEnrollment.course_id == course.id).count()
    commit_changes(db, enrollment)
    logger.info('User %s enrolled in course %s', user.id, course.id)

    return enrollment


@router.get('/{course_id}/enrollment', response_model=EnrollmentStatusResponse)
def check_enrollment(
    course_id: str,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    enrollment = get_enrollment(db, principal.id, course.id)
    if enrollment is None:
        return EnrollmentStatusResponse(enrolled=False)
    return EnrollmentStatusResponse(enrolled=True, enrollment=CourseEnrollmentResponse.model_validate(enrollment))


@router.get('/{course_id}/students', response_model=list[EnrolledStudentResponse])
def list_enrolled_students(
    course_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    ensure_can_mutate(course, principal, 'Not authorized to view students of this course')

    rows = db.query(CourseEnrollment, User).join(
        User, User.id == CourseEnrollment.user_id,
    ).filter(
        CourseEnrollment.course_id == course.id,
    ).order_by(CourseEnrollment.enrolled_on.asc()).all()

    return [
        EnrolledStudentResponse(
            user_id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            enrolled_on=enrollment.enrolled_on,
            progress=enrollment.progress,
            completed=enrollment.completed,
        )
        for enrollment, user in rows
    ]


@router.post('/{course_id}/ratings', response_model=CourseRatingResponse)
def rate_course(
    course_id: str,
    data: RateCourseRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    if not get_enrollment(db, principal.id, course.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You must be enrolled in this course to rate it',
        )

    rating = db.query(CourseRating).filter(
        CourseRating.user_id == principal.id,
        CourseRating.course_id == course.id,
    ).first()
    if rating is None:
        rating = CourseRating(user_id=principal.id, course_id=course.id, rating=data.rating, review=data.review)
        db.add(rating)
    else:
        rating.rating = data.rating
        rating.review = data.review

    commit_changes(db, rating)
    return rating


@router.get('/{course_id}/ratings', response_model=CourseRatingsResponse)
def list_course_ratings(course_id: str, db: Session = Depends(get_db)):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    ratings = db.query(CourseRating).filter(
        CourseRating.course_id == course.id,
    ).order_by(CourseRating.created_at.desc()).all()

    average = sum(item.rating for item in ratings) / len(ratings) if ratings else 0.0
    return CourseRatingsResponse(
        average_rating=round(average, 2),
        total_ratings=len(ratings),
        ratings=[CourseRatingResponse.model_validate(item) for item in ratings],
    )


@router.put('/{course_id}/progress', response_model=CourseEnrollmentResponse)
def update_course_progress(
    course_id: str,
    data: UpdateProgressRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, course_id, COURSE_NOT_FOUND)
    enrollment = get_enrollment(db, principal.id, course.id)
    if enrollment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Not enrolled in this course')

    if data.progress is not None:
        enrollment.progress = data.progress
    if data.completed is not None:
        enrollment.completed = data.completed
    if enrollment.progress >= 100:
        enrollment.completed = True

    commit_changes(db, enrollment)
    return enrollment
