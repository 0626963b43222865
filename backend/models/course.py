"""Course, course content, enrollment and rating model definitions."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from backend.auth.principal import OwnerRef, PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id


class Course(Base):
    """Represents a mentor-authored course."""
    __tablename__ = "courses"

    id = Column(String(32), primary_key=True, default=generate_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    course_for = Column(String(20), nullable=False, default="undergraduate")
    is_premium = Column(Boolean, nullable=False, default=False)
    price = Column(Float, nullable=False, default=0.0)
    thumbnail = Column(String(500))
    objectives = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="draft")  # draft/published/archived
    total_enrollments = Column(Integer, nullable=False, default=0)
    created_by = Column(String(32), ForeignKey("mentors.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def owner_ref(self) -> OwnerRef:
        return OwnerRef(kind=PrincipalKind.MENTOR, id=self.created_by)


class CourseContent(Base):
    """A lesson, video or quiz item inside a course."""
    __tablename__ = "course_contents"

    id = Column(String(32), primary_key=True, default=generate_id)
    course_id = Column(String(32), ForeignKey("courses.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    content_type = Column(String(20), nullable=False, default="lesson")  # lesson/video/quiz
    video_url = Column(String(500))
    duration = Column(Integer)
    text_content = Column(Text)
    position = Column(Integer, nullable=False, default=0)


class CourseEnrollment(Base):
    """The edge between a user and a course they enrolled in."""
    __tablename__ = "course_enrollments"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_course_enrollment"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id"), nullable=False, index=True)
    enrolled_on = Column(DateTime, nullable=False, default=utcnow)
    progress = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    payment_id = Column(String(100))
    is_paid = Column(Boolean, nullable=False, default=False)


class CourseRating(Base):
    """A single user's rating of a course; re-rating replaces it."""
    __tablename__ = "course_ratings"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_course_rating"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    course_id = Column(String(32), ForeignKey("courses.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    review = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
