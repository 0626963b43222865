"""Live class, class enrollment and waitlist model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from backend.auth.principal import OwnerRef, PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id

DEFAULT_MAX_STUDENTS = 50


class LiveClass(Base):
    """Represents a scheduled live class taught by a mentor."""
    __tablename__ = "classes"

    id = Column(String(32), primary_key=True, default=generate_id)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    mentor_id = Column(String(32), ForeignKey("mentors.id"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id"), nullable=True, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    meeting_link = Column(String(500))
    max_students = Column(Integer, nullable=False, default=DEFAULT_MAX_STUDENTS)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="scheduled")  # scheduled/completed/cancelled
    materials = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def owner_ref(self) -> OwnerRef:
        return OwnerRef(kind=PrincipalKind.MENTOR, id=self.mentor_id)


class ClassEnrollment(Base):
    __tablename__ = "class_enrollments"
    __table_args__ = (UniqueConstraint("class_id", "user_id", name="uq_class_enrollment"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    class_id = Column(String(32), ForeignKey("classes.id"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    enrolled_at = Column(DateTime, nullable=False, default=utcnow)
    attended = Column(Boolean)


class ClassWaitlistEntry(Base):
    __tablename__ = "class_waitlist"
    __table_args__ = (UniqueConstraint("class_id", "user_id", name="uq_class_waitlist"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    class_id = Column(String(32), ForeignKey("classes.id"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    added_at = Column(DateTime, nullable=False, default=utcnow)
