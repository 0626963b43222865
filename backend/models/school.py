"""School and roster model definitions."""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint

from backend.auth.principal import PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id


class School(Base):
    """Represents a school organization that manages a student roster."""
    __tablename__ = "schools"

    principal_kind = PrincipalKind.SCHOOL

    id = Column(String(32), primary_key=True, default=generate_id)
    organization_name = Column(String(255), nullable=False)
    organization_email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    head_name = Column(String(200), nullable=False)
    head_email = Column(String(255), nullable=False)
    head_contact_number = Column(String(32), nullable=False)
    address = Column(JSON, nullable=False, default=dict)
    website = Column(String(500))
    established = Column(Integer)
    description = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class SchoolStudent(Base):
    """A user on a school's roster, with remarks, results and attendance."""
    __tablename__ = "school_students"
    __table_args__ = (UniqueConstraint("school_id", "user_id", name="uq_school_student"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    school_id = Column(String(32), ForeignKey("schools.id"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    remarks = Column(Text)
    results = Column(JSON, nullable=False, default=list)
    attendance_present = Column(Integer, nullable=False, default=0)
    attendance_total = Column(Integer, nullable=False, default=0)
    attendance_percentage = Column(Float, nullable=False, default=0.0)
    added_at = Column(DateTime, nullable=False, default=utcnow)


class SchoolCourse(Base):
    """A course a school offers to its students."""
    __tablename__ = "school_courses"
    __table_args__ = (UniqueConstraint("school_id", "course_id", name="uq_school_course"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    school_id = Column(String(32), ForeignKey("schools.id"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id"), nullable=False, index=True)
    enrollment_status = Column(String(20), nullable=False, default="open")  # open/closed/coming-soon
