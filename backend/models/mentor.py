"""Mentor model definitions."""

from sqlalchemy import JSON, Column, DateTime, String, Text

from backend.auth.principal import PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id


class Mentor(Base):
    """Represents a mentor who authors courses, classes and mock tests."""
    __tablename__ = "mentors"

    principal_kind = PrincipalKind.MENTOR

    id = Column(String(32), primary_key=True, default=generate_id)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    contact_number = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending/active/inactive
    skills = Column(JSON, nullable=False, default=list)
    languages = Column(JSON, nullable=False, default=list)
    about = Column(Text)
    profile_image = Column(String(500))
    created_at = Column(DateTime, nullable=False, default=utcnow)
