"""User model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from backend.auth.principal import PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id


class User(Base):
    """Represents a student or administrator account."""
    __tablename__ = "users"

    principal_kind = PrincipalKind.USER

    id = Column(String(32), primary_key=True, default=generate_id)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    contact_number = Column(String(32), nullable=False)
    role = Column(String(20), nullable=False, default="student")  # student/admin
    is_premium = Column(Boolean, nullable=False, default=False)
    below_poverty_status = Column(Boolean, nullable=False, default=False)
    below_poverty_document = Column(String(500))
    below_poverty_verified = Column(Boolean, nullable=False, default=False)
    school_organization_name = Column(String(255))
    attendance_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
