"""Competition and participant model definitions."""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint

from backend.auth.principal import OwnerRef, PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id


class Competition(Base):
    """A competition hosted by a user, mentor or school."""
    __tablename__ = "competitions"

    id = Column(String(32), primary_key=True, default=generate_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    difficulty = Column(String(20), nullable=False)  # beginner/easy/medium/hard/expert
    competition_type = Column(String(20), nullable=False, default="internal")
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    registration_deadline = Column(DateTime)
    max_participants = Column(Integer)
    rules = Column(JSON, nullable=False, default=list)
    prizes = Column(JSON, nullable=False, default=list)
    venue = Column(String(255))
    external_link = Column(String(500))
    status = Column(String(20), nullable=False, default="upcoming")  # upcoming/ongoing/completed/cancelled
    host_kind = Column(String(16), nullable=False)
    host_id = Column(String(32), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def owner_ref(self) -> OwnerRef:
        return OwnerRef(kind=PrincipalKind(self.host_kind), id=self.host_id)


class CompetitionParticipant(Base):
    __tablename__ = "competition_participants"
    __table_args__ = (UniqueConstraint("competition_id", "user_id", name="uq_competition_participant"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    competition_id = Column(String(32), ForeignKey("competitions.id"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    registered_at = Column(DateTime, nullable=False, default=utcnow)
    submission_url = Column(String(500))
    submitted_at = Column(DateTime)
    score = Column(Float)
    rank = Column(Integer)
