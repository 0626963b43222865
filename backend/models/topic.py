"""Discussion topic, question and answer model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from backend.auth.principal import OwnerRef, PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id


class Topic(Base):
    """A discussion topic started by any kind of principal."""
    __tablename__ = "topics"

    id = Column(String(32), primary_key=True, default=generate_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    tags = Column(JSON, nullable=False, default=list)
    is_premium = Column(Boolean, nullable=False, default=False)
    views = Column(Integer, nullable=False, default=0)
    likes = Column(Integer, nullable=False, default=0)
    owner_kind = Column(String(16), nullable=False)
    owner_id = Column(String(32), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def owner_ref(self) -> OwnerRef:
        return OwnerRef(kind=PrincipalKind(self.owner_kind), id=self.owner_id)


class TopicQuestion(Base):
    __tablename__ = "topic_questions"

    id = Column(String(32), primary_key=True, default=generate_id)
    topic_id = Column(String(32), ForeignKey("topics.id"), nullable=False, index=True)
    question = Column(Text, nullable=False)
    asker_kind = Column(String(16), nullable=False)
    asker_id = Column(String(32), nullable=False)
    likes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def asker_ref(self) -> OwnerRef:
        return OwnerRef(kind=PrincipalKind(self.asker_kind), id=self.asker_id)


class TopicAnswer(Base):
    __tablename__ = "topic_answers"

    id = Column(String(32), primary_key=True, default=generate_id)
    question_id = Column(String(32), ForeignKey("topic_questions.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    author_kind = Column(String(16), nullable=False)
    author_id = Column(String(32), nullable=False)
    votes = Column(Integer, nullable=False, default=0)
    is_accepted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
