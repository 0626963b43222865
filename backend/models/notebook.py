"""Notebook and collaborator model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint

from backend.auth.principal import OwnerRef, PrincipalKind
from backend.core.clock import utcnow
from backend.database import Base, generate_id


class Notebook(Base):
    __tablename__ = "notebooks"

    id = Column(String(32), primary_key=True, default=generate_id)
    title = Column(String(255), nullable=False, default="Untitled Notebook")
    content = Column(Text, nullable=False, default="")
    language = Column(String(32), nullable=False, default="python")
    tags = Column(JSON, nullable=False, default=list)
    is_public = Column(Boolean, nullable=False, default=False)
    owner_kind = Column(String(16), nullable=False)
    owner_id = Column(String(32), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def owner_ref(self) -> OwnerRef:
        return OwnerRef(kind=PrincipalKind(self.owner_kind), id=self.owner_id)


class NotebookCollaborator(Base):
    __tablename__ = "notebook_collaborators"
    __table_args__ = (UniqueConstraint("notebook_id", "user_id", name="uq_notebook_collaborator"),)

    id = Column(String(32), primary_key=True, default=generate_id)
    notebook_id = Column(String(32), ForeignKey("notebooks.id"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    added_at = Column(DateTime, nullable=False, default=utcnow)
