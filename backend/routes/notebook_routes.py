import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal, get_optional_principal, require_premium_or_enrolled
from backend.auth.ownership import ensure_owner, is_owner
from backend.auth.principal import Principal, PrincipalKind
from backend.database import get_db
from backend.models.notebook import Notebook, NotebookCollaborator
from backend.models.user import User
from backend.routes.shared import apply_updates, commit_changes, get_or_404

logger = logging.getLogger(__name__)

router = APIRouter(tags=['notebooks'])

NOTEBOOK_NOT_FOUND = 'Notebook not found'
OWNER_ONLY = 'Only the owner can do this'
SUPPORTED_LANGUAGES = {'python', 'javascript', 'java', 'cpp', 'c'}


def validate_language(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in SUPPORTED_LANGUAGES:
        raise ValueError('Unsupported notebook language.')
    return normalized


class CreateNotebookRequest(BaseModel):
    title: str = 'Untitled Notebook'
    content: str = ''
    language: str = 'python'
    tags: list[str] = []
    is_public: bool = False

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return value.strip() or 'Untitled Notebook'

    @field_validator('language')
    @classmethod
    def validate_language(cls, value: str) -> str:
        return validate_language(value)


class UpdateNotebookRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    language: str | None = None
    tags: list[str] | None = None
    is_public: bool | None = None

    @field_validator('language')
    @classmethod
    def validate_language(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_language(value)


class ShareNotebookRequest(BaseModel):
    is_public: bool | None = None


class CollaboratorRequest(BaseModel):
    user_id: str


class NotebookResponse(BaseModel):
    id: str
    title: str
    content: str
    language: str
    tags: list[str]
    is_public: bool
    owner_kind: str
    owner_id: str
    collaborators: list[str] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def collaborator_ids(db: Session, notebook_id: str) -> list[str]:
    rows = db.query(NotebookCollaborator.user_id).filter(
        NotebookCollaborator.notebook_id == notebook_id,
    ).order_by(NotebookCollaborator.added_at.asc()).all()
    return [row.user_id for row in rows]


def build_notebook_response(db: Session, notebook: Notebook) -> NotebookResponse:
    payload = NotebookResponse.model_validate(notebook).model_dump(exclude={'collaborators'})
    return NotebookResponse(**payload, collaborators=collaborator_ids(db, notebook.id))


def is_collaborator(db: Session, notebook: Notebook, principal: Principal | None) -> bool:
    # collaborators are always users
    if principal is None or principal.kind is not PrincipalKind.USER:
        return False
    return principal.id in collaborator_ids(db, notebook.id)


@router.post('/', response_model=NotebookResponse, status_code=status.HTTP_201_CREATED)
def create_notebook(
    data: CreateNotebookRequest,
    principal: Principal = Depends(require_premium_or_enrolled),
    db: Session = Depends(get_db),
):
    notebook = Notebook(
        title=data.title,
        content=data.content,
        language=data.language,
        tags=[tag.strip() for tag in data.tags if tag.strip()],
        is_public=data.is_public,
        owner_kind=principal.kind.value,
        owner_id=principal.id,
    )
    db.add(notebook)
    commit_changes(db, notebook)
    return build_notebook_response(db, notebook)


@router.get('/', response_model=list[NotebookResponse])
def list_my_notebooks(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    notebooks = db.query(Notebook).filter(
        Notebook.owner_kind == principal.kind.value,
        Notebook.owner_id == principal.id,
    ).order_by(Notebook.updated_at.desc()).all()
    return [build_notebook_response(db, notebook) for notebook in notebooks]


@router.get('/public', response_model=list[NotebookResponse])
def list_public_notebooks(db: Session = Depends(get_db)):
    notebooks = db.query(Notebook).filter(Notebook.is_public.is_(True)).order_by(Notebook.updated_at.desc()).all()
    return [build_notebook_response(db, notebook) for notebook in notebooks]


@router.get('/{notebook_id}', response_model=NotebookResponse)
def get_notebook(
    notebook_id: str,
    principal: Principal | None = Depends(get_optional_principal),
    db: Session = Depends(get_db),
):
    notebook = get_or_404(db, Notebook, notebook_id, NOTEBOOK_NOT_FOUND)
    if not (
        notebook.is_public
        or is_owner(notebook.owner_ref, principal)
        or is_collaborator(db, notebook, principal)
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not authorized to view this notebook')
    return build_notebook_response(db, notebook)


@router.put('/{notebook_id}', response_model=NotebookResponse)
def update_notebook(
    notebook_id: str,
    data: UpdateNotebookRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    notebook = get_or_404(db, Notebook, notebook_id, NOTEBOOK_NOT_FOUND)
    owner = is_owner(notebook.owner_ref, principal)
    if not owner and not is_collaborator(db, notebook, principal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not authorized to update this notebook')

    updates = {key: value for key, value in data.model_dump(exclude_unset=True).items() if value is not None}
    if 'is_public' in updates and not owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the owner can change notebook visibility',
        )
    apply_updates(notebook, updates)

    commit_changes(db, notebook)
    return build_notebook_response(db, notebook)


@router.delete('/{notebook_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_notebook(
    notebook_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    notebook = get_or_404(db, Notebook, notebook_id, NOTEBOOK_NOT_FOUND)
    ensure_owner(notebook.owner_ref, principal, OWNER_ONLY)

    db.query(NotebookCollaborator).filter(
        NotebookCollaborator.notebook_id == notebook.id,
    ).delete(synchronize_session=False)
    db.delete(notebook)
    commit_changes(db)


@router.put('/{notebook_id}/share', response_model=NotebookResponse)
def share_notebook(
    notebook_id: str,
    data: ShareNotebookRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    notebook = get_or_404(db, Notebook, notebook_id, NOTEBOOK_NOT_FOUND)
    ensure_owner(notebook.owner_ref, principal, 'Only the owner can share this notebook')

    # without an explicit value the visibility toggles
    if data is not None and data.is_public is not None:
        notebook.is_public = data.is_public
    else:
        notebook.is_public = not notebook.is_public

    commit_changes(db, notebook)
    return build_notebook_response(db, notebook)


@router.post('/{notebook_id}/collaborators', response_model=NotebookResponse)
def add_collaborator(
    notebook_id: str,
    data: CollaboratorRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    notebook = get_or_404(db, Notebook, notebook_id, NOTEBOOK_NOT_FOUND)
    ensure_owner(notebook.owner_ref, principal, 'Only the owner can add collaborators')
    get_or_404(db, User, data.user_id, 'User not found')

    if data.user_id in collaborator_ids(db, notebook.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='User is already a collaborator')

    db.add(NotebookCollaborator(notebook_id=notebook.id, user_id=data.user_id))
    commit_changes(db, notebook, conflict_detail='User is already a collaborator')
    return build_notebook_response(db, notebook)


@router.delete('/{notebook_id}/collaborators/{user_id}', response_model=NotebookResponse)
def remove_collaborator(
    notebook_id: str,
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    notebook = get_or_404(db, Notebook, notebook_id, NOTEBOOK_NOT_FOUND)
    ensure_owner(notebook.owner_ref, principal, 'Only the owner can remove collaborators')

    collaborator = db.query(NotebookCollaborator).filter(
        NotebookCollaborator.notebook_id == notebook.id,
        NotebookCollaborator.user_id == user_id,
    ).first()
    if collaborator is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Collaborator not found')

    db.delete(collaborator)
    commit_changes(db, notebook)
    return build_notebook_response(db, notebook)
