import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal, require_user
from backend.auth.ownership import ensure_can_mutate
from backend.auth.principal import Principal
from backend.core.clock import utcnow
from backend.database import get_db
from backend.models.competition import Competition, CompetitionParticipant
from backend.routes.shared import apply_updates, commit_changes, get_or_404, normalize_datetime, require_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=['competitions'])

COMPETITION_STATUSES = {'upcoming', 'ongoing', 'completed', 'cancelled'}
DIFFICULTIES = {'beginner', 'easy', 'medium', 'hard', 'expert'}
COMPETITION_TYPES = {'internal', 'external'}
COMPETITION_NOT_FOUND = 'Competition not found'


def validate_choice(value: str, choices: set[str], label: str) -> str:
    normalized = value.strip().lower()
    if normalized not in choices:
        raise ValueError(f'Invalid {label}.')
    return normalized


class PrizePayload(BaseModel):
    rank: int
    description: str
    value: str | None = None


class CreateCompetitionRequest(BaseModel):
    title: str
    description: str
    category: str
    difficulty: str
    competition_type: str = 'internal'
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime | None = None
    max_participants: int | None = None
    rules: list[str] = []
    prizes: list[PrizePayload] = []
    venue: str | None = None
    external_link: str | None = None

    @field_validator('title', 'description', 'category')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return require_text(value, 'This field')

    @field_validator('difficulty')
    @classmethod
    def validate_difficulty(cls, value: str) -> str:
        return validate_choice(value, DIFFICULTIES, 'difficulty')

    @field_validator('competition_type')
    @classmethod
    def validate_competition_type(cls, value: str) -> str:
        return validate_choice(value, COMPETITION_TYPES, 'competition type')

    @field_validator('start_date', 'end_date', 'registration_deadline')
    @classmethod
    def validate_dates(cls, value: datetime | None) -> datetime | None:
        return normalize_datetime(value)

    @field_validator('max_participants')
    @classmethod
    def validate_max_participants(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError('Maximum participants must be at least 1.')
        return value


class UpdateCompetitionRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    difficulty: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    registration_deadline: datetime | None = None
    max_participants: int | None = None
    rules: list[str] | None = None
    prizes: list[PrizePayload] | None = None
    venue: str | None = None
    external_link: str | None = None

    @field_validator('difficulty')
    @classmethod
    def validate_difficulty(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_choice(value, DIFFICULTIES, 'difficulty')

    @field_validator('start_date', 'end_date', 'registration_deadline')
    @classmethod
    def validate_dates(cls, value: datetime | None) -> datetime | None:
        return normalize_datetime(value)


class CompetitionStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return validate_choice(value, COMPETITION_STATUSES, 'competition status')


class CompetitionResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    difficulty: str
    competition_type: str
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime | None = None
    max_participants: int | None = None
    rules: list[str]
    prizes: list[dict]
    venue: str | None = None
    external_link: str | None = None
    status: str
    host_kind: str
    host_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class ParticipantResponse(BaseModel):
    id: str
    competition_id: str
    user_id: str
    registered_at: datetime
    submission_url: str | None = None
    submitted_at: datetime | None = None
    score: float | None = None
    rank: int | None = None

    class Config:
        from_attributes = True


class SubmissionRequest(BaseModel):
    submission_url: str

    @field_validator('submission_url')
    @classmethod
    def validate_submission_url(cls, value: str) -> str:
        return require_text(value, 'Submission URL')


class ResultEntry(BaseModel):
    user_id: str
    score: float
    rank: int | None = None


class AnnounceResultsRequest(BaseModel):
    results: list[ResultEntry]


def validate_schedule(start_date: datetime, end_date: datetime, registration_deadline: datetime | None) -> None:
    if end_date <= start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='End date must be after start date',
        )
    if registration_deadline is not None and registration_deadline > start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Registration deadline must not be after the start date',
        )


def get_participant(db: Session, competition_id: str, user_id: str) -> CompetitionParticipant | None:
    return db.query(CompetitionParticipant).filter(
        CompetitionParticipant.competition_id == competition_id,
        CompetitionParticipant.user_id == user_id,
    ).first()


@router.post('/', response_model=CompetitionResponse, status_code=status.HTTP_201_CREATED)
def create_competition(
    data: CreateCompetitionRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    validate_schedule(data.start_date, data.end_date, data.registration_deadline)

    competition = Competition(
        title=data.title,
        description=data.description,
        category=data.category,
        difficulty=data.difficulty,
        competition_type=data.competition_type,
        start_date=data.start_date,
        end_date=data.end_date,
        registration_deadline=data.registration_deadline,
        max_participants=data.max_participants,
        rules=data.rules,
        prizes=[prize.model_dump() for prize in data.prizes],
        venue=data.venue,
        external_link=data.external_link,
        host_kind=principal.kind.value,
        host_id=principal.id,
    )
    db.add(competition)
    commit_changes(db, competition)
    logger.info('%s %s is hosting competition %s', principal.kind.value, principal.id, competition.id)

    return competition


@router.get('/', response_model=list[CompetitionResponse])
def list_competitions(
    category: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias='status'),
    difficulty: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    query = db.query(Competition)
    if category:
        query = query.filter(Competition.category == category)
    if status_filter:
        query = query.filter(Competition.status == status_filter.strip().lower())
    if difficulty:
        query = query.filter(Competition.difficulty == difficulty.strip().lower())

    return query.order_by(Competition.start_date.asc()).all()


@router.get('/{competition_id}', response_model=CompetitionResponse)
def get_competition(competition_id: str, db: Session = Depends(get_db)):
    return get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)


@router.put('/{competition_id}', response_model=CompetitionResponse)
def update_competition(
    competition_id: str,
    data: UpdateCompetitionRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    competition = get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)
    ensure_can_mutate(competition, principal, 'Not authorized to update this competition')

    updates = {key: value for key, value in data.model_dump(exclude_unset=True).items() if value is not None}
    validate_schedule(
        updates.get('start_date', competition.start_date),
        updates.get('end_date', competition.end_date),
        updates.get('registration_deadline', competition.registration_deadline),
    )
    apply_updates(competition, updates)

    commit_changes(db, competition)
    return competition


@router.delete('/{competition_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_competition(
    competition_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    competition = get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)
    ensure_can_mutate(competition, principal, 'Not authorized to delete this competition')

    db.query(CompetitionParticipant).filter(
        CompetitionParticipant.competition_id == competition.id,
    ).delete(synchronize_session=False)
    db.delete(competition)
    commit_changes(db)


@router.put('/{competition_id}/status', response_model=CompetitionResponse)
def update_competition_status(
    competition_id: str,
    data: CompetitionStatusRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    competition = get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)
    ensure_can_mutate(competition, principal, 'Not authorized to update this competition')

    competition.status = data.status
    commit_changes(db, competition)
    return competition


@router.get('/{competition_id}/participants', response_model=list[ParticipantResponse])
def list_participants(
    competition_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    competition = get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)
    ensure_can_mutate(competition, principal, 'Not authorized to view participants of this competition')

    return db.query(CompetitionParticipant).filter(
        CompetitionParticipant.competition_id == competition.id,
    ).order_by(CompetitionParticipant.registered_at.asc()).all()


@router.post('/{competition_id}/results', response_model=list[ParticipantResponse])
def announce_results(
    competition_id: str,
    data: AnnounceResultsRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    competition = get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)
    ensure_can_mutate(competition, principal, 'Not authorized to announce results for this competition')

    if utcnow() < competition.end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Results can only be announced after the competition ends',
        )

    participants = {
        participant.user_id: participant
        for participant in db.query(CompetitionParticipant).filter(
            CompetitionParticipant.competition_id == competition.id,
        ).all()
    }
    if any(entry.user_id not in participants for entry in data.results):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Results can only be recorded for registered participants',
        )
    if len({entry.user_id for entry in data.results}) != len(data.results):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Each participant can only appear once in the results',
        )

    ranked = sorted(data.results, key=lambda entry: entry.score, reverse=True)
    for position, entry in enumerate(ranked, start=1):
        participant = participants[entry.user_id]
        participant.score = entry.score
        participant.rank = entry.rank if entry.rank is not None else position
    competition.status = 'completed'

    commit_changes(db, competition)
    return sorted(
        (participant for participant in participants.values() if participant.rank is not None),
        key=lambda participant: participant.rank,
    )


@router.post('/{competition_id}/register', response_model=ParticipantResponse, status_code=status.HTTP_201_CREATED)
def register_for_competition(
    competition_id: str,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    competition = get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)

    if competition.status == 'cancelled':
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This competition has been cancelled')

    now = utcnow()
    closes_at = competition.registration_deadline or competition.start_date
    if now >= closes_at:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Registration for this competition is closed')

    if get_participant(db, competition.id, principal.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already registered for this competition')

    if competition.max_participants is not None:
        registered = db.query(CompetitionParticipant).filter(
            CompetitionParticipant.competition_id == competition.id,
        ).count()
        if registered >= competition.max_participants:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Competition is full')

    participant = CompetitionParticipant(competition_id=competition.id, user_id=principal.id)
    db.add(participant)
    commit_changes(db, participant, conflict_detail='Already registered for this competition')
    return participant


@router.post('/{competition_id}/submit', response_model=ParticipantResponse)
def submit_entry(
    competition_id: str,
    data: SubmissionRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    competition = get_or_404(db, Competition, competition_id, COMPETITION_NOT_FOUND)
    participant = get_participant(db, competition.id, principal.id)
    if participant is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not registered for this competition')

    now = utcnow()
    if now < competition.start_date or now > competition.end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Submissions are only accepted while the competition is running',
        )

    participant.submission_url = data.submission_url
    participant.submitted_at = now
    commit_changes(db, participant)
    return participant
