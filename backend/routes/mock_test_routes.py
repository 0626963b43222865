import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal, require_mentor, require_user
from backend.auth.ownership import ensure_can_mutate, is_owner
from backend.auth.principal import Principal
from backend.core.clock import utcnow
from backend.database import get_db
from backend.models.course import Course
from backend.models.mock_test import MockTest, MockTestAttempt
from backend.routes.shared import apply_updates, commit_changes, get_or_404, require_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=['mock-tests'])

OPTIONS_PER_QUESTION = 4
MOCK_TEST_NOT_FOUND = 'Mock test not found'
ALREADY_ATTEMPTED = 'You have already attempted this test'


class QuestionPayload(BaseModel):
    question: str
    options: list[str]
    correct_answer: int
    explanation: str | None = None
    points: int = 1

    @field_validator('question')
    @classmethod
    def validate_question(cls, value: str) -> str:
        return require_text(value, 'Question text')

    @field_validator('options')
    @classmethod
    def validate_options(cls, value: list[str]) -> list[str]:
        if len(value) != OPTIONS_PER_QUESTION:
            raise ValueError(f'Each question needs exactly {OPTIONS_PER_QUESTION} options.')
        return [require_text(option, 'Option') for option in value]

    @field_validator('correct_answer')
    @classmethod
    def validate_correct_answer(cls, value: int) -> int:
        if value < 0 or value >= OPTIONS_PER_QUESTION:
            raise ValueError(f'Correct answer must be between 0 and {OPTIONS_PER_QUESTION - 1}.')
        return value

    @field_validator('points')
    @classmethod
    def validate_points(cls, value: int) -> int:
        if value < 1:
            raise ValueError('Points must be at least 1.')
        return value


def validate_question_list(value: list[QuestionPayload]) -> list[QuestionPayload]:
    if not value:
        raise ValueError('A mock test needs at least one question.')
    return value


def validate_passing_score(value: int) -> int:
    if value < 0 or value > 100:
        raise ValueError('Passing score must be a percentage between 0 and 100.')
    return value


class CreateMockTestRequest(BaseModel):
    title: str
    description: str | None = None
    course_id: str
    time_limit: int = 30
    passing_score: int = 60
    is_active: bool = True
    questions: list[QuestionPayload]

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return require_text(value, 'Title')

    @field_validator('questions')
    @classmethod
    def validate_questions(cls, value: list[QuestionPayload]) -> list[QuestionPayload]:
        return validate_question_list(value)

    @field_validator('passing_score')
    @classmethod
    def validate_passing_score(cls, value: int) -> int:
        return validate_passing_score(value)


class UpdateMockTestRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    time_limit: int | None = None
    passing_score: int | None = None
    is_active: bool | None = None
    questions: list[QuestionPayload] | None = None

    @field_validator('questions')
    @classmethod
    def validate_questions(cls, value: list[QuestionPayload] | None) -> list[QuestionPayload] | None:
        if value is None:
            return None
        return validate_question_list(value)

    @field_validator('passing_score')
    @classmethod
    def validate_passing_score(cls, value: int | None) -> int | None:
        if value is None:
            return None
        return validate_passing_score(value)


class MockTestSummaryResponse(BaseModel):
    id: str
    title: str
    description: str | None = None
    course_id: str
    created_by: str
    time_limit: int
    passing_score: int
    is_active: bool
    total_attempts: int
    average_score: float
    created_at: datetime

    class Config:
        from_attributes = True


class MockTestResponse(MockTestSummaryResponse):
    questions: list[dict]


class PublicQuestionResponse(BaseModel):
    index: int
    question: str
    options: list[str]
    points: int


class PublicMockTestResponse(MockTestSummaryResponse):
    questions: list[PublicQuestionResponse] = []


class SubmitAnswersRequest(BaseModel):
    answers: list[int | None]


class AttemptResultResponse(BaseModel):
    id: str
    mock_test_id: str
    user_id: str
    started_at: datetime
    submitted_at: datetime | None = None
    answers: list[int | None]
    score: int | None = None
    total_points: int | None = None
    percentage: int | None = None
    passed: bool | None = None

    class Config:
        from_attributes = True


def public_questions(mock_test: MockTest) -> list[PublicQuestionResponse]:
    return [
        PublicQuestionResponse(
            index=index,
            question=item['question'],
            options=item['options'],
            points=item.get('points', 1),
        )
        for index, item in enumerate(mock_test.questions or [])
    ]


def build_public_test(mock_test: MockTest, include_questions: bool = True) -> PublicMockTestResponse:
    payload = MockTestSummaryResponse.model_validate(mock_test).model_dump()
    questions = public_questions(mock_test) if include_questions else []
    return PublicMockTestResponse(**payload, questions=questions)


def score_answers(questions: list[dict], answers: list[int | None]) -> tuple[int, int]:
    """Return ``(score, total_points)``; unanswered or out-of-range answers earn nothing."""
    score = 0
    total_points = 0
    for index, item in enumerate(questions):
        points = item.get('points', 1)
        total_points += points
        if index < len(answers) and answers[index] == item['correct_answer']:
            score += points
    return score, total_points


def get_attempt(db: Session, mock_test_id: str, user_id: str) -> MockTestAttempt | None:
    return db.query(MockTestAttempt).filter(
        MockTestAttempt.mock_test_id == mock_test_id,
        MockTestAttempt.user_id == user_id,
    ).first()


def get_active_test_or_404(db: Session, mock_test_id: str) -> MockTest:
    mock_test = get_or_404(db, MockTest, mock_test_id, MOCK_TEST_NOT_FOUND)
    if not mock_test.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This test is not active')
    return mock_test


@router.post('/', response_model=MockTestResponse, status_code=status.HTTP_201_CREATED)
def create_mock_test(
    data: CreateMockTestRequest,
    principal: Principal = Depends(require_mentor),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, data.course_id, 'Course not found')
    if not is_owner(course.owner_ref, principal):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Mock tests can only be attached to your own courses',
        )

    mock_test = MockTest(
        title=data.title,
        description=data.description,
        course_id=course.id,
        created_by=principal.id,
        time_limit=data.time_limit,
        passing_score=data.passing_score,
        is_active=data.is_active,
        questions=[question.model_dump() for question in data.questions],
    )
    db.add(mock_test)
    commit_changes(db, mock_test)
    logger.info('Mentor %s created mock test %s', principal.id, mock_test.id)

    return mock_test


@router.get('/', response_model=list[PublicMockTestResponse])
def list_active_mock_tests(db: Session = Depends(get_db)):
    mock_tests = db.query(MockTest).filter(MockTest.is_active.is_(True)).order_by(MockTest.created_at.desc()).all()
    return [build_public_test(mock_test, include_questions=False) for mock_test in mock_tests]


@router.get('/mentor', response_model=list[MockTestResponse])
def list_my_mock_tests(principal: Principal = Depends(require_mentor), db: Session = Depends(get_db)):
    return db.query(MockTest).filter(MockTest.created_by == principal.id).order_by(MockTest.created_at.desc()).all()


@router.get('/results', response_model=list[AttemptResultResponse])
def list_my_results(principal: Principal = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(MockTestAttempt).filter(
        MockTestAttempt.user_id == principal.id,
        MockTestAttempt.submitted_at.is_not(None),
    ).order_by(MockTestAttempt.submitted_at.desc()).all()


@router.get('/{mock_test_id}', response_model=MockTestResponse)
def get_mock_test(
    mock_test_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    mock_test = get_or_404(db, MockTest, mock_test_id, MOCK_TEST_NOT_FOUND)
    ensure_can_mutate(mock_test, principal, 'Not authorized to view this mock test')
    return mock_test


@router.put('/{mock_test_id}', response_model=MockTestResponse)
def update_mock_test(
    mock_test_id: str,
    data: UpdateMockTestRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    mock_test = get_or_404(db, MockTest, mock_test_id, MOCK_TEST_NOT_FOUND)
    ensure_can_mutate(mock_test, principal, 'Not authorized to update this mock test')

    updates = {
        key: value
        for key, value in data.model_dump(exclude_unset=True, exclude={'questions'}).items()
        if value is not None
    }
    apply_updates(mock_test, updates)
    if data.questions is not None:
        mock_test.questions = [question.model_dump() for question in data.questions]

    commit_changes(db, mock_test)
    return mock_test


@router.delete('/{mock_test_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_mock_test(
    mock_test_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    mock_test = get_or_404(db, MockTest, mock_test_id, MOCK_TEST_NOT_FOUND)
    ensure_can_mutate(mock_test, principal, 'Not authorized to delete this mock test')

    db.query(MockTestAttempt).filter(MockTestAttempt.mock_test_id == mock_test.id).delete(synchronize_session=False)
    db.delete(mock_test)
    commit_changes(db)


@router.get('/{mock_test_id}/results', response_model=list[AttemptResultResponse])
def list_mock_test_results(
    mock_test_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    mock_test = get_or_404(db, MockTest, mock_test_id, MOCK_TEST_NOT_FOUND)
    ensure_can_mutate(mock_test, principal, 'Not authorized to view results for this mock test')

    return db.query(MockTestAttempt).filter(
        MockTestAttempt.mock_test_id == mock_test.id,
        MockTestAttempt.submitted_at.is_not(None),
    ).order_by(MockTestAttempt.percentage.desc()).all()


@router.post('/{mock_test_id}/start', response_model=PublicMockTestResponse)
def start_mock_test(
    mock_test_id: str,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    mock_test = get_active_test_or_404(db, mock_test_id)

    attempt = get_attempt(db, mock_test.id, principal.id)
    if attempt is not None and attempt.submitted_at is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_ATTEMPTED)

    if attempt is None:
        db.add(MockTestAttempt(mock_test_id=mock_test.id, user_id=principal.id, answers=[]))
        commit_changes(db, mock_test, conflict_detail=ALREADY_ATTEMPTED)

    return build_public_test(mock_test)


@router.post('/{mock_test_id}/submit', response_model=AttemptResultResponse)
def submit_mock_test(
    mock_test_id: str,
    data: SubmitAnswersRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    mock_test = get_active_test_or_404(db, mock_test_id)

    attempt = get_attempt(db, mock_test.id, principal.id)
    if attempt is not None and attempt.submitted_at is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_ATTEMPTED)
    if attempt is None:
        attempt = MockTestAttempt(mock_test_id=mock_test.id, user_id=principal.id)
        db.add(attempt)

    score, total_points = score_answers(mock_test.questions or [], data.answers)
    percentage = round(score / total_points * 100) if total_points else 0

    attempt.answers = list(data.answers)
    attempt.score = score
    attempt.total_points = total_points
    attempt.percentage = percentage
    attempt.passed = percentage >= mock_test.passing_score
    attempt.submitted_at = utcnow()

    previous_attempts = mock_test.total_attempts or 0
    mock_test.average_score = round(
        ((mock_test.average_score or 0.0) * previous_attempts + percentage) / (previous_attempts + 1),
        2,
    )
    mock_test.total_attempts = previous_attempts + 1

    commit_changes(db, attempt, conflict_detail=ALREADY_ATTEMPTED)
    logger.info('User %s scored %s%% on mock test %s', principal.id, percentage, mock_test.id)

    return attempt
