import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal
from backend.auth.ownership import ensure_can_mutate, is_owner
from backend.auth.principal import Principal
from backend.database import get_db
from backend.models.topic import Topic, TopicAnswer, TopicQuestion
from backend.routes.shared import apply_updates, commit_changes, get_or_404, require_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=['topics'])

TOPIC_NOT_FOUND = 'Topic not found'


class CreateTopicRequest(BaseModel):
    title: str
    description: str
    category: str
    tags: list[str] = []
    is_premium: bool = False

    @field_validator('title', 'description', 'category')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return require_text(value, 'This field')


class UpdateTopicRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    is_premium: bool | None = None


class QuestionRequest(BaseModel):
    question: str

    @field_validator('question')
    @classmethod
    def validate_question(cls, value: str) -> str:
        return require_text(value, 'Question')


class AnswerRequest(BaseModel):
    content: str

    @field_validator('content')
    @classmethod
    def validate_content(cls, value: str) -> str:
        return require_text(value, 'Answer')


class VoteRequest(BaseModel):
    vote: int

    @field_validator('vote')
    @classmethod
    def validate_vote(cls, value: int) -> int:
        if value not in (1, -1):
            raise ValueError('Vote must be 1 or -1.')
        return value


class TopicResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    tags: list[str]
    is_premium: bool
    views: int
    likes: int
    owner_kind: str
    owner_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class AnswerResponse(BaseModel):
    id: str
    question_id: str
    content: str
    author_kind: str
    author_id: str
    votes: int
    is_accepted: bool
    created_at: datetime

    class Config:
        from_attributes = True


class QuestionResponse(BaseModel):
    id: str
    topic_id: str
    question: str
    asker_kind: str
    asker_id: str
    likes: int
    created_at: datetime
    answers: list[AnswerResponse] = []

    class Config:
        from_attributes = True


class TopicDetailResponse(TopicResponse):
    questions: list[QuestionResponse] = []


def build_question_response(db: Session, question: TopicQuestion) -> QuestionResponse:
    answers = db.query(TopicAnswer).filter(
        TopicAnswer.question_id == question.id,
    ).order_by(TopicAnswer.is_accepted.desc(), TopicAnswer.votes.desc(), TopicAnswer.created_at.asc()).all()

    payload = QuestionResponse.model_validate(question).model_dump(exclude={'answers'})
    return QuestionResponse(**payload, answers=[AnswerResponse.model_validate(answer) for answer in answers])


def build_topic_detail(db: Session, topic: Topic) -> TopicDetailResponse:
    questions = db.query(TopicQuestion).filter(
        TopicQuestion.topic_id == topic.id,
    ).order_by(TopicQuestion.created_at.asc()).all()

    payload = TopicResponse.model_validate(topic).model_dump()
    return TopicDetailResponse(**payload, questions=[build_question_response(db, item) for item in questions])


def get_question_or_404(db: Session, topic_id: str, question_id: str) -> TopicQuestion:
    get_or_404(db, Topic, topic_id, TOPIC_NOT_FOUND)
    question = db.query(TopicQuestion).filter(
        TopicQuestion.id == question_id,
        TopicQuestion.topic_id == topic_id,
    ).first()
    if question is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Question not found')
    return question


def get_answer_or_404(db: Session, topic_id: str, question_id: str, answer_id: str) -> tuple[TopicQuestion, TopicAnswer]:
    question = get_question_or_404(db, topic_id, question_id)
    answer = db.query(TopicAnswer).filter(
        TopicAnswer.id == answer_id,
        TopicAnswer.question_id == question.id,
    ).first()
    if answer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Answer not found')
    return question, answer


@router.post('/', response_model=TopicResponse, status_code=status.HTTP_201_CREATED)
def create_topic(
    data: CreateTopicRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    topic = Topic(
        title=data.title,
        description=data.description,
        category=data.category,
        tags=[tag.strip() for tag in data.tags if tag.strip()],
        is_premium=data.is_premium,
        owner_kind=principal.kind.value,
        owner_id=principal.id,
    )
    db.add(topic)
    commit_changes(db, topic)
    return topic


@router.get('/', response_model=list[TopicResponse])
def list_topics(db: Session = Depends(get_db)):
    return db.query(Topic).order_by(Topic.created_at.desc()).all()


@router.get('/category/{category}', response_model=list[TopicResponse])
def list_topics_by_category(category: str, db: Session = Depends(get_db)):
    return db.query(Topic).filter(Topic.category == category).order_by(Topic.created_at.desc()).all()


@router.get('/{topic_id}', response_model=TopicDetailResponse)
def get_topic(topic_id: str, db: Session = Depends(get_db)):
    topic = get_or_404(db, Topic, topic_id, TOPIC_NOT_FOUND)
    topic.views = (topic.views or 0) + 1
    commit_changes(db, topic)
    return build_topic_detail(db, topic)


@router.put('/{topic_id}', response_model=TopicResponse)
def update_topic(
    topic_id: str,
    data: UpdateTopicRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    topic = get_or_404(db, Topic, topic_id, TOPIC_NOT_FOUND)
    ensure_can_mutate(topic, principal, 'Not authorized to update this topic')

    updates = data.model_dump(exclude_unset=True)
    apply_updates(topic, {key: value for key, value in updates.items() if value is not None})

    commit_changes(db, topic)
    return topic


@router.delete('/{topic_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_topic(
    topic_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    topic = get_or_404(db, Topic, topic_id, TOPIC_NOT_FOUND)
    ensure_can_mutate(topic, principal, 'Not authorized to delete this topic')

    question_ids = [row.id for row in db.query(TopicQuestion.id).filter(TopicQuestion.topic_id == topic.id).all()]
    if question_ids:
        db.query(TopicAnswer).filter(TopicAnswer.question_id.in_(question_ids)).delete(synchronize_session=False)
        db.query(TopicQuestion).filter(TopicQuestion.id.in_(question_ids)).delete(synchronize_session=False)
    db.delete(topic)
    commit_changes(db)


@router.post('/{topic_id}/like', response_model=TopicResponse)
def like_topic(topic_id: str, _: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    topic = get_or_404(db, Topic, topic_id, TOPIC_NOT_FOUND)
    topic.likes = (topic.likes or 0) + 1
    commit_changes(db, topic)
    return topic


@router.post('/{topic_id}/unlike', response_model=TopicResponse)
def unlike_topic(topic_id: str, _: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    topic = get_or_404(db, Topic, topic_id, TOPIC_NOT_FOUND)
    topic.likes = max(0, (topic.likes or 0) - 1)
    commit_changes(db, topic)
    return topic


@router.post('/{topic_id}/questions', response_model=QuestionResponse, status_code=status.HTTP_201_CREATED)
def add_question(
    topic_id: str,
    data: QuestionRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    topic = get_or_404(db, Topic, topic_id, TOPIC_NOT_FOUND)
    question = TopicQuestion(
        topic_id=topic.id,
        question=data.question,
        asker_kind=principal.kind.value,
        asker_id=principal.id,
    )
    db.add(question)
    commit_changes(db, question)
    return build_question_response(db, question)


@router.post('/{topic_id}/questions/{question_id}/like', response_model=QuestionResponse)
def like_question(
    topic_id: str,
    question_id: str,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    question = get_question_or_404(db, topic_id, question_id)
    question.likes = (question.likes or 0) + 1
    commit_changes(db, question)
    return build_question_response(db, question)


@router.post('/{topic_id}/questions/{question_id}/unlike', response_model=QuestionResponse)
def unlike_question(
    topic_id: str,
    question_id: str,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    question = get_question_or_404(db, topic_id, question_id)
    question.likes = max(0, (question.likes or 0) - 1)
    commit_changes(db, question)
    return build_question_response(db, question)


@router.post(
    '/{topic_id}/questions/{question_id}/answers',
    response_model=AnswerResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_answer(
    topic_id: str,
    question_id: str,
    data: AnswerRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    question = get_question_or_404(db, topic_id, question_id)
    answer = TopicAnswer(
        question_id=question.id,
        content=data.content,
        author_kind=principal.kind.value,
        author_id=principal.id,
    )
    db.add(answer)
    commit_changes(db, answer)
    return answer


@router.post('/{topic_id}/questions/{question_id}/answers/{answer_id}/vote', response_model=AnswerResponse)
def vote_answer(
    topic_id: str,
    question_id: str,
    answer_id: str,
    data: VoteRequest,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    _, answer = get_answer_or_404(db, topic_id, question_id, answer_id)
    answer.votes = (answer.votes or 0) + data.vote
    commit_changes(db, answer)
    return answer


@router.post('/{topic_id}/questions/{question_id}/answers/{answer_id}/accept', response_model=QuestionResponse)
def accept_answer(
    topic_id: str,
    question_id: str,
    answer_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    question, answer = get_answer_or_404(db, topic_id, question_id, answer_id)
    if not is_owner(question.asker_ref, principal):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the person who asked can accept an answer',
        )

    db.query(TopicAnswer).filter(
        TopicAnswer.question_id == question.id,
        TopicAnswer.id != answer.id,
    ).update({TopicAnswer.is_accepted: False}, synchronize_session=False)
    answer.is_accepted = True

    commit_changes(db, question)
    return build_question_response(db, question)
