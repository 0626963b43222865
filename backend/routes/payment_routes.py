import hashlib
import hmac
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_user
from backend.auth.principal import Principal
from backend.core import config
from backend.database import get_db
from backend.models.course import Course
from backend.models.payment import Payment
from backend.routes.shared import commit_changes, get_or_404, require_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=['payments'])


class VerifyPaymentRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str
    course_id: str
    amount: float | None = None
    payment_method: str | None = None

    @field_validator('order_id', 'payment_id', 'signature')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return require_text(value, 'This field')


class PaymentResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    order_id: str
    payment_id: str
    amount: float
    status: str
    payment_method: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


def expected_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f'{order_id}|{payment_id}'.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def is_valid_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not secret:
        return False
    return hmac.compare_digest(expected_signature(order_id, payment_id, secret), signature)


@router.post('/verify', response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def verify_payment(
    data: VerifyPaymentRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
):
    course = get_or_404(db, Course, data.course_id, 'Course not found')

    if not is_valid_signature(data.order_id, data.payment_id, data.signature, config.PAYMENT_KEY_SECRET):
        logger.warning('Payment signature mismatch for order %s', data.order_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid payment signature')

    if db.query(Payment).filter(Payment.payment_id == data.payment_id).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Payment already recorded')

    payment = Payment(
        user_id=principal.id,
        course_id=course.id,
        order_id=data.order_id,
        payment_id=data.payment_id,
        signature=data.signature,
        amount=data.amount if data.amount is not None else course.price,
        status='captured',
        payment_method=data.payment_method,
    )
    db.add(payment)
    commit_changes(db, payment, conflict_detail='Payment already recorded')
    logger.info('Recorded payment %s for course %s', payment.payment_id, course.id)

    return payment


@router.get('/history', response_model=list[PaymentResponse])
def payment_history(principal: Principal = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(Payment).filter(Payment.user_id == principal.id).order_by(Payment.created_at.desc()).all()
