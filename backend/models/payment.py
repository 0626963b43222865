"""Payment model definitions."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, String

from backend.core.clock import utcnow
from backend.database import Base, generate_id


class Payment(Base):
    """A gateway payment recorded after its signature was verified."""
    __tablename__ = "payments"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(String(32), nullable=False, index=True)  # kept after course deletion
    order_id = Column(String(100), nullable=False)
    payment_id = Column(String(100), nullable=False, unique=True)
    signature = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="created")  # created/authorized/captured/refunded/failed
    payment_method = Column(String(50))
    created_at = Column(DateTime, nullable=False, default=utcnow)
