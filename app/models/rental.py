import uuid
from datetime import date, datetime
from typing import Optional
from sqlalchemy import Column, String, Date, Text, ForeignKey, DateTime, Index, CheckConstraint
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class RentalStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    # Derived view state, never persisted: active and past its expected return date
    OVERDUE = "overdue"


PERSISTED_STATUSES = (
    RentalStatus.ACTIVE.value,
    RentalStatus.RETURNED.value,
    RentalStatus.CANCELLED.value,
)


class Rental(Base):
    __tablename__ = "rentals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    book_id = Column(String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    start_date = Column(Date, nullable=False)
    expected_return_date = Column(Date, nullable=False)
    actual_return_date = Column(Date, nullable=True)
    status = Column(String(20), default=RentalStatus.ACTIVE.value, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    book = relationship("Book", back_populates="rentals")
    customer = relationship("Customer", back_populates="rentals")

    __table_args__ = (
        Index("ix_rental_book_status_start", "book_id", "status", "start_date"),
        Index("ix_rental_customer", "customer_id"),
        Index("ix_rental_status_expected_return", "status", "expected_return_date"),
        CheckConstraint(
            "status IN (%s)" % ", ".join(f"'{s}'" for s in PERSISTED_STATUSES),
            name="ck_rental_status"
        ),
        CheckConstraint("expected_return_date >= start_date", name="ck_rental_period_ordered"),
        # no_overlapping_active_rentals (PostgreSQL exclusion constraint) lives in
        # alembic revision 002_no_overlap
    )

    def is_overdue(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return (
            self.status == RentalStatus.ACTIVE.value
            and self.expected_return_date < today
        )

    def effective_status(self, today: Optional[date] = None) -> str:
        """Persisted status, with active rentals past due reported as overdue"""
        if self.is_overdue(today):
            return RentalStatus.OVERDUE.value
        return self.status

    def __repr__(self):
        return f"<Rental {self.book_id} {self.start_date}..{self.expected_return_date} ({self.status})>"
