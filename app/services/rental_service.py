"""
Rental Service
==============
Write paths for rentals and the list queries behind the rentals page,
overdue panel and calendar.

Creating or re-dating a rental runs the availability check and the write
inside one per-book critical section:
1. PostgreSQL: SELECT ... FOR UPDATE on the book row, held until commit,
   backed by the no_overlapping_active_rentals exclusion constraint
2. Other dialects: a process-local lock per book id

Deleting a book or customer takes the same lock before counting its active
rentals, so the delete cascade can never remove a rental committed meanwhile.
"""

from datetime import date
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..models.book import Book
from ..models.customer import Customer
from ..models.rental import Rental, RentalStatus
from ..schemas.rental import RentalCreate, RentalUpdate, validate_rental_period
from ..utils.db_helpers import acquire_row_lock, book_critical_section, customer_critical_section
from ..utils.logging_config import get_logger
from .availability_service import (
    InvalidRentalPeriod, RentalInterval, get_availability_engine
)

logger = get_logger(__name__)

OVERLAP_CONSTRAINT = "no_overlapping_active_rentals"


def _lock_book(db: Session, book_id: str) -> Book:
    """Lock the book row (PostgreSQL) or 409 when another request holds it"""
    try:
        book = acquire_row_lock(db, Book, Book.id == book_id, nowait=settings.lock_nowait)
    except OperationalError as e:
        db.rollback()
        logger.warning(f"Lock contention on book {book_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This book is being booked by another request, please try again"
        )

    if not book:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return book


def _conflict_detail(conflicts: List[RentalInterval]) -> str:
    first = conflicts[0]
    who = f" by {first.customer_name}" if first.customer_name else ""
    return (
        f"This book is already rented{who} from {first.start_date.isoformat()} "
        f"to {first.expected_return_date.isoformat()}"
    )


def _is_overlap_violation(error: IntegrityError) -> bool:
    return OVERLAP_CONSTRAINT in str(error.orig)


def _commit_rental(db: Session, rental: Rental) -> Rental:
    """Commit, translating an exclusion-constraint violation into a 409"""
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if _is_overlap_violation(e):
            logger.warning(f"Exclusion constraint rejected rental for book {rental.book_id}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This book is already rented in this period"
            )
        raise
    db.refresh(rental)
    return rental


def _check_no_conflicts(
    db: Session,
    book_id: str,
    start_date: date,
    end_date: date,
    exclude_rental_id: Optional[str] = None
) -> None:
    engine = get_availability_engine(db)
    try:
        conflicts = engine.find_conflicts(book_id, start_date, end_date, exclude_rental_id)
    except InvalidRentalPeriod as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if conflicts:
        db.rollback()
        logger.rental_conflict(book_id, start_date, end_date, len(conflicts))
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=_conflict_detail(conflicts)
        )


def get_rental_or_404(db: Session, rental_id: str) -> Rental:
    rental = db.query(Rental).options(
        joinedload(Rental.book), joinedload(Rental.customer)
    ).filter(Rental.id == rental_id).first()
    if not rental:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Rental not found"
        )
    return rental


def create_rental(db: Session, data: RentalCreate) -> Rental:
    """
    Book a rental as active.

    The availability check and the insert happen under the book lock, so two
    concurrent requests for overlapping dates cannot both succeed.

    Raises:
        HTTPException 404: book or customer does not exist
        HTTPException 409: period overlaps an active rental, or the book is locked
    """
    with book_critical_section(db, data.book_id), customer_critical_section(db, data.customer_id):
        _lock_book(db, data.book_id)

        # Shared lock: concurrent rentals for the customer proceed, deletion waits
        customer = acquire_row_lock(db, Customer, Customer.id == data.customer_id, read=True)
        if not customer:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Customer not found"
            )

        _check_no_conflicts(db, data.book_id, data.start_date, data.expected_return_date)

        rental = Rental(
            book_id=data.book_id,
            customer_id=data.customer_id,
            start_date=data.start_date,
            expected_return_date=data.expected_return_date,
            status=RentalStatus.ACTIVE.value,
            notes=data.notes,
        )
        db.add(rental)
        _commit_rental(db, rental)

    logger.rental_created(rental.id, rental.book_id, rental.start_date, rental.expected_return_date)
    return rental


def update_rental(db: Session, rental_id: str, data: RentalUpdate) -> Rental:
    """
    Change the dates or notes of an active rental.

    New dates are checked against the book's other active rentals; the rental
    being edited never conflicts with itself.
    """
    rental = get_rental_or_404(db, rental_id)

    if rental.status != RentalStatus.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only active rentals can be edited (current status: {rental.status})"
        )

    new_start = data.start_date or rental.start_date
    new_end = data.expected_return_date or rental.expected_return_date
    dates_changed = (new_start, new_end) != (rental.start_date, rental.expected_return_date)

    if dates_changed:
        try:
            validate_rental_period(new_start, new_end)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        with book_critical_section(db, rental.book_id):
            _lock_book(db, rental.book_id)
            _check_no_conflicts(db, rental.book_id, new_start, new_end, exclude_rental_id=rental.id)

            rental.start_date = new_start
            rental.expected_return_date = new_end
            if data.notes is not None:
                rental.notes = data.notes
            _commit_rental(db, rental)
    else:
        if data.notes is not None:
            rental.notes = data.notes
        _commit_rental(db, rental)

    logger.info(f"Rental {rental.id} updated: {rental.start_date} -> {rental.expected_return_date}")
    return rental


def _transition(db: Session, rental_id: str, new_status: RentalStatus) -> Rental:
    rental = acquire_row_lock(db, Rental, Rental.id == rental_id)
    if not rental:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Rental not found"
        )

    if rental.status != RentalStatus.ACTIVE.value:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot mark a {rental.status} rental as {new_status.value}"
        )
    return rental


def return_rental(db: Session, rental_id: str, returned_on: Optional[date] = None) -> Rental:
    """active -> returned; the book becomes bookable again immediately"""
    rental = _transition(db, rental_id, RentalStatus.RETURNED)
    returned_on = returned_on or date.today()

    if returned_on < rental.start_date:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Return date cannot be before the rental start date"
        )

    old_status = rental.status
    rental.status = RentalStatus.RETURNED.value
    rental.actual_return_date = returned_on
    _commit_rental(db, rental)

    logger.rental_status_changed(rental.id, old_status, rental.status)
    return rental


def cancel_rental(db: Session, rental_id: str) -> Rental:
    """active -> cancelled"""
    rental = _transition(db, rental_id, RentalStatus.CANCELLED)

    old_status = rental.status
    rental.status = RentalStatus.CANCELLED.value
    _commit_rental(db, rental)

    logger.rental_status_changed(rental.id, old_status, rental.status)
    return rental


def _with_relations(db: Session):
    return db.query(Rental).options(joinedload(Rental.book), joinedload(Rental.customer))


def list_rentals(
    db: Session,
    status_filter: Optional[str] = None,
    today: Optional[date] = None
) -> List[Rental]:
    """Newest first; status_filter="overdue" selects active rentals past due"""
    query = _with_relations(db)

    if status_filter == RentalStatus.OVERDUE.value:
        today = today or date.today()
        query = query.filter(
            Rental.status == RentalStatus.ACTIVE.value,
            Rental.expected_return_date < today
        )
    elif status_filter:
        query = query.filter(Rental.status == status_filter)

    return query.order_by(Rental.created_at.desc()).all()


def get_overdue_rentals(db: Session, today: Optional[date] = None) -> List[Rental]:
    today = today or date.today()
    return _with_relations(db).filter(
        Rental.status == RentalStatus.ACTIVE.value,
        Rental.expected_return_date < today
    ).order_by(Rental.expected_return_date.asc()).all()


def get_rentals_in_range(db: Session, start: date, end: date) -> List[Rental]:
    """
    Rentals of any status touching the [start, end] window, for the calendar.

    A rental touches the window if its expected period or its actual period
    (start_date .. actual_return_date) intersects it.
    """
    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Calendar window start must be on or before its end"
        )

    return _with_relations(db).filter(
        Rental.start_date <= end,
        or_(
            Rental.expected_return_date >= start,
            and_(
                Rental.actual_return_date.isnot(None),
                Rental.actual_return_date >= start
            )
        )
    ).order_by(Rental.start_date.asc()).all()


def get_customer_rentals(db: Session, customer_id: str) -> List[Rental]:
    return _with_relations(db).filter(
        Rental.customer_id == customer_id
    ).order_by(Rental.start_date.desc()).all()


def count_active_rentals(db: Session, book_id: Optional[str] = None, customer_id: Optional[str] = None) -> int:
    query = db.query(Rental).filter(Rental.status == RentalStatus.ACTIVE.value)
    if book_id:
        query = query.filter(Rental.book_id == book_id)
    if customer_id:
        query = query.filter(Rental.customer_id == customer_id)
    return query.count()


def delete_book(db: Session, book_id: str) -> None:
    """
    Delete a book and its rental history.

    Refused with 409 while the book has active rentals. The count runs under
    the book lock, so no rental can be committed between the check and the
    cascade.
    """
    with book_critical_section(db, book_id):
        book = _lock_book(db, book_id)

        active = count_active_rentals(db, book_id=book_id)
        if active:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Book has {active} active rental(s); return or cancel them first"
            )

        db.delete(book)
        db.commit()

    logger.info(f"Book deleted: {book_id}")


def delete_customer(db: Session, customer_id: str) -> None:
    """Delete a customer and their rental history; 409 while any rental is active"""
    with customer_critical_section(db, customer_id):
        try:
            customer = acquire_row_lock(
                db, Customer, Customer.id == customer_id, nowait=settings.lock_nowait
            )
        except OperationalError as e:
            db.rollback()
            logger.warning(f"Lock contention on customer {customer_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This customer is being updated by another request, please try again"
            )

        if not customer:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Customer not found"
            )

        active = count_active_rentals(db, customer_id=customer_id)
        if active:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Customer has {active} active rental(s); return or cancel them first"
            )

        db.delete(customer)
        db.commit()

    logger.info(f"Customer deleted: {customer_id}")


# ============================================================================
# Customer analytics (customer detail page)
# ============================================================================

def get_customer_stats(db: Session, customer_id: str, today: Optional[date] = None) -> dict:
    """
    Rental counts per status for one customer, plus overdue and the average
    length of returned rentals in whole days (both ends inclusive).
    """
    today = today or date.today()

    by_status = dict(
        db.query(Rental.status, func.count(Rental.id))
        .filter(Rental.customer_id == customer_id)
        .group_by(Rental.status)
        .all()
    )

    overdue = db.query(func.count(Rental.id)).filter(
        Rental.customer_id == customer_id,
        Rental.status == RentalStatus.ACTIVE.value,
        Rental.expected_return_date < today
    ).scalar()

    # Date arithmetic differs per dialect, so durations are summed here
    periods = db.query(Rental.start_date, Rental.actual_return_date).filter(
        Rental.customer_id == customer_id,
        Rental.status == RentalStatus.RETURNED.value,
        Rental.actual_return_date.isnot(None)
    ).all()
    total_days = sum((returned - start).days + 1 for start, returned in periods)
    average_days = int(total_days / len(periods) + 0.5) if periods else 0

    return {
        "customer_id": customer_id,
        "total_rentals": sum(by_status.values()),
        "active_rentals": by_status.get(RentalStatus.ACTIVE.value, 0),
        "returned_rentals": by_status.get(RentalStatus.RETURNED.value, 0),
        "cancelled_rentals": by_status.get(RentalStatus.CANCELLED.value, 0),
        "overdue_rentals": overdue or 0,
        "average_rental_days": average_days,
    }


def get_customer_top_books(db: Session, customer_id: str, limit: int = 5) -> List[tuple]:
    """(Book, rental_count) pairs, most rented first; cancelled rentals don't count"""
    rental_count = func.count(Rental.id).label("rental_count")
    return (
        db.query(Book, rental_count)
        .join(Rental, Rental.book_id == Book.id)
        .filter(
            Rental.customer_id == customer_id,
            Rental.status != RentalStatus.CANCELLED.value
        )
        .group_by(Book.id)
        .order_by(rental_count.desc(), Book.title.asc())
        .limit(limit)
        .all()
    )
