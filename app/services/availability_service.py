"""
Availability Engine

Answers two questions about one book, reading only its active rentals:
- is_available: may a new rental cover [start_date, end_date]?
- get_blocked_ranges: which periods are taken, and by whom (calendar/date-picker)

All dates are calendar dates and both interval endpoints are inclusive, so a
rental returned on day N still blocks day N while it is active.

The engine never writes. Rentals are read through a RentalRepository so the
same logic runs against the database or an in-memory fake.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Iterable, Protocol

from sqlalchemy.orm import Session

from ..models.customer import Customer
from ..models.rental import Rental, RentalStatus

import logging
logger = logging.getLogger(__name__)


class InvalidRentalPeriod(ValueError):
    """Raised when a candidate period ends before it starts"""


@dataclass(frozen=True)
class RentalInterval:
    """One rental commitment as seen by the engine"""
    id: str
    book_id: str
    customer_id: str
    customer_name: Optional[str]
    start_date: date
    expected_return_date: date
    actual_return_date: Optional[date] = None
    status: str = RentalStatus.ACTIVE.value


@dataclass(frozen=True)
class BlockedRange:
    """A period during which the book cannot be newly booked"""
    start: date
    end: date
    customer_name: Optional[str] = None


class RentalRepository(Protocol):
    def find_active_by_book(
        self,
        book_id: str,
        exclude_rental_id: Optional[str] = None
    ) -> List[RentalInterval]:
        """Active rentals of the book ordered by start_date ascending"""
        ...


class SqlAlchemyRentalRepository:
    """RentalRepository over the rentals table (customer name via join)"""

    def __init__(self, db: Session):
        self.db = db

    def find_active_by_book(
        self,
        book_id: str,
        exclude_rental_id: Optional[str] = None
    ) -> List[RentalInterval]:
        query = self.db.query(Rental, Customer.name).outerjoin(
            Customer, Customer.id == Rental.customer_id
        ).filter(
            Rental.book_id == book_id,
            Rental.status == RentalStatus.ACTIVE.value
        )

        if exclude_rental_id:
            query = query.filter(Rental.id != exclude_rental_id)

        rows = query.order_by(Rental.start_date.asc(), Rental.id.asc()).all()

        return [
            RentalInterval(
                id=rental.id,
                book_id=rental.book_id,
                customer_id=rental.customer_id,
                customer_name=customer_name,
                start_date=rental.start_date,
                expected_return_date=rental.expected_return_date,
                actual_return_date=rental.actual_return_date,
                status=rental.status,
            )
            for rental, customer_name in rows
        ]


def intervals_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive intervals [a_start, a_end] and [b_start, b_end] share at least one day"""
    return a_start <= b_end and b_start <= a_end


def effective_end_date(rental: RentalInterval) -> date:
    """actual_return_date when set, otherwise expected_return_date"""
    return rental.actual_return_date or rental.expected_return_date


class AvailabilityEngine:
    """
    Overlap checks and blocked ranges for a single book.

    Every call re-reads the repository; nothing is cached between calls.
    Serializing the check with the insert that follows it is the caller's job
    (see rental_service.create_rental).
    """

    def __init__(self, repository: RentalRepository):
        self.repository = repository

    def find_conflicts(
        self,
        book_id: str,
        start_date: date,
        end_date: date,
        exclude_rental_id: Optional[str] = None
    ) -> List[RentalInterval]:
        """
        Active rentals of the book overlapping [start_date, end_date].

        Overlap is tested against expected_return_date. An active rental has
        not been returned yet, and an early return flips the status so the
        rental drops out of the active set entirely.

        Raises:
            InvalidRentalPeriod: start_date is after end_date. The schema layer
                rejects such input first; answering "available" here would let
                an unvalidated caller insert an inverted rental.
        """
        if start_date > end_date:
            raise InvalidRentalPeriod(
                f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}"
            )

        active = self.repository.find_active_by_book(book_id, exclude_rental_id)

        return [
            rental for rental in active
            # The repository contract already excludes these; a fake or a
            # stale snapshot must not change the answer.
            if rental.status == RentalStatus.ACTIVE.value
            and rental.id != exclude_rental_id
            and intervals_overlap(
                rental.start_date, rental.expected_return_date,
                start_date, end_date
            )
        ]

    def is_available(
        self,
        book_id: str,
        start_date: date,
        end_date: date,
        exclude_rental_id: Optional[str] = None
    ) -> bool:
        """True when no active rental (other than exclude_rental_id) overlaps the period"""
        conflicts = self.find_conflicts(book_id, start_date, end_date, exclude_rental_id)

        logger.debug(
            f"Availability {book_id} {start_date}..{end_date} "
            f"(exclude={exclude_rental_id}): {len(conflicts)} conflict(s)"
        )
        return not conflicts

    def get_blocked_ranges(self, book_id: str) -> List[BlockedRange]:
        """
        One BlockedRange per active rental, ordered by start date.

        Ranges are not merged even when they overlap each other. The end is
        the effective end date, so a (contradictory) active rental carrying an
        actual_return_date is shown up to that date.
        """
        active = self.repository.find_active_by_book(book_id)

        ranges = [
            BlockedRange(
                start=rental.start_date,
                end=effective_end_date(rental),
                customer_name=rental.customer_name,
            )
            for rental in active
            if rental.status == RentalStatus.ACTIVE.value
        ]
        # sorted() is stable, ties keep repository order
        return sorted(ranges, key=lambda r: r.start)


def get_availability_engine(db: Session) -> AvailabilityEngine:
    """Engine bound to the request's database session"""
    return AvailabilityEngine(SqlAlchemyRentalRepository(db))


# ============================================================================
# Calendar helpers (display side, built on get_blocked_ranges output)
# ============================================================================

def expand_blocked_days(ranges: Iterable[BlockedRange]) -> List[date]:
    """Every calendar day covered by the ranges, sorted and without duplicates"""
    days = set()
    for blocked in ranges:
        current = blocked.start
        # An inverted range covers no days
        while current <= blocked.end:
            days.add(current)
            current += timedelta(days=1)
    return sorted(days)


def blocked_range_for_day(day: date, ranges: Iterable[BlockedRange]) -> Optional[BlockedRange]:
    """First range covering the day, used for the "rented by" tooltip"""
    for blocked in ranges:
        if blocked.start <= day <= blocked.end:
            return blocked
    return None
