from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
import logging

from ..database import get_db
from ..models.rental import Rental
from ..schemas.rental import (
    RentalResponse, RentalCreate, RentalUpdate, RentalReturn, RentalStatus,
    AvailabilityResponse, BlockedDatesResponse, BlockedDayResponse, BlockedRangeResponse
)
from ..services import rental_service
from ..services.availability_service import (
    InvalidRentalPeriod, blocked_range_for_day, effective_end_date, expand_blocked_days,
    get_availability_engine
)
from ..utils.rate_limiter import limiter, RENTAL_WRITE_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rentals", tags=["rentals"])


def to_rental_response(rental: Rental, today: Optional[date] = None) -> RentalResponse:
    """Flatten a rental with its book title, customer name and overdue view state"""
    return RentalResponse(
        id=rental.id,
        book_id=rental.book_id,
        book_title=rental.book.title if rental.book else "",
        customer_id=rental.customer_id,
        customer_name=rental.customer.name if rental.customer else "",
        start_date=rental.start_date,
        expected_return_date=rental.expected_return_date,
        actual_return_date=rental.actual_return_date,
        status=rental.status,
        effective_status=rental.effective_status(today),
        notes=rental.notes,
        created_at=rental.created_at,
        updated_at=rental.updated_at,
    )


@router.get("", response_model=List[RentalResponse])
@router.get("/", response_model=List[RentalResponse])
async def get_all_rentals(
    status_filter: Optional[RentalStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db)
):
    """List rentals, newest first. status=overdue lists active rentals past due."""
    rentals = rental_service.list_rentals(db, status_filter.value if status_filter else None)
    return [to_rental_response(r) for r in rentals]


@router.get("/overdue", response_model=List[RentalResponse])
@router.get("/overdue/", response_model=List[RentalResponse])
async def get_overdue_rentals(db: Session = Depends(get_db)):
    return [to_rental_response(r) for r in rental_service.get_overdue_rentals(db)]


@router.get("/calendar", response_model=List[RentalResponse])
@router.get("/calendar/", response_model=List[RentalResponse])
async def get_calendar_rentals(
    start: date,
    end: date,
    db: Session = Depends(get_db)
):
    """Rentals touching the [start, end] window, by start date"""
    rentals = rental_service.get_rentals_in_range(db, start, end)
    return [to_rental_response(r) for r in rentals]


@router.get("/check-availability", response_model=AvailabilityResponse)
@router.get("/check-availability/", response_model=AvailabilityResponse)
async def check_availability(
    book_id: str,
    start_date: date,
    end_date: date,
    exclude_rental_id: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """Can this book be rented over [start_date, end_date] (both inclusive)?"""
    engine = get_availability_engine(db)
    try:
        conflicts = engine.find_conflicts(book_id, start_date, end_date, exclude_rental_id)
    except InvalidRentalPeriod as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    available = not conflicts
    return AvailabilityResponse(
        book_id=book_id,
        start_date=start_date,
        end_date=end_date,
        available=available,
        conflicts=[
            BlockedRangeResponse(
                start=c.start_date,
                end=effective_end_date(c),
                customer_name=c.customer_name,
            )
            for c in conflicts
        ],
        message="Book is available for this period" if available
        else "Book is already rented in this period",
    )


@router.get("/blocked-dates/{book_id}", response_model=BlockedDatesResponse)
@router.get("/blocked-dates/{book_id}/", response_model=BlockedDatesResponse)
async def get_blocked_dates(
    book_id: str,
    db: Session = Depends(get_db)
):
    """
    Blocked ranges of a book for the rental form's date picker.

    `ranges` carries the renter's name for tooltips, `days` every day to disable.
    """
    ranges = get_availability_engine(db).get_blocked_ranges(book_id)
    return BlockedDatesResponse(
        book_id=book_id,
        ranges=[
            BlockedRangeResponse(start=r.start, end=r.end, customer_name=r.customer_name)
            for r in ranges
        ],
        days=expand_blocked_days(ranges),
    )


@router.get("/blocked-dates/{book_id}/{day}", response_model=BlockedDayResponse)
async def get_blocked_day(
    book_id: str,
    day: date,
    db: Session = Depends(get_db)
):
    """Who holds the book on a given day (calendar tooltip)"""
    ranges = get_availability_engine(db).get_blocked_ranges(book_id)
    covering = blocked_range_for_day(day, ranges)
    return BlockedDayResponse(
        book_id=book_id,
        day=day,
        blocked=covering is not None,
        blocked_by=BlockedRangeResponse(
            start=covering.start, end=covering.end, customer_name=covering.customer_name
        ) if covering else None,
    )


@router.get("/{rental_id}", response_model=RentalResponse)
@router.get("/{rental_id}/", response_model=RentalResponse)
async def get_rental(
    rental_id: str,
    db: Session = Depends(get_db)
):
    return to_rental_response(rental_service.get_rental_or_404(db, rental_id))


@router.post("", response_model=RentalResponse, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=RentalResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RENTAL_WRITE_LIMIT)
async def create_rental(
    request: Request,
    rental_data: RentalCreate,
    db: Session = Depends(get_db)
):
    """
    Book a rental.

    - 404 when the book or customer does not exist
    - 409 when the period overlaps an active rental of the book
    """
    rental = rental_service.create_rental(db, rental_data)
    return to_rental_response(rental_service.get_rental_or_404(db, rental.id))


@router.patch("/{rental_id}", response_model=RentalResponse)
@router.patch("/{rental_id}/", response_model=RentalResponse)
@limiter.limit(RENTAL_WRITE_LIMIT)
async def update_rental(
    request: Request,
    rental_id: str,
    rental_data: RentalUpdate,
    db: Session = Depends(get_db)
):
    rental = rental_service.update_rental(db, rental_id, rental_data)
    return to_rental_response(rental)


@router.post("/{rental_id}/return", response_model=RentalResponse)
@router.post("/{rental_id}/return/", response_model=RentalResponse)
async def return_rental(
    rental_id: str,
    return_data: Optional[RentalReturn] = None,
    db: Session = Depends(get_db)
):
    """Record the book as returned (today unless returned_on is given)"""
    returned_on = return_data.returned_on if return_data else None
    rental_service.return_rental(db, rental_id, returned_on)
    return to_rental_response(rental_service.get_rental_or_404(db, rental_id))


@router.post("/{rental_id}/cancel", response_model=RentalResponse)
@router.post("/{rental_id}/cancel/", response_model=RentalResponse)
async def cancel_rental(
    rental_id: str,
    db: Session = Depends(get_db)
):
    rental_service.cancel_rental(db, rental_id)
    return to_rental_response(rental_service.get_rental_or_404(db, rental_id))
