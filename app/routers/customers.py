from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional
import logging

from ..database import get_db
from ..models.customer import Customer
from ..schemas.customer import (
    CustomerResponse, CustomerCreate, CustomerUpdate, CustomerStatsResponse, TopBookResponse
)
from ..schemas.rental import RentalResponse
from ..services import rental_service
from ..utils.sanitization import sanitize_search_query
from .rentals import to_rental_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/customers", tags=["customers"])


def get_customer_or_404(db: Session, customer_id: str) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Customer not found"
        )
    return customer


@router.get("", response_model=List[CustomerResponse])
@router.get("/", response_model=List[CustomerResponse])
async def get_all_customers(
    q: Optional[str] = Query(None, max_length=100, description="Search name, email or phone"),
    db: Session = Depends(get_db)
):
    query = db.query(Customer)

    term = sanitize_search_query(q)
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(
            Customer.name.ilike(pattern, escape="\\"),
            Customer.email.ilike(pattern, escape="\\"),
            Customer.phone.ilike(pattern, escape="\\"),
        ))

    return query.order_by(Customer.name.asc()).all()


@router.get("/{customer_id}", response_model=CustomerResponse)
@router.get("/{customer_id}/", response_model=CustomerResponse)
async def get_customer(
    customer_id: str,
    db: Session = Depends(get_db)
):
    return get_customer_or_404(db, customer_id)


@router.get("/{customer_id}/rentals", response_model=List[RentalResponse])
@router.get("/{customer_id}/rentals/", response_model=List[RentalResponse])
async def get_customer_rental_history(
    customer_id: str,
    db: Session = Depends(get_db)
):
    """Rental history of a customer, most recent start first"""
    get_customer_or_404(db, customer_id)
    return [to_rental_response(r) for r in rental_service.get_customer_rentals(db, customer_id)]


@router.get("/{customer_id}/stats", response_model=CustomerStatsResponse)
@router.get("/{customer_id}/stats/", response_model=CustomerStatsResponse)
async def get_customer_stats(
    customer_id: str,
    db: Session = Depends(get_db)
):
    """Rental counts and average rental length for the customer detail page"""
    get_customer_or_404(db, customer_id)
    return rental_service.get_customer_stats(db, customer_id)


@router.get("/{customer_id}/top-books", response_model=List[TopBookResponse])
@router.get("/{customer_id}/top-books/", response_model=List[TopBookResponse])
async def get_customer_top_books(
    customer_id: str,
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db)
):
    get_customer_or_404(db, customer_id)
    return [
        TopBookResponse(
            book_id=book.id,
            title=book.title,
            author=book.author,
            cover_url=book.cover_url,
            rental_count=rental_count,
        )
        for book, rental_count in rental_service.get_customer_top_books(db, customer_id, limit)
    ]


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    db: Session = Depends(get_db)
):
    customer = Customer(**customer_data.model_dump())
    db.add(customer)
    db.commit()
    db.refresh(customer)

    logger.info(f"Customer created: {customer.id}")
    return customer


@router.put("/{customer_id}", response_model=CustomerResponse)
@router.put("/{customer_id}/", response_model=CustomerResponse)
async def update_customer(
    customer_id: str,
    customer_data: CustomerUpdate,
    db: Session = Depends(get_db)
):
    customer = get_customer_or_404(db, customer_id)

    for field, value in customer_data.model_dump(exclude_unset=True).items():
        setattr(customer, field, value)

    db.commit()
    db.refresh(customer)
    return customer


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
@router.delete("/{customer_id}/", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: str,
    db: Session = Depends(get_db)
):
    """Delete a customer; refused while they have active rentals"""
    rental_service.delete_customer(db, customer_id)
