from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional
import logging

from ..database import get_db
from ..models.book import Book
from ..schemas.book import BookResponse, BookCreate, BookUpdate, BookStatus
from ..services import rental_service
from ..utils.sanitization import sanitize_search_query

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/books", tags=["books"])


def get_book_or_404(db: Session, book_id: str) -> Book:
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return book


@router.get("", response_model=List[BookResponse])
@router.get("/", response_model=List[BookResponse])
async def get_all_books(
    status_filter: Optional[BookStatus] = Query(None, alias="status"),
    q: Optional[str] = Query(None, max_length=100, description="Search title, author or ISBN"),
    db: Session = Depends(get_db)
):
    """List the catalog, alphabetically"""
    query = db.query(Book)

    if status_filter:
        query = query.filter(Book.status == status_filter.value)

    term = sanitize_search_query(q)
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(
            Book.title.ilike(pattern, escape="\\"),
            Book.author.ilike(pattern, escape="\\"),
            Book.isbn.ilike(pattern, escape="\\"),
        ))

    return query.order_by(Book.title.asc()).all()


@router.get("/{book_id}", response_model=BookResponse)
@router.get("/{book_id}/", response_model=BookResponse)
async def get_book(
    book_id: str,
    db: Session = Depends(get_db)
):
    return get_book_or_404(db, book_id)


@router.post("", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def create_book(
    book_data: BookCreate,
    db: Session = Depends(get_db)
):
    book = Book(**book_data.model_dump())
    db.add(book)
    db.commit()
    db.refresh(book)

    logger.info(f"Book created: {book.id} ({book.title})")
    return book


@router.put("/{book_id}", response_model=BookResponse)
@router.put("/{book_id}/", response_model=BookResponse)
async def update_book(
    book_id: str,
    book_data: BookUpdate,
    db: Session = Depends(get_db)
):
    book = get_book_or_404(db, book_id)

    update_data = book_data.model_dump(exclude_unset=True)
    if "status" in update_data and update_data["status"] is not None:
        update_data["status"] = update_data["status"].value

    for field, value in update_data.items():
        setattr(book, field, value)

    db.commit()
    db.refresh(book)
    return book


@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
@router.delete("/{book_id}/", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(
    book_id: str,
    db: Session = Depends(get_db)
):
    """Delete a book; refused while it has active rentals"""
    rental_service.delete_book(db, book_id)
