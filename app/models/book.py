import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Index
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class BookStatus(str, enum.Enum):
    """Catalog label shown on the book card; never consulted for scheduling"""
    AVAILABLE = "available"
    RENTED = "rented"
    UNAVAILABLE = "unavailable"


class Book(Base):
    __tablename__ = "books"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=True)
    isbn = Column(String(20), nullable=True)
    description = Column(Text, nullable=True)
    cover_url = Column(String(500), nullable=True)
    status = Column(String(20), default=BookStatus.AVAILABLE.value, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Rental history goes with the book; deletion is refused while any rental is active
    rentals = relationship("Rental", back_populates="book", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_book_title", "title"),
        Index("ix_book_isbn", "isbn"),
    )

    def __repr__(self):
        return f"<Book {self.title}>"
