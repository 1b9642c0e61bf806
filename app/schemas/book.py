from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum

from ..utils.sanitization import clean_text


class BookStatus(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    UNAVAILABLE = "unavailable"


class BookBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255, description="Book title")
    author: Optional[str] = Field(None, max_length=255)
    isbn: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = Field(None, max_length=5000)
    cover_url: Optional[str] = Field(None, max_length=500)

    @field_validator('title', 'author', 'isbn', 'description', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        if isinstance(v, str):
            return clean_text(v)
        return v


class BookCreate(BookBase):
    pass


class BookUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    author: Optional[str] = Field(None, max_length=255)
    isbn: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = Field(None, max_length=5000)
    cover_url: Optional[str] = Field(None, max_length=500)
    status: Optional[BookStatus] = None

    @field_validator('title', 'author', 'isbn', 'description', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        if isinstance(v, str):
            return clean_text(v)
        return v


class BookResponse(BookBase):
    id: str
    status: BookStatus = BookStatus.AVAILABLE
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
