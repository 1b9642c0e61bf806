from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime

from ..utils.sanitization import clean_text


class CustomerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Customer name")
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=1000)

    @field_validator('name', 'phone', 'address', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        if isinstance(v, str):
            return clean_text(v)
        return v

    @field_validator('email', mode='before')
    @classmethod
    def empty_email_is_none(cls, v):
        # The customer form submits "" when the field is left blank
        if isinstance(v, str) and not v.strip():
            return None
        return v


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=1000)

    @field_validator('name', 'phone', 'address', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        if isinstance(v, str):
            return clean_text(v)
        return v

    @field_validator('email', mode='before')
    @classmethod
    def empty_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class CustomerResponse(CustomerBase):
    id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CustomerStatsResponse(BaseModel):
    customer_id: str
    total_rentals: int = 0
    active_rentals: int = 0
    returned_rentals: int = 0
    cancelled_rentals: int = 0
    overdue_rentals: int = Field(0, description="Active rentals past their expected return date")
    average_rental_days: int = Field(0, description="Mean length of returned rentals, rounded")


class TopBookResponse(BaseModel):
    book_id: str
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    rental_count: int
