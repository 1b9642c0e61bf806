from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime, date
from enum import Enum

from ..config import settings
from ..utils.sanitization import clean_text


class RentalStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


def validate_rental_period(start_date: date, expected_return_date: date) -> None:
    """Both endpoints are inclusive, so a same-day rental is one day long"""
    if expected_return_date < start_date:
        raise ValueError("expected_return_date must be on or after start_date")
    days = (expected_return_date - start_date).days + 1
    if days > settings.max_rental_days:
        raise ValueError(
            f"Rental period too long ({days} days). Maximum is {settings.max_rental_days} days"
        )


class RentalCreate(BaseModel):
    book_id: str = Field(..., min_length=1, max_length=36)
    customer_id: str = Field(..., min_length=1, max_length=36)
    start_date: date
    expected_return_date: date
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('notes', mode='before')
    @classmethod
    def sanitize_notes(cls, v):
        if isinstance(v, str):
            return clean_text(v)
        return v

    @model_validator(mode='after')
    def validate_dates(self):
        validate_rental_period(self.start_date, self.expected_return_date)
        return self


class RentalUpdate(BaseModel):
    start_date: Optional[date] = None
    expected_return_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('notes', mode='before')
    @classmethod
    def sanitize_notes(cls, v):
        if isinstance(v, str):
            return clean_text(v)
        return v

    @model_validator(mode='after')
    def validate_dates(self):
        # Partial updates are checked against the stored rental by the service
        if self.start_date and self.expected_return_date:
            validate_rental_period(self.start_date, self.expected_return_date)
        return self


class RentalReturn(BaseModel):
    returned_on: Optional[date] = Field(None, description="Defaults to today")


class RentalResponse(BaseModel):
    id: str
    book_id: str
    book_title: str = ""
    customer_id: str
    customer_name: str = ""
    start_date: date
    expected_return_date: date
    actual_return_date: Optional[date] = None
    status: RentalStatus
    effective_status: RentalStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BlockedRangeResponse(BaseModel):
    start: date
    end: date
    customer_name: Optional[str] = None


class AvailabilityResponse(BaseModel):
    book_id: str
    start_date: date
    end_date: date
    available: bool
    conflicts: List[BlockedRangeResponse] = []
    message: str


class BlockedDatesResponse(BaseModel):
    book_id: str
    ranges: List[BlockedRangeResponse]
    days: List[date] = Field(default_factory=list, description="Every calendar day covered by ranges")


class BlockedDayResponse(BaseModel):
    book_id: str
    day: date
    blocked: bool
    blocked_by: Optional[BlockedRangeResponse] = Field(None, description="The active rental covering the day")
