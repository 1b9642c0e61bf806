# Services package
from .availability_service import (
    AvailabilityEngine,
    BlockedRange,
    InvalidRentalPeriod,
    RentalInterval,
    RentalRepository,
    SqlAlchemyRentalRepository,
    blocked_range_for_day,
    effective_end_date,
    expand_blocked_days,
    get_availability_engine,
    intervals_overlap,
)

__all__ = [
    "AvailabilityEngine", "BlockedRange", "InvalidRentalPeriod",
    "RentalInterval", "RentalRepository", "SqlAlchemyRentalRepository",
    "blocked_range_for_day", "effective_end_date", "expand_blocked_days",
    "get_availability_engine", "intervals_overlap",
]
