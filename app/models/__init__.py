# Models package
from .book import Book, BookStatus
from .customer import Customer
from .rental import Rental, RentalStatus, PERSISTED_STATUSES

__all__ = [
    "Book", "BookStatus",
    "Customer",
    "Rental", "RentalStatus", "PERSISTED_STATUSES",
]
