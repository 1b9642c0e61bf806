"""
Shared fixtures: in-memory SQLite database, API client with get_db
overridden, and small factories for books, customers and rentals.
"""

import os
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.database import Base, get_db
from app.main import app
from app.models.book import Book
from app.models.customer import Customer
from app.models.rental import Rental, RentalStatus
from app.utils.rate_limiter import limiter


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True


@pytest.fixture
def make_book(db):
    def _make(title: str = "Dom Casmurro", **kwargs) -> Book:
        book = Book(title=title, **kwargs)
        db.add(book)
        db.commit()
        db.refresh(book)
        return book
    return _make


@pytest.fixture
def make_customer(db):
    def _make(name: str = "Ana", **kwargs) -> Customer:
        customer = Customer(name=name, **kwargs)
        db.add(customer)
        db.commit()
        db.refresh(customer)
        return customer
    return _make


@pytest.fixture
def make_rental(db):
    """Insert a rental row directly, bypassing the availability check"""
    def _make(
        book: Book,
        customer: Customer,
        start_date: date,
        expected_return_date: date,
        status: str = RentalStatus.ACTIVE.value,
        actual_return_date: date = None,
    ) -> Rental:
        rental = Rental(
            book_id=book.id,
            customer_id=customer.id,
            start_date=start_date,
            expected_return_date=expected_return_date,
            actual_return_date=actual_return_date,
            status=status,
        )
        db.add(rental)
        db.commit()
        db.refresh(rental)
        return rental
    return _make
