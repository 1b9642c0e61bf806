"""
Tests for the Rental Service

Test Coverage:
1. create_rental: happy path, conflicts, unknown book/customer
2. update_rental: re-dating without self-conflict
3. return_rental / cancel_rental transitions and the freed period
4. Overdue view state and queries
5. Calendar window query
6. Guarded book/customer deletion
7. Customer analytics
"""

from datetime import date, timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from app.models.book import Book
from app.models.customer import Customer
from app.models.rental import Rental, RentalStatus
from app.schemas.rental import RentalCreate, RentalUpdate
from app.services import rental_service


def d(value: str) -> date:
    return date.fromisoformat(value)


def create(db, book, customer, start: str, end: str, notes: str = None) -> Rental:
    return rental_service.create_rental(db, RentalCreate(
        book_id=book.id,
        customer_id=customer.id,
        start_date=d(start),
        expected_return_date=d(end),
        notes=notes,
    ))


class TestCreateRental:

    def test_creates_active_rental(self, db, make_book, make_customer):
        book = make_book()
        ana = make_customer("Ana")

        rental = create(db, book, ana, "2024-06-01", "2024-06-10", notes="gift")

        assert rental.id
        assert rental.status == RentalStatus.ACTIVE.value
        assert rental.actual_return_date is None
        assert rental.notes == "gift"
        assert db.query(Rental).count() == 1

    def test_overlapping_period_is_rejected_with_409(self, db, make_book, make_customer):
        book = make_book()
        create(db, book, make_customer("Ana"), "2024-06-01", "2024-06-10")

        with pytest.raises(HTTPException) as exc_info:
            create(db, book, make_customer("Bruno"), "2024-06-10", "2024-06-12")

        assert exc_info.value.status_code == 409
        assert "Ana" in exc_info.value.detail
        assert "2024-06-01" in exc_info.value.detail
        assert db.query(Rental).count() == 1

    def test_next_day_is_accepted(self, db, make_book, make_customer):
        book = make_book()
        create(db, book, make_customer("Ana"), "2024-06-01", "2024-06-10")

        create(db, book, make_customer("Bruno"), "2024-06-11", "2024-06-12")

        assert db.query(Rental).count() == 2

    def test_same_dates_on_another_book_are_accepted(self, db, make_book, make_customer):
        ana = make_customer("Ana")
        create(db, make_book("Book A"), ana, "2024-06-01", "2024-06-10")

        create(db, make_book("Book B"), ana, "2024-06-01", "2024-06-10")

        assert db.query(Rental).count() == 2

    def test_returned_rental_does_not_block(self, db, make_book, make_customer, make_rental):
        book = make_book()
        ana = make_customer("Ana")
        make_rental(book, ana, d("2024-06-01"), d("2024-06-10"),
                    status="returned", actual_return_date=d("2024-06-04"))

        rental = create(db, book, make_customer("Bruno"), "2024-06-05", "2024-06-08")

        assert rental.status == "active"

    def test_unknown_book_is_404(self, db, make_customer):
        with pytest.raises(HTTPException) as exc_info:
            rental_service.create_rental(db, RentalCreate(
                book_id="missing",
                customer_id=make_customer().id,
                start_date=d("2024-06-01"),
                expected_return_date=d("2024-06-02"),
            ))

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Book not found"

    def test_unknown_customer_is_404(self, db, make_book):
        with pytest.raises(HTTPException) as exc_info:
            rental_service.create_rental(db, RentalCreate(
                book_id=make_book().id,
                customer_id="missing",
                start_date=d("2024-06-01"),
                expected_return_date=d("2024-06-02"),
            ))

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Customer not found"


class TestUpdateRental:

    def test_extending_own_period_does_not_self_conflict(self, db, make_book, make_customer):
        book = make_book()
        rental = create(db, book, make_customer(), "2024-06-01", "2024-06-10")

        updated = rental_service.update_rental(db, rental.id, RentalUpdate(expected_return_date=d("2024-06-15")))

        assert updated.expected_return_date == d("2024-06-15")

    def test_extending_into_another_rental_is_409(self, db, make_book, make_customer):
        book = make_book()
        first = create(db, book, make_customer("Ana"), "2024-06-01", "2024-06-10")
        create(db, book, make_customer("Bruno"), "2024-06-20", "2024-06-25")

        with pytest.raises(HTTPException) as exc_info:
            rental_service.update_rental(db, first.id, RentalUpdate(expected_return_date=d("2024-06-20")))

        assert exc_info.value.status_code == 409
        assert "Bruno" in exc_info.value.detail

    def test_partial_update_that_inverts_period_is_400(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-06-05", "2024-06-10")

        with pytest.raises(HTTPException) as exc_info:
            rental_service.update_rental(db, rental.id, RentalUpdate(start_date=d("2024-06-12")))

        assert exc_info.value.status_code == 400

    def test_partial_update_that_makes_period_too_long_is_400(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-01-01", "2024-01-10")

        with pytest.raises(HTTPException) as exc_info:
            rental_service.update_rental(db, rental.id, RentalUpdate(expected_return_date=d("2030-01-01")))

        assert exc_info.value.status_code == 400
        assert "too long" in exc_info.value.detail
        db.refresh(rental)
        assert rental.expected_return_date == d("2024-01-10")

    def test_partial_start_update_is_also_length_checked(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-06-01", "2024-06-10")

        with pytest.raises(HTTPException) as exc_info:
            rental_service.update_rental(db, rental.id, RentalUpdate(start_date=d("2020-01-01")))

        assert exc_info.value.status_code == 400

    def test_notes_only_update(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-06-05", "2024-06-10")

        updated = rental_service.update_rental(db, rental.id, RentalUpdate(notes="call before"))

        assert updated.notes == "call before"

    def test_returned_rental_cannot_be_edited(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-06-05", "2024-06-10")
        rental_service.return_rental(db, rental.id, d("2024-06-08"))

        with pytest.raises(HTTPException) as exc_info:
            rental_service.update_rental(db, rental.id, RentalUpdate(notes="late"))

        assert exc_info.value.status_code == 400


class TestStatusTransitions:

    def test_return_sets_actual_date_and_frees_the_book(self, db, make_book, make_customer):
        book = make_book()
        rental = create(db, book, make_customer("Ana"), "2024-06-01", "2024-06-10")

        returned = rental_service.return_rental(db, rental.id, d("2024-06-04"))

        assert returned.status == RentalStatus.RETURNED.value
        assert returned.actual_return_date == d("2024-06-04")
        # The remaining days of the original period are bookable right away
        create(db, book, make_customer("Bruno"), "2024-06-05", "2024-06-10")

    def test_return_defaults_to_today(self, db, make_book, make_customer):
        start = date.today() - timedelta(days=3)
        rental = create(db, make_book(), make_customer(), start.isoformat(), date.today().isoformat())

        returned = rental_service.return_rental(db, rental.id)

        assert returned.actual_return_date == date.today()

    def test_return_before_start_is_400(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-06-05", "2024-06-10")

        with pytest.raises(HTTPException) as exc_info:
            rental_service.return_rental(db, rental.id, d("2024-06-01"))

        assert exc_info.value.status_code == 400

    def test_cancel_frees_the_book(self, db, make_book, make_customer):
        book = make_book()
        rental = create(db, book, make_customer("Ana"), "2024-06-01", "2024-06-10")

        cancelled = rental_service.cancel_rental(db, rental.id)

        assert cancelled.status == RentalStatus.CANCELLED.value
        create(db, book, make_customer("Bruno"), "2024-06-01", "2024-06-10")

    def test_cannot_return_cancelled_rental(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-06-01", "2024-06-10")
        rental_service.cancel_rental(db, rental.id)

        with pytest.raises(HTTPException) as exc_info:
            rental_service.return_rental(db, rental.id, d("2024-06-05"))

        assert exc_info.value.status_code == 400

    def test_cannot_cancel_twice(self, db, make_book, make_customer):
        rental = create(db, make_book(), make_customer(), "2024-06-01", "2024-06-10")
        rental_service.cancel_rental(db, rental.id)

        with pytest.raises(HTTPException) as exc_info:
            rental_service.cancel_rental(db, rental.id)

        assert exc_info.value.status_code == 400

    def test_unknown_rental_is_404(self, db):
        with pytest.raises(HTTPException) as exc_info:
            rental_service.cancel_rental(db, "missing")

        assert exc_info.value.status_code == 404


class TestOverdue:

    def test_effective_status(self, db, make_book, make_customer, make_rental):
        book = make_book()
        ana = make_customer()
        today = d("2024-06-15")

        late = make_rental(book, ana, d("2024-06-01"), d("2024-06-10"))
        due_today = make_rental(book, ana, d("2024-06-11"), d("2024-06-15"))
        returned = make_rental(book, ana, d("2024-05-01"), d("2024-05-05"),
                               status="returned", actual_return_date=d("2024-05-10"))

        assert late.effective_status(today) == "overdue"
        assert due_today.effective_status(today) == "active"
        assert returned.effective_status(today) == "returned"

    def test_overdue_query(self, db, make_book, make_customer, make_rental):
        book = make_book()
        ana = make_customer()
        today = d("2024-06-15")

        late = make_rental(book, ana, d("2024-06-01"), d("2024-06-10"))
        later = make_rental(book, ana, d("2024-05-20"), d("2024-05-25"))
        make_rental(book, ana, d("2024-06-11"), d("2024-06-20"))
        make_rental(book, ana, d("2024-04-01"), d("2024-04-05"), status="cancelled")

        overdue = rental_service.get_overdue_rentals(db, today=today)

        assert [r.id for r in overdue] == [later.id, late.id]

    def test_overdue_is_never_stored(self, db, make_book, make_customer, make_rental):
        with pytest.raises(IntegrityError):
            make_rental(make_book(), make_customer(), d("2024-06-01"), d("2024-06-10"), status="overdue")

    def test_list_with_overdue_filter(self, db, make_book, make_customer, make_rental):
        book = make_book()
        ana = make_customer()
        late = make_rental(book, ana, d("2024-06-01"), d("2024-06-10"))
        make_rental(book, ana, d("2024-06-11"), d("2024-06-20"))

        listed = rental_service.list_rentals(db, "overdue", today=d("2024-06-15"))

        assert [r.id for r in listed] == [late.id]

    def test_list_by_persisted_status(self, db, make_book, make_customer, make_rental):
        book = make_book()
        ana = make_customer()
        make_rental(book, ana, d("2024-06-01"), d("2024-06-10"))
        cancelled = make_rental(book, ana, d("2024-06-11"), d("2024-06-20"), status="cancelled")

        assert [r.id for r in rental_service.list_rentals(db, "cancelled")] == [cancelled.id]
        assert len(rental_service.list_rentals(db)) == 2


class TestCalendarWindow:

    def test_rentals_touching_window(self, db, make_book, make_customer, make_rental):
        book = make_book()
        ana = make_customer()

        before = make_rental(book, ana, d("2024-05-01"), d("2024-05-10"))
        straddling = make_rental(book, ana, d("2024-05-28"), d("2024-06-02"))
        inside = make_rental(book, ana, d("2024-06-10"), d("2024-06-12"), status="returned",
                             actual_return_date=d("2024-06-12"))
        after = make_rental(book, ana, d("2024-07-01"), d("2024-07-05"))

        found = rental_service.get_rentals_in_range(db, d("2024-06-01"), d("2024-06-30"))

        assert [r.id for r in found] == [straddling.id, inside.id]
        assert before.id not in [r.id for r in found]
        assert after.id not in [r.id for r in found]

    def test_late_actual_return_keeps_rental_in_window(self, db, make_book, make_customer, make_rental):
        book = make_book()
        late_return = make_rental(book, make_customer(), d("2024-05-20"), d("2024-05-25"),
                                  status="returned", actual_return_date=d("2024-06-03"))

        found = rental_service.get_rentals_in_range(db, d("2024-06-01"), d("2024-06-30"))

        assert [r.id for r in found] == [late_return.id]

    def test_inverted_window_is_400(self, db):
        with pytest.raises(HTTPException) as exc_info:
            rental_service.get_rentals_in_range(db, d("2024-06-30"), d("2024-06-01"))

        assert exc_info.value.status_code == 400


class TestDeletion:

    def test_book_with_active_rental_is_kept(self, db, make_book, make_customer):
        book = make_book()
        rental = create(db, book, make_customer(), "2024-06-01", "2024-06-10")

        with pytest.raises(HTTPException) as exc_info:
            rental_service.delete_book(db, book.id)

        assert exc_info.value.status_code == 409
        assert db.query(Rental).filter(Rental.id == rental.id).count() == 1

    def test_book_with_closed_rentals_is_deleted_with_history(self, db, make_book, make_customer, make_rental):
        book = make_book()
        make_rental(book, make_customer(), d("2024-06-01"), d("2024-06-10"), status="cancelled")

        rental_service.delete_book(db, book.id)

        assert db.query(Book).count() == 0
        assert db.query(Rental).count() == 0

    def test_unknown_book_is_404(self, db):
        with pytest.raises(HTTPException) as exc_info:
            rental_service.delete_book(db, "missing")

        assert exc_info.value.status_code == 404

    def test_customer_with_active_rental_is_kept(self, db, make_book, make_customer):
        ana = make_customer("Ana")
        create(db, make_book(), ana, "2024-06-01", "2024-06-10")

        with pytest.raises(HTTPException) as exc_info:
            rental_service.delete_customer(db, ana.id)

        assert exc_info.value.status_code == 409
        assert db.query(Customer).count() == 1

    def test_idle_customer_is_deleted(self, db, make_customer):
        bruno = make_customer("Bruno")

        rental_service.delete_customer(db, bruno.id)

        assert db.query(Customer).count() == 0

    def test_unknown_customer_is_404(self, db):
        with pytest.raises(HTTPException) as exc_info:
            rental_service.delete_customer(db, "missing")

        assert exc_info.value.status_code == 404


class TestCustomerAnalytics:

    def test_stats(self, db, make_book, make_customer, make_rental):
        book = make_book()
        ana = make_customer("Ana")
        today = d("2024-06-15")

        make_rental(book, ana, d("2024-06-01"), d("2024-06-10"))
        make_rental(book, ana, d("2024-06-12"), d("2024-06-20"))
        make_rental(book, ana, d("2024-05-01"), d("2024-05-05"),
                    status="returned", actual_return_date=d("2024-05-03"))
        make_rental(book, ana, d("2024-04-01"), d("2024-04-05"),
                    status="returned", actual_return_date=d("2024-04-06"))
        make_rental(book, ana, d("2024-03-01"), d("2024-03-05"), status="cancelled")
        make_rental(book, make_customer("Bruno"), d("2024-02-01"), d("2024-02-05"))

        stats = rental_service.get_customer_stats(db, ana.id, today=today)

        assert stats == {
            "customer_id": ana.id,
            "total_rentals": 5,
            "active_rentals": 2,
            "returned_rentals": 2,
            "cancelled_rentals": 1,
            "overdue_rentals": 1,
            # 3 and 6 days, both ends inclusive
            "average_rental_days": 5,
        }

    def test_stats_without_rentals(self, db, make_customer):
        stats = rental_service.get_customer_stats(db, make_customer().id)

        assert stats["total_rentals"] == 0
        assert stats["average_rental_days"] == 0

    def test_top_books(self, db, make_book, make_customer, make_rental):
        ana = make_customer("Ana")
        favourite = make_book("Memorias Postumas")
        other = make_book("Iracema")
        unloved = make_book("Senhora")

        make_rental(favourite, ana, d("2024-01-01"), d("2024-01-05"), status="returned",
                    actual_return_date=d("2024-01-05"))
        make_rental(favourite, ana, d("2024-02-01"), d("2024-02-05"))
        make_rental(other, ana, d("2024-01-01"), d("2024-01-05"))
        make_rental(unloved, ana, d("2024-01-01"), d("2024-01-05"), status="cancelled")
        make_rental(unloved, ana, d("2024-02-01"), d("2024-02-05"), status="cancelled")

        top = rental_service.get_customer_top_books(db, ana.id)

        assert [(book.title, count) for book, count in top] == [
            ("Memorias Postumas", 2),
            ("Iracema", 1),
        ]

    def test_top_books_limit(self, db, make_book, make_customer, make_rental):
        ana = make_customer("Ana")
        for title in ("A", "B", "C"):
            make_rental(make_book(title), ana, d("2024-01-01"), d("2024-01-05"))

        top = rental_service.get_customer_top_books(db, ana.id, limit=2)

        assert [book.title for book, _ in top] == ["A", "B"]
