from datetime import timedelta
from decimal import Decimal

import pytest

from circulation import (
    BusinessRuleError,
    ConflictError,
    CopyStatus,
    LoanStatus,
    NotFoundError,
    ReservationStatus,
)
from conftest import BrokenNotifier, assert_one_active_loan_per_copy


def copy_status(s, copy_id):
    return s.registry.find(copy_id).status


def test_borrow_by_book_id_sets_due_date(lib, clock):
    loan = lib.borrow(lib.m1.member_id, book_id=lib.single.book_id)

    assert loan.status == LoanStatus.ACTIVE
    assert loan.loan_date == clock.now
    assert loan.due_date == clock.now + timedelta(days=14)
    assert loan.return_date is None
    assert copy_status(lib, loan.copy_id) == CopyStatus.LOANED


def test_borrow_by_copy_id_and_barcode(lib):
    c1, c2 = lib.list_copies(lib.double.book_id)
    by_id = lib.borrow(lib.m1.member_id, copy_id=c1.copy_id)
    by_barcode = lib.borrow(lib.m2.member_id, barcode=c2.barcode)

    assert by_id.copy_id == c1.copy_id
    assert by_barcode.copy_id == c2.copy_id


@pytest.mark.parametrize(
    "selector",
    [{"copy_id": "cpy_missing"}, {"barcode": "NOPE"}, {"book_id": "bk_missing"}],
)
def test_borrow_unknown_copy_raises_not_found(lib, selector):
    with pytest.raises(NotFoundError):
        lib.borrow(lib.m1.member_id, **selector)


def test_borrow_without_selector_raises(lib):
    with pytest.raises(BusinessRuleError):
        lib.borrow(lib.m1.member_id)


def test_borrow_unknown_member_raises(lib):
    with pytest.raises(NotFoundError):
        lib.borrow("mbr_missing", book_id=lib.single.book_id)


def test_borrow_blocked_by_outstanding_balance(lib):
    m = lib.members.get(lib.m1.member_id)
    m.balance = Decimal("0.01")
    lib.members.save(m)

    with pytest.raises(BusinessRuleError, match="outstanding fines"):
        lib.borrow(lib.m1.member_id, book_id=lib.single.book_id)


def test_default_borrowing_cap(lib):
    book = lib.add_book("Many", "Author", "isbn", copies=6)
    for _ in range(5):
        lib.borrow(lib.m1.member_id, book_id=book.book_id)

    with pytest.raises(BusinessRuleError, match="maximum borrowing limit"):
        lib.borrow(lib.m1.member_id, book_id=book.book_id)


def test_membership_type_sets_cap_and_period(lib, clock):
    t = lib.create_membership_type("Student", max_books=1, loan_days=21)
    m = lib.create_member("Stu", "stu@example.com", membership_type_id=t.type_id)

    loan = lib.borrow(m.member_id, book_id=lib.double.book_id)
    assert loan.due_date == clock.now + timedelta(days=21)

    with pytest.raises(BusinessRuleError):
        lib.borrow(m.member_id, book_id=lib.double.book_id)


def test_injected_defaults_are_used(clock, notifier):
    from circulation import CirculationConfig, LibrarySystem

    s = LibrarySystem(
        config=CirculationConfig(default_max_books=1, default_loan_days=7),
        clock=clock,
        notifier=notifier,
    )
    m = s.create_member("Ada", "ada@example.com")
    book = s.add_book("Dune", "Frank Herbert", "isbn", copies=2)

    loan = s.borrow(m.member_id, book_id=book.book_id)
    assert loan.due_date == clock.now + timedelta(days=7)
    with pytest.raises(BusinessRuleError):
        s.borrow(m.member_id, book_id=book.book_id)


def test_no_available_copies(lib):
    lib.borrow(lib.m1.member_id, book_id=lib.single.book_id)
    with pytest.raises(BusinessRuleError, match="No available copies"):
        lib.borrow(lib.m2.member_id, book_id=lib.single.book_id)


def test_explicit_loaned_copy_is_not_available(lib):
    loan = lib.borrow(lib.m1.member_id, book_id=lib.single.book_id)
    with pytest.raises(BusinessRuleError, match="not available"):
        lib.borrow(lib.m2.member_id, copy_id=loan.copy_id)
    assert_one_active_loan_per_copy(lib)


def test_no_queue_jump(lib):
    """m2 cannot take a copy that frees up while m1 waits at the head of the queue."""
    book = lib.single.book_id
    m3 = lib.create_member("Cy", "cy@example.com")
    lib.borrow(lib.m1.member_id, book_id=book)
    lib.place_reservation(book, m3.member_id)

    with pytest.raises(BusinessRuleError):
        lib.borrow(lib.m2.member_id, book_id=book)

    new_copy = lib.add_copy(book)
    with pytest.raises(BusinessRuleError, match="queue"):
        lib.borrow(lib.m2.member_id, book_id=book)
    with pytest.raises(BusinessRuleError, match="queue"):
        lib.borrow(lib.m2.member_id, copy_id=new_copy.copy_id)

    # the head of the queue may take it directly
    loan = lib.borrow(m3.member_id, book_id=book)
    assert loan.copy_id == new_copy.copy_id
    assert lib.reservations.find_open(book, m3.member_id) is None


def test_return_without_queue_frees_copy(lib, clock):
    loan = lib.borrow(lib.m1.member_id, book_id=lib.single.book_id)
    clock.advance(days=3)

    returned = lib.return_loan(loan.loan_id)
    assert returned.status == LoanStatus.RETURNED
    assert returned.return_date == clock.now
    assert returned.due_date == loan.due_date
    assert copy_status(lib, loan.copy_id) == CopyStatus.AVAILABLE
    assert lib.list_fines() == []


def test_return_twice_raises(lib):
    loan = lib.borrow(lib.m1.member_id, book_id=lib.single.book_id)
    lib.return_loan(loan.loan_id)
    with pytest.raises(BusinessRuleError, match="already returned"):
        lib.return_loan(loan.loan_id)


def test_return_unknown_loan_raises(lib):
    with pytest.raises(NotFoundError):
        lib.return_loan("loan_missing")


def test_reservation_hand_off_scenario(lib, clock, notifier):
    book = lib.single.book_id
    loan = lib.borrow(lib.m1.member_id, book_id=book)
    r = lib.place_reservation(book, lib.m2.member_id)
    assert r.status == ReservationStatus.PENDING

    lib.return_loan(loan.loan_id)
    assert copy_status(lib, loan.copy_id) == CopyStatus.RESERVED
    ready = lib.queue.get(r.reservation_id)
    assert ready.status == ReservationStatus.READY_FOR_PICKUP
    assert ready.expires_at == clock.now + timedelta(days=3)
    assert notifier.sent == [("ben@example.com", "Dune")]

    # the held copy is not for anyone else
    with pytest.raises(BusinessRuleError, match="reserved for another member"):
        lib.borrow(lib.m1.member_id, copy_id=loan.copy_id)
    with pytest.raises(BusinessRuleError):
        lib.borrow(lib.m1.member_id, book_id=book)

    second = lib.borrow(lib.m2.member_id, book_id=book)
    assert second.copy_id == loan.copy_id
    assert copy_status(lib, loan.copy_id) == CopyStatus.LOANED
    assert lib.queue.get(r.reservation_id).status == ReservationStatus.FULFILLED


def test_queue_fifo_across_returns(lib, clock):
    book = lib.single.book_id
    m3 = lib.create_member("Cy", "cy@example.com")
    loan = lib.borrow(lib.m1.member_id, book_id=book)
    r1 = lib.place_reservation(book, lib.m2.member_id)
    clock.advance(days=1)
    r2 = lib.place_reservation(book, m3.member_id)
    assert lib.queue_position(book, m3.member_id) == 2

    lib.return_loan(loan.loan_id)
    assert lib.queue.get(r1.reservation_id).status == ReservationStatus.READY_FOR_PICKUP
    assert lib.queue.get(r2.reservation_id).status == ReservationStatus.PENDING
    assert lib.queue_position(book, m3.member_id) == 1

    second = lib.borrow(lib.m2.member_id, book_id=book)
    lib.return_loan(second.loan_id)
    assert lib.queue.get(r2.reservation_id).status == ReservationStatus.READY_FOR_PICKUP


def test_held_copy_preferred_over_free_copy(lib, clock):
    book = lib.single.book_id
    m3 = lib.create_member("Cy", "cy@example.com")
    loan = lib.borrow(lib.m1.member_id, book_id=book)
    lib.place_reservation(book, lib.m2.member_id)
    clock.advance(hours=1)
    lib.place_reservation(book, m3.member_id)
    lib.return_loan(loan.loan_id)
    lib.add_copy(book)

    picked = lib.borrow(lib.m2.member_id, book_id=book)
    assert picked.copy_id == loan.copy_id


def test_notification_failure_does_not_undo_return(clock):
    from circulation import LibrarySystem

    broken = BrokenNotifier()
    s = LibrarySystem(clock=clock, notifier=broken)
    m1 = s.create_member("Ada", "ada@example.com")
    m2 = s.create_member("Ben", "ben@example.com")
    book = s.add_book("Dune", "Frank Herbert", "isbn")
    loan = s.borrow(m1.member_id, book_id=book.book_id)
    s.place_reservation(book.book_id, m2.member_id)

    returned = s.return_loan(loan.loan_id)
    assert broken.calls == 1
    assert returned.status == LoanStatus.RETURNED
    assert s.get_loan(loan.loan_id).status == LoanStatus.RETURNED
    assert s.registry.find(loan.copy_id).status == CopyStatus.RESERVED


def test_failed_borrow_leaves_no_partial_state(lib, monkeypatch):
    book = lib.single.book_id
    copy = lib.list_copies(book)[0]

    def fail(loan):
        raise ConflictError("simulated lost race")

    monkeypatch.setattr(lib.loans, "add", fail)
    with pytest.raises(ConflictError):
        lib.borrow(lib.m1.member_id, book_id=book)

    assert copy_status(lib, copy.copy_id) == CopyStatus.AVAILABLE
    assert lib.list_loans() == []


def test_failed_return_rolls_back_hand_off(lib, monkeypatch, notifier):
    book = lib.single.book_id
    loan = lib.borrow(lib.m1.member_id, book_id=book)
    r = lib.place_reservation(book, lib.m2.member_id)

    def fail(loan):
        raise RuntimeError("fine store offline")

    monkeypatch.setattr(lib.fine_service, "recompute", fail)
    with pytest.raises(RuntimeError):
        lib.return_loan(loan.loan_id)

    assert copy_status(lib, loan.copy_id) == CopyStatus.LOANED
    assert lib.get_loan(loan.loan_id).status == LoanStatus.ACTIVE
    assert lib.queue.get(r.reservation_id).status == ReservationStatus.PENDING
    assert notifier.sent == []


def test_list_loans(lib):
    l1 = lib.borrow(lib.m1.member_id, book_id=lib.single.book_id)
    l2 = lib.borrow(lib.m2.member_id, book_id=lib.double.book_id)

    assert {l.loan_id for l in lib.list_loans()} == {l1.loan_id, l2.loan_id}
    assert [l.loan_id for l in lib.list_loans(lib.m1.member_id)] == [l1.loan_id]
    assert lib.list_loans("mbr_nobody") == []
