from __future__ import annotations
from typing import List, Optional

from .domain import (
    Book,
    BookCopy,
    CopyStatus,
    Fine,
    FineStatus,
    Loan,
    LoanStatus,
    Member,
    MembershipType,
    Reservation,
    ReservationStatus,
)
from .exceptions import BusinessRuleError, ConflictError, DuplicateReservationError
from .storage import Store


class MemberRepo:
    table = "members"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add(self, member: Member) -> None:
        with self.store.transaction():
            if self.find_by_email(member.email) is not None:
                raise BusinessRuleError(f"Email already registered: {member.email}")
            self.store.put(self.table, member.member_id, member)

    def get(self, member_id: str) -> Optional[Member]:
        return self.store.get(self.table, member_id)

    def find_by_email(self, email: str) -> Optional[Member]:
        e = email.lower().strip()
        found = self.store.select(self.table, lambda m: m.email.lower() == e)
        return found[0] if found else None

    def save(self, member: Member) -> None:
        self.store.put(self.table, member.member_id, member)

    def list_all(self) -> List[Member]:
        return self.store.select(self.table)


class MembershipTypeRepo:
    table = "membership_types"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add(self, mtype: MembershipType) -> None:
        with self.store.transaction():
            if self.store.exists(self.table, lambda t: t.name == mtype.name):
                raise BusinessRuleError(f"Membership type already exists: {mtype.name}")
            self.store.put(self.table, mtype.type_id, mtype)

    def get(self, type_id: str) -> Optional[MembershipType]:
        return self.store.get(self.table, type_id)


class BookRepo:
    table = "books"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add_book(self, book: Book) -> None:
        self.store.put(self.table, book.book_id, book)

    def get_book(self, book_id: str) -> Optional[Book]:
        return self.store.get(self.table, book_id)

    def list_books(self) -> List[Book]:
        return self.store.select(self.table)


class CopyRepo:
    table = "copies"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add(self, copy: BookCopy) -> None:
        with self.store.transaction():
            if self.find_by_barcode(copy.barcode) is not None:
                raise BusinessRuleError(f"Barcode already exists: {copy.barcode}")
            self.store.put(self.table, copy.copy_id, copy)

    def get(self, copy_id: str) -> Optional[BookCopy]:
        return self.store.get(self.table, copy_id)

    def find_by_barcode(self, barcode: str) -> Optional[BookCopy]:
        found = self.store.select(self.table, lambda c: c.barcode == barcode)
        return found[0] if found else None

    def list_by_book(self, book_id: str) -> List[BookCopy]:
        return self.store.select(self.table, lambda c: c.book_id == book_id)

    def any_with_status(self, book_id: str, status: CopyStatus) -> bool:
        return self.store.exists(
            self.table, lambda c: c.book_id == book_id and c.status == status
        )

    def save(self, copy: BookCopy) -> None:
        self.store.put(self.table, copy.copy_id, copy)

    def compare_and_set_status(
        self, copy_id: str, expected: CopyStatus, new: CopyStatus
    ) -> BookCopy:
        with self.store.transaction():
            current = self.get(copy_id)
            if current is None or current.status != expected:
                seen = current.status.name if current else "missing"
                raise ConflictError(
                    f"Copy {copy_id} changed concurrently (expected {expected.name}, found {seen})"
                )
            current.status = new
            self.save(current)
            return current

    def delete(self, copy_id: str) -> None:
        self.store.delete(self.table, copy_id)


class LoanRepo:
    table = "loans"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add(self, loan: Loan) -> None:
        with self.store.transaction():
            # one active loan per copy
            if self.list_active_by_copy(loan.copy_id):
                raise ConflictError(f"Copy {loan.copy_id} already has an active loan")
            self.store.put(self.table, loan.loan_id, loan)

    def get(self, loan_id: str) -> Optional[Loan]:
        return self.store.get(self.table, loan_id)

    def save(self, loan: Loan) -> None:
        self.store.put(self.table, loan.loan_id, loan)

    def list_all(self) -> List[Loan]:
        return sorted(self.store.select(self.table), key=lambda l: l.loan_date)

    def list_by_member(self, member_id: str) -> List[Loan]:
        return [l for l in self.list_all() if l.member_id == member_id]

    def list_active(self) -> List[Loan]:
        return [l for l in self.list_all() if l.status == LoanStatus.ACTIVE]

    def list_active_by_copy(self, copy_id: str) -> List[Loan]:
        return self.store.select(
            self.table,
            lambda l: l.copy_id == copy_id and l.status == LoanStatus.ACTIVE,
        )

    def count_active_by_member(self, member_id: str) -> int:
        return len(
            self.store.select(
                self.table,
                lambda l: l.member_id == member_id and l.status == LoanStatus.ACTIVE,
            )
        )


class ReservationRepo:
    table = "reservations"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add(self, r: Reservation) -> None:
        with self.store.transaction():
            # unique (member, book) among open reservations
            if self.find_open(r.book_id, r.member_id) is not None:
                raise DuplicateReservationError(
                    f"Member {r.member_id} already has an open reservation for book {r.book_id}"
                )
            self.store.put(self.table, r.reservation_id, r)

    def get(self, reservation_id: str) -> Optional[Reservation]:
        return self.store.get(self.table, reservation_id)

    def save(self, r: Reservation) -> None:
        self.store.put(self.table, r.reservation_id, r)

    def delete(self, reservation_id: str) -> None:
        self.store.delete(self.table, reservation_id)

    def list_pending_for_book(self, book_id: str) -> List[Reservation]:
        items = self.store.select(
            self.table,
            lambda r: r.book_id == book_id and r.status == ReservationStatus.PENDING,
        )
        # FIFO by placement
        return sorted(items, key=lambda r: (r.created_at, r.seq))

    def find_open(self, book_id: str, member_id: str) -> Optional[Reservation]:
        found = self.store.select(
            self.table,
            lambda r: r.book_id == book_id and r.member_id == member_id and r.status.is_open,
        )
        return found[0] if found else None

    def find_ready(self, book_id: str, member_id: str) -> Optional[Reservation]:
        found = self.store.select(
            self.table,
            lambda r: r.book_id == book_id
            and r.member_id == member_id
            and r.status == ReservationStatus.READY_FOR_PICKUP,
        )
        return found[0] if found else None

    def list_ready(self) -> List[Reservation]:
        items = self.store.select(
            self.table, lambda r: r.status == ReservationStatus.READY_FOR_PICKUP
        )
        return sorted(items, key=lambda r: (r.created_at, r.seq))


class FineRepo:
    table = "fines"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add(self, fine: Fine) -> None:
        with self.store.transaction():
            # one fine per loan
            if self.find_by_loan(fine.loan_id) is not None:
                raise ConflictError(f"Loan {fine.loan_id} already has a fine")
            self.store.put(self.table, fine.fine_id, fine)

    def get(self, fine_id: str) -> Optional[Fine]:
        return self.store.get(self.table, fine_id)

    def find_by_loan(self, loan_id: str) -> Optional[Fine]:
        found = self.store.select(self.table, lambda f: f.loan_id == loan_id)
        return found[0] if found else None

    def save(self, fine: Fine, expected_status: Optional[FineStatus] = None) -> None:
        with self.store.transaction():
            if expected_status is not None:
                current = self.get(fine.fine_id)
                if current is None or current.status != expected_status:
                    raise ConflictError(f"Fine {fine.fine_id} changed concurrently")
            self.store.put(self.table, fine.fine_id, fine)

    def list_all(self) -> List[Fine]:
        return sorted(self.store.select(self.table), key=lambda f: f.fine_date)

    def list_by_member(self, member_id: str) -> List[Fine]:
        return [f for f in self.list_all() if f.member_id == member_id]

