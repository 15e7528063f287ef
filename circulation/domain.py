from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, auto
from typing import Optional

CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENTS)


@dataclass
class MembershipType:
    type_id: str
    name: str
    max_books: int
    loan_days: int


@dataclass
class Member:
    member_id: str
    name: str
    email: str
    balance: Decimal = Decimal("0.00")
    membership_type_id: Optional[str] = None

    @property
    def has_outstanding_fines(self) -> bool:
        return self.balance > 0


@dataclass
class Book:
    book_id: str
    title: str
    author: str
    isbn: str


class CopyStatus(Enum):
    AVAILABLE = auto()
    LOANED = auto()
    RESERVED = auto()


@dataclass
class BookCopy:
    copy_id: str
    book_id: str
    barcode: str
    status: CopyStatus = CopyStatus.AVAILABLE


class LoanStatus(Enum):
    ACTIVE = auto()
    RETURNED = auto()


@dataclass
class Loan:
    loan_id: str
    copy_id: str
    book_id: str
    member_id: str
    loan_date: datetime
    due_date: datetime
    status: LoanStatus = LoanStatus.ACTIVE
    return_date: Optional[datetime] = None

    def is_overdue(self, now: datetime) -> bool:
        return self.status == LoanStatus.ACTIVE and now > self.due_date

    def mark_returned(self, when: datetime) -> None:
        self.status = LoanStatus.RETURNED
        self.return_date = when


class ReservationStatus(Enum):
    PENDING = auto()
    READY_FOR_PICKUP = auto()
    FULFILLED = auto()
    EXPIRED = auto()

    @property
    def is_open(self) -> bool:
        return self in (ReservationStatus.PENDING, ReservationStatus.READY_FOR_PICKUP)


@dataclass
class Reservation:
    reservation_id: str
    book_id: str
    member_id: str
    created_at: datetime
    seq: int = 0
    status: ReservationStatus = ReservationStatus.PENDING
    expires_at: Optional[datetime] = None

    def is_stale(self, now: datetime) -> bool:
        return (
            self.status == ReservationStatus.READY_FOR_PICKUP
            and self.expires_at is not None
            and now > self.expires_at
        )


class FineStatus(Enum):
    UNPAID = auto()
    PAID = auto()


@dataclass
class Fine:
    fine_id: str
    loan_id: str
    member_id: str
    fine_date: datetime
    amount: Decimal = Decimal("0.00")
    status: FineStatus = FineStatus.UNPAID
    last_updated: Optional[datetime] = None

    def pay(self, when: datetime) -> None:
        self.status = FineStatus.PAID
        self.last_updated = when

    @property
    def is_paid(self) -> bool:
        return self.status == FineStatus.PAID
