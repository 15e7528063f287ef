from __future__ import annotations
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from .config import CirculationConfig
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
    to_money,
    utcnow,
)
from .exceptions import BusinessRuleError, NotFoundError
from .notifications import Notifier
from .repositories import (
    BookRepo,
    CopyRepo,
    FineRepo,
    LoanRepo,
    MemberRepo,
    MembershipTypeRepo,
    ReservationRepo,
)
from .storage import Store

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def overdue_days(due: datetime, end: datetime) -> int:
    """Whole days from due to end; zero or negative means not overdue."""
    return (end - due).days


class MemberService:
    def __init__(self, members: MemberRepo, membership_types: MembershipTypeRepo) -> None:
        self.members = members
        self.membership_types = membership_types

    def register_member(
        self, name: str, email: str, membership_type_id: Optional[str] = None
    ) -> Member:
        if membership_type_id is not None and self.membership_types.get(membership_type_id) is None:
            raise NotFoundError(f"Membership type not found: {membership_type_id}")
        m = Member(
            member_id=new_id("mbr"),
            name=name,
            email=email,
            membership_type_id=membership_type_id,
        )
        self.members.add(m)
        return m

    def create_membership_type(self, name: str, max_books: int, loan_days: int) -> MembershipType:
        if max_books < 1 or loan_days < 1:
            raise BusinessRuleError("Max books and loan days must be positive")
        t = MembershipType(
            type_id=new_id("mtype"), name=name, max_books=max_books, loan_days=loan_days
        )
        self.membership_types.add(t)
        return t

    def get(self, member_id: str) -> Member:
        member = self.members.get(member_id)
        if member is None:
            raise NotFoundError(f"Member not found: {member_id}")
        return member


class CopyRegistry:
    """
    Owns the physical status of book copies.

    Status writes are not validated here; the loan and reservation flows
    decide which transitions are legal.
    """

    def __init__(self, copies: CopyRepo, books: BookRepo) -> None:
        self.copies = copies
        self.books = books

    def register_copy(self, book_id: str, barcode: Optional[str] = None) -> BookCopy:
        if self.books.get_book(book_id) is None:
            raise NotFoundError(f"Book not found: {book_id}")
        if not barcode or not barcode.strip():
            barcode = uuid.uuid4().hex[:8].upper()
        c = BookCopy(copy_id=new_id("cpy"), book_id=book_id, barcode=barcode.strip())
        self.copies.add(c)
        logger.info("Copy registered | book_id=%s barcode=%s", book_id, c.barcode)
        return c

    def remove_copy(self, copy_id: str) -> None:
        c = self.find(copy_id)
        if c.status == CopyStatus.LOANED:
            raise BusinessRuleError(f"Cannot remove loaned copy {copy_id}")
        if c.status == CopyStatus.RESERVED:
            raise BusinessRuleError(f"Cannot remove copy {copy_id} held for a reservation")
        self.copies.delete(copy_id)

    def find(self, copy_id: str) -> BookCopy:
        c = self.copies.get(copy_id)
        if c is None:
            raise NotFoundError(f"Book copy not found with ID: {copy_id}")
        return c

    def find_by_barcode(self, barcode: str) -> BookCopy:
        c = self.copies.find_by_barcode(barcode)
        if c is None:
            raise NotFoundError(f"Book copy not found with barcode: {barcode}")
        return c

    def list_by_book(self, book_id: str) -> List[BookCopy]:
        return self.copies.list_by_book(book_id)

    def set_status(self, copy_id: str, status: CopyStatus) -> BookCopy:
        c = self.find(copy_id)
        c.status = status
        self.copies.save(c)
        return c

    def compare_and_set(self, copy_id: str, expected: CopyStatus, new: CopyStatus) -> BookCopy:
        self.find(copy_id)
        return self.copies.compare_and_set_status(copy_id, expected, new)


class CatalogService:
    def __init__(self, books: BookRepo, registry: CopyRegistry) -> None:
        self.books = books
        self.registry = registry

    def add_book_with_copies(self, title: str, author: str, isbn: str, copies: int = 1) -> Book:
        b = Book(book_id=new_id("bk"), title=title, author=author, isbn=isbn)
        self.books.add_book(b)
        for _ in range(copies):
            self.registry.register_copy(b.book_id)
        return b


class ReservationQueue:
    """Per-title FIFO waitlist of members."""

    def __init__(
        self,
        store: Store,
        reservations: ReservationRepo,
        books: BookRepo,
        copies: CopyRepo,
        members: MemberRepo,
        config: CirculationConfig,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.reservations = reservations
        self.books = books
        self.copies = copies
        self.members = members
        self.config = config
        self.clock = clock

    def place(self, book_id: str, member_id: str) -> Reservation:
        logger.info("place reservation called | book_id=%s member_id=%s", book_id, member_id)
        with self.store.transaction():
            if self.books.get_book(book_id) is None:
                raise NotFoundError(f"Book not found: {book_id}")
            if self.members.get(member_id) is None:
                raise NotFoundError(f"Member not found: {member_id}")
            if self.copies.any_with_status(book_id, CopyStatus.AVAILABLE):
                raise BusinessRuleError(
                    "Book is available, no need to reserve. Please borrow it directly."
                )

            r = Reservation(
                reservation_id=new_id("res"),
                book_id=book_id,
                member_id=member_id,
                created_at=self.clock(),
                seq=self.store.next_seq(),
            )
            # the repo rejects a second open reservation for the same member and book
            self.reservations.add(r)

        logger.info("Reservation placed | reservation_id=%s", r.reservation_id)
        return r

    def get(self, reservation_id: str) -> Reservation:
        r = self.reservations.get(reservation_id)
        if r is None:
            raise NotFoundError(f"Reservation not found: {reservation_id}")
        return r

    def first_pending(self, book_id: str) -> Optional[Reservation]:
        queue = self.reservations.list_pending_for_book(book_id)
        return queue[0] if queue else None

    def list_for_book(self, book_id: str) -> List[Reservation]:
        return self.reservations.list_pending_for_book(book_id)

    def ready_for(self, book_id: str, member_id: str) -> Optional[Reservation]:
        return self.reservations.find_ready(book_id, member_id)

    def promote(self, reservation_id: str) -> Reservation:
        r = self.get(reservation_id)
        if r.status != ReservationStatus.PENDING:
            raise BusinessRuleError(f"Reservation {reservation_id} is not pending")
        r.status = ReservationStatus.READY_FOR_PICKUP
        r.expires_at = self.clock() + timedelta(days=self.config.pickup_days)
        self.reservations.save(r)
        return r

    def fulfill(self, reservation_id: str) -> Reservation:
        r = self.get(reservation_id)
        if not r.status.is_open:
            raise BusinessRuleError(f"Reservation {reservation_id} is already closed")
        r.status = ReservationStatus.FULFILLED
        self.reservations.save(r)
        return r

    def cancel(self, reservation_id: str) -> Reservation:
        r = self.get(reservation_id)
        self.reservations.delete(reservation_id)
        logger.info("Reservation cancelled | reservation_id=%s", reservation_id)
        return r

    def queue_position(self, book_id: str, member_id: str) -> int:
        for i, r in enumerate(self.reservations.list_pending_for_book(book_id), start=1):
            if r.member_id == member_id:
                return i
        return 0

    def list_stale(self, now: Optional[datetime] = None) -> List[Reservation]:
        now = now or self.clock()
        return [r for r in self.reservations.list_ready() if r.is_stale(now)]

    def expire(self, reservation_id: str) -> Reservation:
        r = self.get(reservation_id)
        if r.status != ReservationStatus.READY_FOR_PICKUP:
            raise BusinessRuleError(f"Reservation {reservation_id} is not awaiting pickup")
        r.status = ReservationStatus.EXPIRED
        self.reservations.save(r)
        return r


class FineService:
    """Per-loan overdue fines, mirrored into the member balance."""

    def __init__(
        self,
        store: Store,
        fines: FineRepo,
        loans: LoanRepo,
        members: MemberRepo,
        config: CirculationConfig,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.fines = fines
        self.loans = loans
        self.members = members
        self.config = config
        self.clock = clock

    def calculate_overdue_fines(self) -> int:
        now = self.clock()
        processed = 0
        for loan in self.loans.list_active():
            if not loan.is_overdue(now):
                continue
            try:
                if self.recompute(loan) is not None:
                    processed += 1
            except Exception:
                logger.exception("Overdue fine recompute failed | loan_id=%s", loan.loan_id)
        logger.info("Overdue fine sweep finished | recomputed=%d", processed)
        return processed

    def recompute(self, loan: Loan) -> Optional[Fine]:
        with self.store.transaction():
            now = self.clock()
            end = loan.return_date or now
            days = overdue_days(loan.due_date, end)
            if days <= 0:
                return None

            fine = self.fines.find_by_loan(loan.loan_id)
            is_new = fine is None
            if fine is None:
                fine = Fine(
                    fine_id=new_id("fine"),
                    loan_id=loan.loan_id,
                    member_id=loan.member_id,
                    fine_date=now,
                )

            if fine.is_paid:
                return fine

            member = self.members.get(loan.member_id)
            if member is None:
                raise NotFoundError(f"Member not found: {loan.member_id}")

            new_amount = to_money(self.config.fine_per_day * days)
            delta = new_amount - fine.amount
            member.balance = to_money(member.balance + delta)
            self.members.save(member)

            fine.amount = new_amount
            fine.last_updated = now
            if is_new:
                self.fines.add(fine)
            else:
                self.fines.save(fine, expected_status=FineStatus.UNPAID)

        if delta:
            logger.info(
                "Fine updated | loan_id=%s days=%d amount=%s delta=%s",
                loan.loan_id,
                days,
                new_amount,
                delta,
            )
        return fine

    def recompute_for_loan(self, loan_id: str) -> Optional[Fine]:
        loan = self.loans.get(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan not found: {loan_id}")
        return self.recompute(loan)

    def pay_fine(self, fine_id: str) -> Fine:
        logger.info("pay_fine called | fine_id=%s", fine_id)
        with self.store.transaction():
            fine = self.fines.get(fine_id)
            if fine is None:
                raise NotFoundError(f"Fine not found: {fine_id}")
            if fine.is_paid:
                raise BusinessRuleError("Fine is already paid")

            member = self.members.get(fine.member_id)
            if member is None:
                raise NotFoundError(f"Member not found: {fine.member_id}")
            member.balance = to_money(member.balance - fine.amount)
            self.members.save(member)

            fine.pay(self.clock())
            self.fines.save(fine, expected_status=FineStatus.UNPAID)

        logger.info("Fine paid | fine_id=%s amount=%s", fine_id, fine.amount)
        return fine

    def get_fines_by_member(self, member_id: str) -> List[Fine]:
        return self.fines.list_by_member(member_id)

    def get_all_fines(self) -> List[Fine]:
        return self.fines.list_all()


class CirculationService:
    """
    Borrow/return orchestration across copies, reservations, loans and fines.

    Every mutating operation runs in one store transaction; pickup
    notifications go out only after it commits.
    """

    def __init__(
        self,
        store: Store,
        members: MemberRepo,
        membership_types: MembershipTypeRepo,
        books: BookRepo,
        loans: LoanRepo,
        registry: CopyRegistry,
        queue: ReservationQueue,
        fines: FineService,
        notifier: Notifier,
        config: CirculationConfig,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.members = members
        self.membership_types = membership_types
        self.books = books
        self.loans = loans
        self.registry = registry
        self.queue = queue
        self.fines = fines
        self.notifier = notifier
        self.config = config
        self.clock = clock

    def borrow(
        self,
        member_id: str,
        copy_id: Optional[str] = None,
        barcode: Optional[str] = None,
        book_id: Optional[str] = None,
    ) -> Loan:
        logger.info(
            "borrow called | member_id=%s copy_id=%s barcode=%s book_id=%s",
            member_id,
            copy_id,
            barcode,
            book_id,
        )
        with self.store.transaction():
            now = self.clock()
            member = self.members.get(member_id)
            if member is None:
                raise NotFoundError(f"Member not found: {member_id}")

            if member.has_outstanding_fines:
                raise BusinessRuleError(
                    f"Member has outstanding fines ({member.balance}). Please pay before borrowing."
                )

            max_books, loan_days = self._limits_for(member)
            if self.loans.count_active_by_member(member_id) >= max_books:
                raise BusinessRuleError(
                    f"Member has reached maximum borrowing limit based on membership type: {max_books}"
                )

            copy = self._resolve_copy(member_id, copy_id, barcode, book_id)

            if copy.status == CopyStatus.RESERVED:
                ready = self.queue.ready_for(copy.book_id, member_id)
                if ready is None:
                    raise BusinessRuleError("Book copy is reserved for another member")
                self.queue.fulfill(ready.reservation_id)
            elif copy.status == CopyStatus.AVAILABLE:
                # only the head of the queue may take a free copy
                head = self.queue.first_pending(copy.book_id)
                if head is not None:
                    if head.member_id != member_id:
                        raise BusinessRuleError(
                            "There is a reservation queue for this book. Please join the queue."
                        )
                    self.queue.fulfill(head.reservation_id)
            else:
                raise BusinessRuleError(f"Book copy {copy.barcode} is not available")

            self.registry.compare_and_set(copy.copy_id, copy.status, CopyStatus.LOANED)

            loan = Loan(
                loan_id=new_id("loan"),
                copy_id=copy.copy_id,
                book_id=copy.book_id,
                member_id=member_id,
                loan_date=now,
                due_date=now + timedelta(days=loan_days),
            )
            self.loans.add(loan)

        logger.info(
            "Borrow successful | loan_id=%s copy_id=%s due=%s",
            loan.loan_id,
            loan.copy_id,
            loan.due_date.isoformat(),
        )
        return loan

    def return_loan(self, loan_id: str) -> Loan:
        logger.info("return_loan called | loan_id=%s", loan_id)
        with self.store.transaction():
            loan = self.loans.get(loan_id)
            if loan is None:
                raise NotFoundError(f"Loan not found: {loan_id}")
            if loan.status == LoanStatus.RETURNED:
                raise BusinessRuleError("Book already returned")

            copy = self.registry.find(loan.copy_id)
            promoted = self._hand_over(copy)

            loan.mark_returned(self.clock())
            self.loans.save(loan)

            self.fines.recompute(loan)

        if promoted is not None:
            self._notify_ready(promoted)
        logger.info("Return successful | loan_id=%s", loan_id)
        return loan

    def cancel_reservation(self, reservation_id: str) -> None:
        logger.info("cancel_reservation called | reservation_id=%s", reservation_id)
        promoted = None
        with self.store.transaction():
            r = self.queue.cancel(reservation_id)
            if r.status == ReservationStatus.READY_FOR_PICKUP:
                promoted = self._release_hold(r.book_id)

        if promoted is not None:
            self._notify_ready(promoted)

    def expire_stale_reservations(self) -> int:
        expired = 0
        for r in self.queue.list_stale(self.clock()):
            try:
                with self.store.transaction():
                    self.queue.expire(r.reservation_id)
                    promoted = self._release_hold(r.book_id)
            except Exception:
                logger.exception("Reservation expiry failed | reservation_id=%s", r.reservation_id)
                continue
            expired += 1
            logger.info("Reservation expired | reservation_id=%s", r.reservation_id)
            if promoted is not None:
                self._notify_ready(promoted)
        return expired

    def get_loan(self, loan_id: str) -> Loan:
        loan = self.loans.get(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan not found: {loan_id}")
        return loan

    def get_all_loans(self) -> List[Loan]:
        return self.loans.list_all()

    def get_loans_by_member(self, member_id: str) -> List[Loan]:
        return self.loans.list_by_member(member_id)

    # internals
    def _limits_for(self, member: Member) -> Tuple[int, int]:
        if member.membership_type_id is not None:
            mtype = self.membership_types.get(member.membership_type_id)
            if mtype is not None:
                return mtype.max_books, mtype.loan_days
        return self.config.default_max_books, self.config.default_loan_days

    def _resolve_copy(
        self,
        member_id: str,
        copy_id: Optional[str],
        barcode: Optional[str],
        book_id: Optional[str],
    ) -> BookCopy:
        if barcode:
            return self.registry.find_by_barcode(barcode)
        if copy_id:
            return self.registry.find(copy_id)
        if not book_id:
            raise BusinessRuleError("Book ID or BookCopy ID is required")

        if self.books.get_book(book_id) is None:
            raise NotFoundError(f"Book not found: {book_id}")
        copies = self.registry.list_by_book(book_id)

        # a copy held for this member wins over a free one
        if self.queue.ready_for(book_id, member_id) is not None:
            for c in copies:
                if c.status == CopyStatus.RESERVED:
                    return c
        for c in copies:
            if c.status == CopyStatus.AVAILABLE:
                return c
        raise BusinessRuleError("No available copies for this book")

    def _hand_over(self, copy: BookCopy) -> Optional[Reservation]:
        head = self.queue.first_pending(copy.book_id)
        if head is None:
            self.registry.set_status(copy.copy_id, CopyStatus.AVAILABLE)
            return None
        self.registry.set_status(copy.copy_id, CopyStatus.RESERVED)
        return self.queue.promote(head.reservation_id)

    def _release_hold(self, book_id: str) -> Optional[Reservation]:
        for c in self.registry.list_by_book(book_id):
            if c.status == CopyStatus.RESERVED:
                return self._hand_over(c)
        logger.warning("No held copy to release | book_id=%s", book_id)
        return None

    def _notify_ready(self, r: Reservation) -> None:
        member = self.members.get(r.member_id)
        book = self.books.get_book(r.book_id)
        if member is None or book is None:
            logger.warning("Cannot notify reservation | reservation_id=%s", r.reservation_id)
            return
        try:
            self.notifier.notify_reservation_ready(member.email, book.title)
        except Exception:
            logger.exception(
                "Reservation notification failed | reservation_id=%s email=%s",
                r.reservation_id,
                member.email,
            )
