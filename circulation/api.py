from __future__ import annotations
import logging
from typing import Callable, Dict, List, Optional, TypeVar

from .config import CirculationConfig
from .domain import Book, BookCopy, Fine, Loan, Member, MembershipType, Reservation, utcnow
from .exceptions import ConflictError
from .notifications import LoggingNotifier, Notifier
from .repositories import (
    BookRepo,
    CopyRepo,
    FineRepo,
    LoanRepo,
    MemberRepo,
    MembershipTypeRepo,
    ReservationRepo,
)
from .services import (
    CatalogService,
    CirculationService,
    Clock,
    CopyRegistry,
    FineService,
    MemberService,
    ReservationQueue,
)
from .storage import Store

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LibrarySystem:
    """
    Facade that wires repos + services and exposes the circulation API.

    Transports (see ``circulation.web``) call these methods and translate the
    ``circulation.exceptions`` taxonomy into their own error format.
    """

    def __init__(
        self,
        config: Optional[CirculationConfig] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        store: Optional[Store] = None,
    ) -> None:
        self.config = config or CirculationConfig()
        self.clock = clock or utcnow
        self.notifier = notifier or LoggingNotifier()
        self.store = store or Store()

        # repos
        self.members = MemberRepo(self.store)
        self.membership_types = MembershipTypeRepo(self.store)
        self.books = BookRepo(self.store)
        self.copies = CopyRepo(self.store)
        self.loans = LoanRepo(self.store)
        self.reservations = ReservationRepo(self.store)
        self.fines = FineRepo(self.store)

        # services
        self.member_service = MemberService(self.members, self.membership_types)
        self.registry = CopyRegistry(self.copies, self.books)
        self.catalog = CatalogService(self.books, self.registry)
        self.queue = ReservationQueue(
            self.store,
            self.reservations,
            self.books,
            self.copies,
            self.members,
            self.config,
            self.clock,
        )
        self.fine_service = FineService(
            self.store, self.fines, self.loans, self.members, self.config, self.clock
        )
        self.circulation = CirculationService(
            self.store,
            self.members,
            self.membership_types,
            self.books,
            self.loans,
            self.registry,
            self.queue,
            self.fine_service,
            self.notifier,
            self.config,
            self.clock,
        )

    # ---- members
    def create_membership_type(self, name: str, max_books: int, loan_days: int) -> MembershipType:
        return self.member_service.create_membership_type(name, max_books, loan_days)

    def create_member(
        self, name: str, email: str, membership_type_id: Optional[str] = None
    ) -> Member:
        return self.member_service.register_member(name, email, membership_type_id)

    def get_member(self, member_id: str) -> Member:
        return self.member_service.get(member_id)

    # ---- catalog
    def add_book(self, title: str, author: str, isbn: str, copies: int = 1) -> Book:
        return self.catalog.add_book_with_copies(title, author, isbn, copies)

    def add_copy(self, book_id: str, barcode: Optional[str] = None) -> BookCopy:
        return self.registry.register_copy(book_id, barcode)

    def remove_copy(self, copy_id: str) -> None:
        self.registry.remove_copy(copy_id)

    def list_copies(self, book_id: str) -> List[BookCopy]:
        return self.registry.list_by_book(book_id)

    # ---- circulation
    def borrow(
        self,
        member_id: str,
        copy_id: Optional[str] = None,
        barcode: Optional[str] = None,
        book_id: Optional[str] = None,
    ) -> Loan:
        return self._retry_on_conflict(
            lambda: self.circulation.borrow(
                member_id, copy_id=copy_id, barcode=barcode, book_id=book_id
            )
        )

    def return_loan(self, loan_id: str) -> Loan:
        return self.circulation.return_loan(loan_id)

    def get_loan(self, loan_id: str) -> Loan:
        return self.circulation.get_loan(loan_id)

    def list_loans(self, member_id: Optional[str] = None) -> List[Loan]:
        if member_id is None:
            return self.circulation.get_all_loans()
        return self.circulation.get_loans_by_member(member_id)

    # ---- reservations
    def place_reservation(self, book_id: str, member_id: str) -> Reservation:
        return self.queue.place(book_id, member_id)

    def cancel_reservation(self, reservation_id: str) -> None:
        self.circulation.cancel_reservation(reservation_id)

    def queue_position(self, book_id: str, member_id: str) -> int:
        return self.queue.queue_position(book_id, member_id)

    def reservations_for_book(self, book_id: str) -> List[Reservation]:
        return self.queue.list_for_book(book_id)

    def expire_stale_reservations(self) -> int:
        return self.circulation.expire_stale_reservations()

    # ---- fines
    def pay_fine(self, fine_id: str) -> Fine:
        return self.fine_service.pay_fine(fine_id)

    def recompute_fine(self, loan_id: str) -> Optional[Fine]:
        return self.fine_service.recompute_for_loan(loan_id)

    def list_fines(self, member_id: Optional[str] = None) -> List[Fine]:
        if member_id is None:
            return self.fine_service.get_all_fines()
        return self.fine_service.get_fines_by_member(member_id)

    def calculate_overdue_fines(self) -> int:
        return self.fine_service.calculate_overdue_fines()

    # ---- scheduled
    def run_daily_jobs(self) -> Dict[str, int]:
        """Body of the once-a-day trigger: fine sweep, then pickup expiry."""
        fines = self.calculate_overdue_fines()
        expired = self.expire_stale_reservations()
        logger.info("Daily jobs finished | fines=%d expired_reservations=%d", fines, expired)
        return {"fines_recomputed": fines, "reservations_expired": expired}

    def _retry_on_conflict(self, operation: Callable[[], T]) -> T:
        attempts = self.config.conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except ConflictError:
                if attempt == attempts:
                    raise
                logger.warning("Conflict, retrying | attempt=%d of %d", attempt, attempts)
        raise AssertionError("unreachable")
