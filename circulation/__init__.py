"""
BookHive circulation engine.

Exports key modules for convenient imports.
"""

from .domain import (
    Member,
    MembershipType,
    Book,
    CopyStatus,
    BookCopy,
    LoanStatus,
    Loan,
    ReservationStatus,
    Reservation,
    FineStatus,
    Fine,
)

from .exceptions import (
    CirculationError,
    NotFoundError,
    BusinessRuleError,
    ConflictError,
    DuplicateReservationError,
)

from .config import CirculationConfig
from .storage import Store

from .repositories import (
    MemberRepo,
    MembershipTypeRepo,
    BookRepo,
    CopyRepo,
    LoanRepo,
    ReservationRepo,
    FineRepo,
)

from .services import (
    MemberService,
    CatalogService,
    CopyRegistry,
    ReservationQueue,
    FineService,
    CirculationService,
)

from .notifications import Notifier, LoggingNotifier
from .api import LibrarySystem
from .seed import seed_demo_data

__all__ = [
    # domain
    "Member",
    "MembershipType",
    "Book",
    "CopyStatus",
    "BookCopy",
    "LoanStatus",
    "Loan",
    "ReservationStatus",
    "Reservation",
    "FineStatus",
    "Fine",
    # errors
    "CirculationError",
    "NotFoundError",
    "BusinessRuleError",
    "ConflictError",
    "DuplicateReservationError",
    # config + storage
    "CirculationConfig",
    "Store",
    # repos
    "MemberRepo",
    "MembershipTypeRepo",
    "BookRepo",
    "CopyRepo",
    "LoanRepo",
    "ReservationRepo",
    "FineRepo",
    # services
    "MemberService",
    "CatalogService",
    "CopyRegistry",
    "ReservationQueue",
    "FineService",
    "CirculationService",
    # notifications
    "Notifier",
    "LoggingNotifier",
    # api
    "LibrarySystem",
    # seed
    "seed_demo_data",
]
