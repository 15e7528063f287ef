from __future__ import annotations
import logging
from typing import Dict

from .api import LibrarySystem

logger = logging.getLogger(__name__)


def seed_demo_data(sys: LibrarySystem) -> Dict[str, str]:
    """Populate a fresh system and return the ids the demo refers to."""
    # membership types
    student = sys.create_membership_type("Student", max_books=3, loan_days=21)

    # members
    alice = sys.create_member("Alice Reader", "alice@example.com")
    bob = sys.create_member("Bob Borrower", "bob@example.com", membership_type_id=student.type_id)
    carol = sys.create_member("Carol Queue", "carol@example.com")

    # books
    dune = sys.add_book("Dune", "Frank Herbert", "9780441172719", copies=2)
    hp1 = sys.add_book(
        "Harry Potter and the Sorcerer's Stone",
        "J.K. Rowling",
        "9780590353427",
        copies=1,
    )
    clean_code = sys.add_book("Clean Code", "Robert C. Martin", "9780132350884", copies=3)

    # loans
    sys.borrow(alice.member_id, book_id=dune.book_id)
    sys.borrow(bob.member_id, book_id=hp1.book_id)
    sys.borrow(alice.member_id, book_id=clean_code.book_id)

    # Carol waits for HP1
    sys.place_reservation(hp1.book_id, carol.member_id)

    logger.info(
        "Seeded demo data | members=%d books=%d loans=%d",
        len(sys.members.list_all()),
        len(sys.books.list_books()),
        len(sys.list_loans()),
    )
    return {
        "alice": alice.member_id,
        "bob": bob.member_id,
        "carol": carol.member_id,
        "dune": dune.book_id,
        "hp1": hp1.book_id,
        "clean_code": clean_code.book_id,
    }
