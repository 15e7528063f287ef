from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from circulation import CirculationConfig, LibrarySystem


class ManualClock:
    """Clock the tests move forward by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, hours: float = 0) -> None:
        self.now += timedelta(days=days, hours=hours)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent = []

    def notify_reservation_ready(self, email: str, book_title: str) -> None:
        self.sent.append((email, book_title))


class BrokenNotifier:
    def __init__(self) -> None:
        self.calls = 0

    def notify_reservation_ready(self, email: str, book_title: str) -> None:
        self.calls += 1
        raise RuntimeError("smtp down")


START = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return CirculationConfig()


@pytest.fixture
def lib(clock, notifier, config):
    """Fresh system with two members and a one-copy and a two-copy title."""
    s = LibrarySystem(config=config, clock=clock, notifier=notifier)
    s.m1 = s.create_member("Ada", "ada@example.com")
    s.m2 = s.create_member("Ben", "ben@example.com")
    s.single = s.add_book("Dune", "Frank Herbert", "9780441172719", copies=1)
    s.double = s.add_book("Clean Code", "Robert C. Martin", "9780132350884", copies=2)
    return s


def total_unpaid(s: LibrarySystem, member_id: str) -> Decimal:
    unpaid = [f.amount for f in s.list_fines(member_id) if not f.is_paid]
    return sum(unpaid, Decimal("0.00"))


def assert_balances_reconciled(s: LibrarySystem) -> None:
    for m in s.members.list_all():
        assert m.balance == total_unpaid(s, m.member_id)
        assert m.balance >= 0


def assert_one_active_loan_per_copy(s: LibrarySystem) -> None:
    active = [l.copy_id for l in s.list_loans() if l.status.name == "ACTIVE"]
    assert len(active) == len(set(active))
