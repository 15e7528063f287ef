from __future__ import annotations
from datetime import datetime, timedelta, timezone

from circulation import BusinessRuleError, CirculationConfig, LibrarySystem, seed_demo_data
from circulation.log import configure_logging


class DemoClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int) -> None:
        self.now += timedelta(days=days)


def demo_flow() -> None:
    config = CirculationConfig.from_env()
    configure_logging(config.log_level)
    clock = DemoClock()
    sys = LibrarySystem(config=config, clock=clock)
    ids = seed_demo_data(sys)

    # Dave tries to jump Carol's queue for HP1
    dave = sys.create_member("Dave Eager", "dave@example.com")
    try:
        sys.borrow(dave.member_id, book_id=ids["hp1"])
        print("[demo] Dave borrowed HP1: unexpected")
    except BusinessRuleError as e:
        print(f"[demo] Dave denied: {e}")

    print("[demo] Carol queue position:", sys.queue_position(ids["hp1"], ids["carol"]))

    # Bob keeps HP1 two days past his 21-day student loan
    clock.advance(23)
    print("[demo] daily jobs:", sys.run_daily_jobs())
    bob = sys.get_member(ids["bob"])
    print(f"[demo] Bob balance after sweep: {bob.balance}")

    bob_loan = next(l for l in sys.list_loans(ids["bob"]) if l.book_id == ids["hp1"])
    sys.return_loan(bob_loan.loan_id)
    for fine in sys.list_fines(ids["bob"]):
        sys.pay_fine(fine.fine_id)
    print(f"[demo] Bob balance after paying: {sys.get_member(ids['bob']).balance}")

    # HP1 is now held for Carol
    loan = sys.borrow(ids["carol"], book_id=ids["hp1"])
    print(f"[demo] Carol picked up HP1, due {loan.due_date.date()}")


if __name__ == "__main__":
    demo_flow()
