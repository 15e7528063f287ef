from __future__ import annotations
import os
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class CirculationConfig:
    """
    Circulation policy knobs.

    The borrowing cap and loan period apply to members without a membership
    type; typed members use the values of their type.
    """

    default_max_books: int = 5
    default_loan_days: int = 14
    fine_per_day: Decimal = Decimal("1.00")
    pickup_days: int = 3
    conflict_retries: int = 3
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.default_max_books < 1:
            raise ValueError("default_max_books must be positive")
        if self.default_loan_days < 1:
            raise ValueError("default_loan_days must be positive")
        if self.fine_per_day < 0:
            raise ValueError("fine_per_day cannot be negative")
        if self.pickup_days < 1:
            raise ValueError("pickup_days must be positive")
        if self.conflict_retries < 0:
            raise ValueError("conflict_retries cannot be negative")

    @classmethod
    def from_env(cls) -> "CirculationConfig":
        defaults = cls()
        return cls(
            default_max_books=int(os.getenv("CIRCULATION_MAX_BOOKS", defaults.default_max_books)),
            default_loan_days=int(os.getenv("CIRCULATION_LOAN_DAYS", defaults.default_loan_days)),
            fine_per_day=Decimal(os.getenv("CIRCULATION_FINE_PER_DAY", str(defaults.fine_per_day))),
            pickup_days=int(os.getenv("CIRCULATION_PICKUP_DAYS", defaults.pickup_days)),
            conflict_retries=int(os.getenv("CIRCULATION_CONFLICT_RETRIES", defaults.conflict_retries)),
            log_level=os.getenv("CIRCULATION_LOG_LEVEL", defaults.log_level).upper(),
        )
