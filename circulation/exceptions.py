class CirculationError(Exception):
    """Base exception for circulation engine errors."""

    code = "error"


class NotFoundError(CirculationError):
    """A referenced member, book, copy, loan, fine or reservation does not exist."""

    code = "not_found"


class BusinessRuleError(CirculationError):
    """A circulation rule is violated (fines, limits, availability, queue order)."""

    code = "business"


class ConflictError(CirculationError):
    """A concurrent change won the race; the operation may be retried."""

    code = "conflict"


class DuplicateReservationError(ConflictError):
    """Member already holds an open reservation for the book. Never retried automatically."""
