"""
HTTP transport for the circulation engine.

``create_app`` wraps a ``LibrarySystem`` in a FastAPI application. Engine
errors are mapped onto status codes (not found -> 404, rule violation ->
400, lost race -> 409) with a ``{"detail", "code"}`` body.
"""

import os
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, model_validator

from .api import LibrarySystem
from .config import CirculationConfig
from .exceptions import BusinessRuleError, CirculationError, ConflictError, NotFoundError
from .log import configure_logging

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    BusinessRuleError: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_409_CONFLICT,
}


def serialize(obj) -> dict:
    d = asdict(obj)
    for k, v in list(d.items()):
        if isinstance(v, (datetime, date)):
            d[k] = v.isoformat()
        elif isinstance(v, Decimal):
            d[k] = str(v)
        elif isinstance(v, Enum):
            d[k] = v.name
    return d


# ----------------------
# Pydantic request models
# ----------------------

class BorrowRequest(BaseModel):
    member_id: str
    copy_id: Optional[str] = None
    barcode: Optional[str] = None
    book_id: Optional[str] = None

    @model_validator(mode="after")
    def require_selector(self):
        if not (self.copy_id or self.barcode or self.book_id):
            raise ValueError("one of copy_id, barcode or book_id is required")
        return self


class ReservationRequest(BaseModel):
    book_id: str
    member_id: str


def create_app(system: Optional[LibrarySystem] = None) -> FastAPI:
    if system is None:
        config = CirculationConfig.from_env()
        configure_logging(config.log_level)
        system = LibrarySystem(config=config)

    app = FastAPI(title="BookHive Circulation API")
    app.state.system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CirculationError)
    async def circulation_error_handler(request: Request, exc: CirculationError):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
        for kind, http_status in ERROR_STATUS.items():
            if isinstance(exc, kind):
                code = http_status
                break
        return JSONResponse(status_code=code, content={"detail": str(exc), "code": exc.code})

    # ----------------------
    # Loans
    # ----------------------

    @app.post("/api/v1/loans/borrow", status_code=status.HTTP_201_CREATED)
    def borrow(payload: BorrowRequest):
        loan = system.borrow(
            payload.member_id,
            copy_id=payload.copy_id,
            barcode=payload.barcode,
            book_id=payload.book_id,
        )
        return serialize(loan)

    @app.post("/api/v1/loans/{loan_id}/return")
    def return_loan(loan_id: str):
        return serialize(system.return_loan(loan_id))

    @app.get("/api/v1/loans")
    def list_loans(member_id: Optional[str] = None):
        return [serialize(l) for l in system.list_loans(member_id)]

    @app.get("/api/v1/loans/{loan_id}")
    def get_loan(loan_id: str):
        return serialize(system.get_loan(loan_id))

    # ----------------------
    # Reservations
    # ----------------------

    @app.post("/api/v1/reservations", status_code=status.HTTP_201_CREATED)
    def place_reservation(payload: ReservationRequest):
        return serialize(system.place_reservation(payload.book_id, payload.member_id))

    @app.delete("/api/v1/reservations/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
    def cancel_reservation(reservation_id: str):
        system.cancel_reservation(reservation_id)

    @app.get("/api/v1/reservations/book/{book_id}")
    def reservations_for_book(book_id: str):
        return [serialize(r) for r in system.reservations_for_book(book_id)]

    @app.get("/api/v1/reservations/queue-position/{book_id}/{member_id}")
    def queue_position(book_id: str, member_id: str):
        return {"position": system.queue_position(book_id, member_id)}

    # ----------------------
    # Fines
    # ----------------------

    @app.get("/api/v1/fines")
    def list_fines(member_id: Optional[str] = None):
        return [serialize(f) for f in system.list_fines(member_id)]

    @app.post("/api/v1/fines/{fine_id}/pay")
    def pay_fine(fine_id: str):
        return serialize(system.pay_fine(fine_id))

    @app.post("/api/v1/fines/recompute/{loan_id}")
    def recompute_fine(loan_id: str):
        fine = system.recompute_fine(loan_id)
        return serialize(fine) if fine is not None else None

    @app.post("/api/v1/jobs/daily")
    def run_daily_jobs():
        return system.run_daily_jobs()

    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
