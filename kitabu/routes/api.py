#!/usr/bin/env python

"""
    API routes for Kitabu,
    exposing issue, return, lost/found, fine and theft case operations.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from functools import wraps
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, status
from kitabu.core import db as database
from kitabu.core.circulation import CirculationEngine
from kitabu.core.fines import FineSchedule
from kitabu.core.exceptions import (
    KitabuError,
    ValidationError,
    PreconditionError,
    NotFoundError,
    BorrowerInactiveError,
    DatabaseInsertError,
)
from kitabu.routes.schemas import (
    IssueRequest,
    GroupIssueRequest,
    ReturnRequest,
    GroupReturnRequest,
    LostRequest,
    FoundRequest,
    TheftResolutionRequest,
    NotesRequest,
    PaymentRequest,
    ClearRequest,
)
from kitabu import schemas

logger = logging.getLogger(__name__)

router = APIRouter()

def get_db():
    db = database.session()
    try:
        yield db
    finally:
        db.close()
        database.session.remove()

def get_engine(db=Depends(get_db)) -> CirculationEngine:
    return CirculationEngine(db, schedule=FineSchedule.load(db))

def _status_for(error):
    if isinstance(error, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (PreconditionError, BorrowerInactiveError)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR

def handles_circulation_errors(func):
    """
    Decorator translating engine errors into HTTP errors. The body
    carries the error class name so callers can branch on it
    (e.g. retry a BorrowerInactiveError with allow_inactive).
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KitabuError as e:
            code = _status_for(e)
            if isinstance(e, DatabaseInsertError):
                logger.error(f"{func.__name__} failed: {e}")
            raise HTTPException(status_code=code, detail={
                "error": type(e).__name__,
                "message": str(e),
            })
    return wrapper

@router.post("/loans", status_code=status.HTTP_201_CREATED, response_model=schemas.IssueReceipt)
@handles_circulation_errors
def issue_loan(req: IssueRequest, engine: CirculationEngine = Depends(get_engine)):
    return engine.issue(
        req.tracking_code, req.borrower_id, due_date=req.due_date,
        condition_at_issue=req.condition_at_issue, borrowed_date=req.borrowed_date,
        allow_inactive=req.allow_inactive, notes=req.notes)

@router.post("/loans/group", status_code=status.HTTP_201_CREATED, response_model=schemas.IssueReceipt)
@handles_circulation_errors
def issue_group_loan(req: GroupIssueRequest, engine: CirculationEngine = Depends(get_engine)):
    return engine.issue_group(
        req.tracking_code, req.borrower_ids, due_date=req.due_date,
        condition_at_issue=req.condition_at_issue, borrowed_date=req.borrowed_date,
        allow_inactive=req.allow_inactive, notes=req.notes)

@router.get("/loans/overdue", response_model=List[schemas.Loan])
def overdue_loans(engine: CirculationEngine = Depends(get_engine)):
    return engine.overdue_loans()

@router.get("/loans/{loan_id}", response_model=schemas.Loan)
@handles_circulation_errors
def get_loan(loan_id: int, engine: CirculationEngine = Depends(get_engine)):
    return engine.ledger.get(loan_id)

@router.post("/loans/{loan_id}/lost", response_model=schemas.ReturnReceipt)
@handles_circulation_errors
def declare_lost(loan_id: int, req: LostRequest, engine: CirculationEngine = Depends(get_engine)):
    return engine.declare_lost(loan_id, notes=req.notes, fine_override=req.fine_override,
                               returned_date=req.returned_date)

@router.post("/loans/group/{loan_id}/return", response_model=schemas.ReturnReceipt)
@handles_circulation_errors
def return_group_loan(loan_id: int, req: GroupReturnRequest,
                      engine: CirculationEngine = Depends(get_engine)):
    return engine.return_group(
        loan_id, req.tracking_code, condition_at_return=req.condition_at_return,
        is_lost=req.is_lost, notes=req.return_notes, fine_override=req.fine_override,
        returned_date=req.returned_date)

@router.post("/returns", response_model=schemas.ReturnReceipt)
@handles_circulation_errors
def return_copy(req: ReturnRequest, engine: CirculationEngine = Depends(get_engine)):
    """
    Return desk endpoint. Without `expected_loan_id` or `borrower_id` the
    presented copy simply closes its own active loan; with either, a copy
    belonging to somebody else's loan opens a theft case.
    """
    return engine.return_copy(
        req.tracking_code,
        condition_at_return=req.condition_at_return,
        is_lost=req.is_lost,
        notes=req.return_notes,
        fine_override=req.fine_override,
        expected_loan_id=req.expected_loan_id,
        borrower_id=req.borrower_id,
        resolve_theft=req.resolve_theft,
        returned_date=req.returned_date,
    )

@router.get("/copies", response_model=schemas.Copy)
@handles_circulation_errors
def lookup_copy(tracking_code: str = Query(...), engine: CirculationEngine = Depends(get_engine)):
    return engine.registry.lookup(tracking_code)

@router.post("/copies/found", response_model=schemas.FoundReceipt)
@handles_circulation_errors
def book_found(req: FoundRequest, engine: CirculationEngine = Depends(get_engine)):
    return engine.book_found(req.tracking_code, condition=req.condition,
                             confirm_recovery=req.confirm_recovery)

@router.get("/theft-cases", response_model=List[schemas.TheftCase])
def open_theft_cases(engine: CirculationEngine = Depends(get_engine)):
    return engine.theft.open_cases()

@router.get("/theft-cases/{case_id}", response_model=schemas.TheftCase)
@handles_circulation_errors
def get_theft_case(case_id: int, engine: CirculationEngine = Depends(get_engine)):
    return engine.theft.get(case_id)

@router.post("/theft-cases/{case_id}/resolve", response_model=schemas.TheftCase)
@handles_circulation_errors
def resolve_theft_case(case_id: int, req: TheftResolutionRequest,
                       engine: CirculationEngine = Depends(get_engine)):
    return engine.resolve_theft_case(case_id, req.action, amount=req.amount)

@router.post("/theft-cases/{case_id}/investigate", response_model=schemas.TheftCase)
@handles_circulation_errors
def investigate_theft_case(case_id: int, req: NotesRequest,
                           engine: CirculationEngine = Depends(get_engine)):
    return engine.investigate_theft_case(case_id, req.notes)

@router.post("/theft-cases/{case_id}/close", response_model=schemas.TheftCase)
@handles_circulation_errors
def close_theft_case(case_id: int, req: NotesRequest, engine: CirculationEngine = Depends(get_engine)):
    return engine.close_theft_case(case_id, req.notes)

@router.post("/fines/{fine_id}/pay", response_model=schemas.Fine)
@handles_circulation_errors
def pay_fine(fine_id: int, req: PaymentRequest, engine: CirculationEngine = Depends(get_engine)):
    return engine.pay_fine(fine_id, req.amount)

@router.post("/fines/{fine_id}/clear", response_model=schemas.Fine)
@handles_circulation_errors
def clear_fine(fine_id: int, req: ClearRequest, engine: CirculationEngine = Depends(get_engine)):
    return engine.clear_fine(fine_id, req.reason)

@router.get("/borrowers/{borrower_id}/fines", response_model=schemas.FineSummary)
def borrower_fines(borrower_id: int, engine: CirculationEngine = Depends(get_engine)):
    return schemas.FineSummary(
        borrower_id=borrower_id,
        outstanding=engine.fines.outstanding(borrower_id),
        fines=[schemas.Fine.model_validate(f) for f in engine.fines.unpaid_for(borrower_id)],
    )
