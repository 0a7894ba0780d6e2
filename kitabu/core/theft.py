#!/usr/bin/env python

"""
    Theft case tracking for Kitabu.

    Cases are recorded by the circulation engine when a returned copy
    belongs to someone else's active loan; afterwards only this tracker
    changes their status.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
from typing import List, Optional
from kitabu.core.models import TheftCase, TheftStatus
from kitabu.core.exceptions import (
    WAIVER_REASON,
    CaseAlreadyResolvedError,
    CaseNotResolvedError,
    TheftCaseNotFoundError,
)
from kitabu.core.fines import FineAccount

logger = logging.getLogger(__name__)

CLOSED_STATES = (TheftStatus.RESOLVED, TheftStatus.CLOSED)


class TheftCaseTracker:

    def __init__(self, db, fines: Optional[FineAccount] = None):
        self.db = db
        self.fines = fines or FineAccount(db)

    def get(self, case_id) -> TheftCase:
        case = self.db.get(TheftCase, case_id)
        if case is None:
            raise TheftCaseNotFoundError(f"No theft case with id {case_id}.")
        return case

    def open_cases(self) -> List[TheftCase]:
        return self.db.query(TheftCase).filter(
            TheftCase.status.in_([TheftStatus.REPORTED, TheftStatus.INVESTIGATING])
        ).order_by(TheftCase.id).all()

    def record(self, accused, accused_loan, victim_loan, fine, resolved: bool,
               reported_date: datetime.date) -> TheftCase:
        victim = None if victim_loan.is_group else victim_loan.borrower
        case = TheftCase(
            accused_borrower_id=accused.id,
            victim_borrower_id=victim.id if victim is not None else None,
            victim_loan_id=victim_loan.id,
            accused_loan_id=accused_loan.id,
            fine_id=fine.id,
            expected_tracking_code=accused_loan.tracking_code,
            returned_tracking_code=victim_loan.tracking_code,
            status=TheftStatus.RESOLVED if resolved else TheftStatus.REPORTED,
            reported_date=reported_date,
            resolved_date=reported_date if resolved else None,
            resolution_notes=(
                f"Theft detected during return. Fine of {fine.amount} issued to borrower {accused.id}."
                if resolved else None),
        )
        self.db.add(case)
        self.db.flush()
        logger.info(f"Theft case {case.id}: borrower {accused.id} returned "
                    f"{case.returned_tracking_code} instead of {case.expected_tracking_code}")
        return case

    def _ensure_open(self, case):
        if case.status in CLOSED_STATES:
            raise CaseAlreadyResolvedError(f"Theft case {case.id} is already {case.status.value}.")

    def collect(self, case_id, amount=None, today: Optional[datetime.date] = None) -> TheftCase:
        case = self.get(case_id)
        self._ensure_open(case)
        fine = self.fines.pay(case.fine_id, amount)
        case.status = TheftStatus.RESOLVED
        case.resolved_date = today or datetime.date.today()
        case.resolution_notes = f"Fine of {fine.amount_paid} collected from borrower {case.accused_borrower_id}"
        self.db.flush()
        logger.info(f"Theft case {case.id} resolved by collection")
        return case

    def waive(self, case_id, today: Optional[datetime.date] = None) -> TheftCase:
        case = self.get(case_id)
        self._ensure_open(case)
        self.fines.clear(case.fine_id, WAIVER_REASON)
        case.status = TheftStatus.RESOLVED
        case.resolved_date = today or datetime.date.today()
        case.resolution_notes = f"Fine {WAIVER_REASON}"
        self.db.flush()
        logger.info(f"Theft case {case.id} resolved by waiver")
        return case

    def investigate(self, case_id, notes: Optional[str] = None) -> TheftCase:
        case = self.get(case_id)
        self._ensure_open(case)
        case.status = TheftStatus.INVESTIGATING
        if notes:
            case.resolution_notes = notes
        self.db.flush()
        return case

    def close(self, case_id, notes: Optional[str] = None) -> TheftCase:
        case = self.get(case_id)
        if case.status != TheftStatus.RESOLVED:
            raise CaseNotResolvedError(f"Theft case {case.id} is {case.status.value}; resolve it first.")
        case.status = TheftStatus.CLOSED
        if notes:
            case.resolution_notes = notes
        self.db.flush()
        return case
