#!/usr/bin/env python

"""
    Loan ledger for Kitabu.

    `LoanLedger` is the interface the circulation engine is written
    against. `SQLLoanLedger` is the authoritative store; `CachedLoanLedger`
    keeps a local tracking-code index of active loans in front of any
    ledger and can reconcile that index with the authoritative store.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import abc
import datetime
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
from kitabu.core.models import (
    Borrower, BookCopy, Condition, GroupLoan, IndividualLoan,
    Loan, LoanStatus
)
from kitabu.core.exceptions import (
    BorrowerInactiveError,
    CopyUnavailableError,
    EmptyGroupError,
    InvalidDueDateError,
    InvalidGroupMemberError,
    LoanNotActiveError,
    LoanNotFoundError,
)
from kitabu.core.utils import to_money

logger = logging.getLogger(__name__)


class LoanLedger(abc.ABC):

    @abc.abstractmethod
    def get(self, loan_id) -> Loan:
        """Returns the loan or raises LoanNotFoundError."""

    @abc.abstractmethod
    def open_loan(self, copy: BookCopy, borrower: Borrower, due_date: datetime.date,
                  condition_at_issue: Condition, borrowed_date: datetime.date,
                  allow_inactive: bool = False, notes: Optional[str] = None) -> IndividualLoan:
        pass

    @abc.abstractmethod
    def open_group_loan(self, copy: BookCopy, borrowers: Iterable[Borrower],
                        due_date: datetime.date, condition_at_issue: Condition,
                        borrowed_date: datetime.date, allow_inactive: bool = False,
                        notes: Optional[str] = None) -> GroupLoan:
        pass

    @abc.abstractmethod
    def close_loan(self, loan: Loan, condition_at_return: Condition, fine_amount,
                   is_lost: bool, notes: Optional[str], returned_date: datetime.date,
                   fine_overridden: bool = False) -> Loan:
        pass

    @abc.abstractmethod
    def find_active_by_tracking_code(self, code: str) -> Optional[Loan]:
        pass

    @abc.abstractmethod
    def active_loans(self) -> List[Loan]:
        pass

    @abc.abstractmethod
    def latest_for_copy(self, copy: BookCopy) -> Optional[Loan]:
        pass

    def active_loans_for(self, borrower_id) -> List[Loan]:
        return [l for l in self.active_loans()
                if any(b.id == borrower_id for b in l.borrowers)]

    def overdue(self, as_of: datetime.date) -> List[Loan]:
        return [l for l in self.active_loans() if l.is_overdue(as_of)]

    def lost_loan_for(self, copy: BookCopy) -> Optional[Loan]:
        loan = self.latest_for_copy(copy)
        if loan is not None and loan.is_lost:
            return loan
        return None


class SQLLoanLedger(LoanLedger):

    def __init__(self, db):
        self.db = db

    def get(self, loan_id) -> Loan:
        loan = self.db.get(Loan, loan_id)
        if loan is None:
            raise LoanNotFoundError(f"No loan with id {loan_id}.")
        return loan

    @staticmethod
    def _check_dates(due_date, borrowed_date):
        if due_date <= borrowed_date:
            raise InvalidDueDateError(
                f"Due date {due_date} must be after borrowed date {borrowed_date}.")

    @staticmethod
    def _check_copy(copy):
        if not copy.is_loanable:
            raise CopyUnavailableError(f"Copy {copy.tracking_code} is {copy.status.value}.")

    @staticmethod
    def _check_active(borrower, allow_inactive):
        if borrower.active:
            return
        if not allow_inactive:
            raise BorrowerInactiveError(f"Borrower {borrower.id} ({borrower.name}) is inactive.")
        logger.warning(f"Issuing to inactive borrower {borrower.id} ({borrower.name}) by override")

    def open_loan(self, copy, borrower, due_date, condition_at_issue, borrowed_date,
                  allow_inactive=False, notes=None):
        self._check_dates(due_date, borrowed_date)
        self._check_copy(copy)
        self._check_active(borrower, allow_inactive)
        loan = IndividualLoan(
            copy=copy,
            borrower=borrower,
            borrowed_date=borrowed_date,
            due_date=due_date,
            status=LoanStatus.ACTIVE,
            condition_at_issue=condition_at_issue,
            notes=notes,
        )
        self.db.add(loan)
        self.db.flush()
        return loan

    def open_group_loan(self, copy, borrowers, due_date, condition_at_issue, borrowed_date,
                        allow_inactive=False, notes=None):
        members = {}
        for borrower in borrowers:
            members.setdefault(borrower.id, borrower)
        if not members:
            raise EmptyGroupError("A group loan needs at least one student.")
        self._check_dates(due_date, borrowed_date)
        self._check_copy(copy)
        for borrower in members.values():
            if not borrower.is_student:
                raise InvalidGroupMemberError(f"Borrower {borrower.id} is not a student.")
            self._check_active(borrower, allow_inactive)
        loan = GroupLoan(
            copy=copy,
            members=list(members.values()),
            borrowed_date=borrowed_date,
            due_date=due_date,
            status=LoanStatus.ACTIVE,
            condition_at_issue=condition_at_issue,
            notes=notes,
        )
        self.db.add(loan)
        self.db.flush()
        return loan

    def close_loan(self, loan, condition_at_return, fine_amount, is_lost, notes,
                   returned_date, fine_overridden=False):
        # Guarded update so a concurrent second close cannot also succeed
        closed = self.db.query(Loan).filter(
            Loan.id == loan.id,
            Loan.is_active
        ).update({
            Loan.status: LoanStatus.RETURNED,
            Loan.returned_date: returned_date,
            Loan.condition_at_return: condition_at_return,
            Loan.fine_amount: to_money(fine_amount),
            Loan.fine_overridden: fine_overridden,
            Loan.is_lost: is_lost,
            Loan.return_notes: notes,
        }, synchronize_session=False)
        self.db.expire(loan)
        if closed != 1:
            raise LoanNotActiveError(f"Loan {loan.id} has already been returned.")
        return loan

    def _active_query(self):
        return self.db.query(Loan).filter(Loan.is_active)

    def find_active_by_tracking_code(self, code):
        return self._active_query().join(BookCopy, Loan.copy_id == BookCopy.id).filter(
            BookCopy.tracking_code == code
        ).first()

    def active_loans(self):
        return self._active_query().order_by(Loan.borrowed_date, Loan.id).all()

    def latest_for_copy(self, copy):
        return self.db.query(Loan).filter(Loan.copy_id == copy.id).order_by(
            Loan.id.desc()).first()


@dataclass
class ReconcileReport:
    stale: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def in_sync(self):
        return not (self.stale or self.missing)


class CachedLoanLedger(LoanLedger):
    """Write-through cache of active loans keyed by tracking code.

    Reads of active loans are answered from the local index; every write
    goes to the authoritative ledger first and updates the index only once
    it succeeded. `reconcile` repairs drift introduced by other writers.
    """

    def __init__(self, authoritative: LoanLedger):
        self.authoritative = authoritative
        self._lock = threading.RLock()
        self._index: Dict[str, int] = {
            l.tracking_code: l.id for l in authoritative.active_loans()}

    def get(self, loan_id):
        return self.authoritative.get(loan_id)

    def _remember(self, loan):
        with self._lock:
            self._index[loan.tracking_code] = loan.id

    def _forget(self, code):
        with self._lock:
            self._index.pop(code, None)

    def open_loan(self, copy, borrower, due_date, condition_at_issue, borrowed_date,
                  allow_inactive=False, notes=None):
        loan = self.authoritative.open_loan(
            copy, borrower, due_date, condition_at_issue, borrowed_date,
            allow_inactive=allow_inactive, notes=notes)
        self._remember(loan)
        return loan

    def open_group_loan(self, copy, borrowers, due_date, condition_at_issue, borrowed_date,
                        allow_inactive=False, notes=None):
        loan = self.authoritative.open_group_loan(
            copy, borrowers, due_date, condition_at_issue, borrowed_date,
            allow_inactive=allow_inactive, notes=notes)
        self._remember(loan)
        return loan

    def close_loan(self, loan, condition_at_return, fine_amount, is_lost, notes,
                   returned_date, fine_overridden=False):
        code = loan.tracking_code
        loan = self.authoritative.close_loan(
            loan, condition_at_return, fine_amount, is_lost, notes, returned_date,
            fine_overridden=fine_overridden)
        self._forget(code)
        return loan

    def find_active_by_tracking_code(self, code):
        with self._lock:
            loan_id = self._index.get(code)
        if loan_id is not None:
            try:
                loan = self.authoritative.get(loan_id)
            except LoanNotFoundError:
                loan = None
            if loan is not None and loan.is_active and loan.tracking_code == code:
                return loan
            self._forget(code)
        # Miss or stale entry: the authoritative store decides
        loan = self.authoritative.find_active_by_tracking_code(code)
        if loan is not None:
            self._remember(loan)
        return loan

    def active_loans(self):
        return self.authoritative.active_loans()

    def latest_for_copy(self, copy):
        return self.authoritative.latest_for_copy(copy)

    def reconcile(self) -> ReconcileReport:
        fresh = {l.tracking_code: l.id for l in self.authoritative.active_loans()}
        with self._lock:
            report = ReconcileReport(
                stale=sorted(code for code, loan_id in self._index.items()
                             if fresh.get(code) != loan_id),
                missing=sorted(code for code in fresh if code not in self._index),
            )
            self._index = fresh
        if not report.in_sync:
            logger.warning(f"Ledger cache reconciled: {len(report.stale)} stale, "
                           f"{len(report.missing)} missing")
        return report

