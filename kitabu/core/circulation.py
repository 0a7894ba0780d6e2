#!/usr/bin/env python

"""
    Circulation engine for Kitabu.

    Orchestrates issue and return of physical copies against the copy
    registry and the loan ledger, runs theft detection and fine
    assessment, and hands theft cases to the tracker.

    Every public operation is all-or-nothing: it runs inside one
    transaction while holding the per-copy lock(s) for the tracking codes
    it touches, and any failure rolls the session back.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, List, Optional
from kitabu.configs import GROUP_FINE_SPLIT, LOAN_DAYS
from kitabu.core.db import transaction
from kitabu.core.models import (
    Borrower, Condition, CopyStatus, FineType, Loan, LoanStatus
)
from kitabu.core.exceptions import (
    BorrowerNotFoundError,
    CopyNotLostError,
    EmptyGroupError,
    InvalidAmountError,
    InvalidDueDateError,
    LoanNotActiveError,
    LoanNotFoundError,
    TrackingCodeMismatchError,
    UnknownTrackingCodeError,
    ValidationError,
)
from kitabu.core.fines import FineAccount, FineAssessment, FineSchedule, compute_fine
from kitabu.core.ledger import LoanLedger, SQLLoanLedger
from kitabu.core.registry import CopyRegistry
from kitabu.core.theft import TheftCaseTracker
from kitabu.core.utils import normalize_tracking_code, split_evenly, to_money

logger = logging.getLogger(__name__)

RECOVERY_REASON = "lost book recovered"
FINE_SPLITS = ("equal", "first_member")


class CopyLocks:
    """Per-tracking-code mutual exclusion shared by every engine in the
    process. Multiple codes are always acquired in sorted order, and a
    code's lock is dropped once no caller holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # code -> [lock, number of holders and waiters]
        self._locks = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, *codes):
        codes = sorted(set(c for c in codes if c))
        with self._guard:
            entries = []
            for code in codes:
                entry = self._locks.setdefault(code, [threading.Lock(), 0])
                entry[1] += 1
                entries.append(entry)
        acquired = []
        try:
            for entry in entries:
                entry[0].acquire()
                acquired.append(entry)
            yield
        finally:
            for entry in reversed(acquired):
                entry[0].release()
            with self._guard:
                for code, entry in zip(codes, entries):
                    entry[1] -= 1
                    if entry[1] == 0:
                        del self._locks[code]


COPY_LOCKS = CopyLocks()


@dataclass(frozen=True)
class IssueResult:
    loan_id: int
    tracking_code: str
    borrower_ids: List[int]
    borrowed_date: datetime.date
    due_date: datetime.date
    is_group: bool = False


@dataclass(frozen=True)
class ReturnResult:
    loan_id: int
    tracking_code: str
    fine_amount: Decimal
    fine_ids: List[int] = field(default_factory=list)
    overdue_days: int = 0
    is_lost: bool = False
    fine_overridden: bool = False
    theft_case_id: Optional[int] = None
    accused_loan_id: Optional[int] = None
    theft_fine_amount: Optional[Decimal] = None

    @property
    def is_theft(self):
        return self.theft_case_id is not None


@dataclass(frozen=True)
class FoundResult:
    loan_id: Optional[int]
    tracking_code: str
    cleared_fine_ids: List[int] = field(default_factory=list)


def as_condition(value, default=Condition.GOOD) -> Condition:
    if value is None:
        return default
    if isinstance(value, Condition):
        return value
    try:
        return Condition(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown condition grade {value!r}.")


class CirculationEngine:

    def __init__(self, db, schedule: Optional[FineSchedule] = None,
                 ledger: Optional[LoanLedger] = None,
                 clock: Callable[[], datetime.date] = datetime.date.today,
                 loan_days: int = LOAN_DAYS,
                 group_fine_split: str = GROUP_FINE_SPLIT,
                 locks: CopyLocks = COPY_LOCKS):
        self.db = db
        self.schedule = schedule or FineSchedule.from_config()
        self.registry = CopyRegistry(db)
        self.ledger = ledger or SQLLoanLedger(db)
        self.fines = FineAccount(db)
        self.theft = TheftCaseTracker(db, self.fines)
        self.clock = clock
        self.loan_days = loan_days
        if group_fine_split not in FINE_SPLITS:
            logger.warning(f"Unknown group fine split {group_fine_split!r}; using 'equal'")
            group_fine_split = "equal"
        self.group_fine_split = group_fine_split
        self.locks = locks

    def _borrower(self, borrower_id) -> Borrower:
        borrower = self.db.get(Borrower, borrower_id)
        if borrower is None:
            raise BorrowerNotFoundError(f"No borrower with id {borrower_id}.")
        return borrower

    def _due_date(self, due_date, borrowed_date):
        due_date = due_date or borrowed_date + datetime.timedelta(days=self.loan_days)
        if due_date <= borrowed_date:
            raise InvalidDueDateError(
                f"Due date {due_date} must be after borrowed date {borrowed_date}.")
        if due_date <= self.clock():
            raise InvalidDueDateError(f"Due date {due_date} must be in the future.")
        return due_date

    # ---- issue

    def issue(self, tracking_code: str, borrower_id, due_date: Optional[datetime.date] = None,
              condition_at_issue=None, borrowed_date: Optional[datetime.date] = None,
              allow_inactive: bool = False, notes: Optional[str] = None) -> IssueResult:
        """Lends a copy to one borrower. `borrowed_date` defaults to today and
        may be back-dated for loans recorded after the fact.
        """
        code = normalize_tracking_code(tracking_code)
        borrowed_date = borrowed_date or self.clock()
        due_date = self._due_date(due_date, borrowed_date)
        with self.locks.hold(code), transaction(self.db):
            copy = self.registry.lookup(code)
            borrower = self._borrower(borrower_id)
            loan = self.ledger.open_loan(
                copy, borrower, due_date,
                as_condition(condition_at_issue, copy.condition), borrowed_date,
                allow_inactive=allow_inactive, notes=notes)
            self.registry.mark_borrowed(code, loan.id)
            result = IssueResult(loan.id, code, [borrower.id], borrowed_date, due_date)
        logger.info(f"Issued {code} to borrower {borrower_id} on loan {result.loan_id}, due {due_date}")
        return result

    def issue_group(self, tracking_code: str, borrower_ids: Iterable, due_date=None,
                    condition_at_issue=None, borrowed_date: Optional[datetime.date] = None,
                    allow_inactive: bool = False, notes: Optional[str] = None) -> IssueResult:
        code = normalize_tracking_code(tracking_code)
        member_ids = list(dict.fromkeys(borrower_ids or []))
        if not member_ids:
            raise EmptyGroupError("A group loan needs at least one student.")
        borrowed_date = borrowed_date or self.clock()
        due_date = self._due_date(due_date, borrowed_date)
        with self.locks.hold(code), transaction(self.db):
            copy = self.registry.lookup(code)
            members = [self._borrower(b) for b in member_ids]
            loan = self.ledger.open_group_loan(
                copy, members, due_date,
                as_condition(condition_at_issue, copy.condition), borrowed_date,
                allow_inactive=allow_inactive, notes=notes)
            self.registry.mark_borrowed(code, loan.id)
            result = IssueResult(loan.id, code, member_ids, borrowed_date, due_date, is_group=True)
        logger.info(f"Issued {code} to group of {len(member_ids)} on loan {result.loan_id}, due {due_date}")
        return result

    # ---- return

    def _peek_expected_code(self, expected_loan_id, borrower_id):
        """Unlocked read used only to decide which copy locks to take."""
        try:
            if expected_loan_id is not None:
                return self.ledger.get(expected_loan_id).tracking_code
            if borrower_id is not None:
                return [l.tracking_code for l in self.ledger.active_loans_for(borrower_id)]
        except LoanNotFoundError:
            return None
        return None

    def _expected_loan(self, code, expected_loan_id, borrower_id) -> Optional[Loan]:
        if expected_loan_id is not None:
            loan = self.ledger.get(expected_loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise LoanNotActiveError(f"Loan {loan.id} has already been returned.")
            return loan
        if borrower_id is None:
            return None
        self._borrower(borrower_id)
        own = self.ledger.active_loans_for(borrower_id)
        for loan in own:
            if loan.tracking_code == code:
                return loan
        individual = [l for l in own if not l.is_group]
        if individual:
            return individual[0]
        if own:
            return own[0]
        raise TrackingCodeMismatchError(
            f"Borrower {borrower_id} has no active loan; {code} cannot be returned on their behalf.")

    def _raise_no_active_loan(self, code, expected):
        # A repeated return of the same copy is reported as such; when the
        # operator is closing some other loan the presented code is unknown.
        copy = self.registry.find(code)
        if expected is None and copy is not None and self.ledger.latest_for_copy(copy) is not None:
            raise LoanNotActiveError(f"Copy {code} has no active loan; it was already returned.")
        raise UnknownTrackingCodeError(f"No active loan for tracking code {code}.")

    def return_copy(self, presented_code: str, condition_at_return=None, is_lost: bool = False,
                    notes: Optional[str] = None, fine_override=None,
                    expected_loan_id=None, borrower_id=None,
                    resolve_theft: bool = True,
                    returned_date: Optional[datetime.date] = None) -> ReturnResult:
        """Processes a returned copy.

        `expected_loan_id` or `borrower_id` identify the loan the operator
        believes is being closed. When the presented code belongs to a
        different active loan the theft path runs; `resolve_theft` selects
        whether the resulting case is recorded as already resolved (direct
        return desk) or left reported for follow-up. The lost flag and a
        fine override only apply to a normal return.
        """
        code = normalize_tracking_code(presented_code)
        condition = as_condition(condition_at_return)
        if fine_override is not None and to_money(fine_override) < 0:
            raise InvalidAmountError("Fine override must not be negative.")
        hint = self._peek_expected_code(expected_loan_id, borrower_id)
        hints = hint if isinstance(hint, list) else [hint]

        with self.locks.hold(code, *hints), transaction(self.db):
            expected = self._expected_loan(code, expected_loan_id, borrower_id)
            if expected is not None and expected.tracking_code == code:
                return self._close(expected, condition, is_lost, notes, fine_override, returned_date)
            presented = self.ledger.find_active_by_tracking_code(code)
            if presented is None:
                self._raise_no_active_loan(code, expected)
            if expected is None:
                return self._close(presented, condition, is_lost, notes, fine_override, returned_date)
            if is_lost or fine_override is not None:
                raise ValidationError(
                    f"{code} belongs to another borrower's loan; the lost flag and fine "
                    f"override cannot be applied to a theft return.")
            return self._process_theft(expected, presented, condition, notes, resolve_theft,
                                       returned_date)

    def return_group(self, group_loan_id, presented_code: str, condition_at_return=None,
                     is_lost: bool = False, notes: Optional[str] = None,
                     fine_override=None, returned_date: Optional[datetime.date] = None) -> ReturnResult:
        code = normalize_tracking_code(presented_code)
        condition = as_condition(condition_at_return)
        with self.locks.hold(code), transaction(self.db):
            loan = self.ledger.get(group_loan_id)
            if not loan.is_group:
                raise LoanNotFoundError(f"Loan {loan.id} is not a group loan.")
            if loan.status != LoanStatus.ACTIVE:
                raise LoanNotActiveError(f"Group loan {loan.id} has already been returned.")
            if loan.tracking_code != code:
                raise TrackingCodeMismatchError(
                    f"Group loan {loan.id} is for {loan.tracking_code}, not {code}.")
            return self._close(loan, condition, is_lost, notes, fine_override, returned_date)

    def declare_lost(self, loan_id, notes: Optional[str] = None, fine_override=None,
                     returned_date: Optional[datetime.date] = None) -> ReturnResult:
        code = self._peek_expected_code(loan_id, None)
        with self.locks.hold(code), transaction(self.db):
            loan = self.ledger.get(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise LoanNotActiveError(f"Loan {loan.id} has already been returned.")
            return self._close(loan, None, True, notes, fine_override, returned_date)

    def _returned_date(self, loan, returned_date):
        returned_date = returned_date or self.clock()
        if returned_date < loan.borrowed_date:
            raise InvalidDueDateError(
                f"Return date {returned_date} is before borrowed date {loan.borrowed_date}.")
        return returned_date

    def _close(self, loan, condition, is_lost, notes, fine_override,
               returned_date=None) -> ReturnResult:
        returned_date = self._returned_date(loan, returned_date)
        code = loan.tracking_code
        assessment = compute_fine(self.schedule, loan.due_date, returned_date,
                                  condition, is_lost=is_lost, override=fine_override)
        self.ledger.close_loan(loan, condition, assessment.total, is_lost, notes,
                               returned_date, fine_overridden=assessment.overridden)
        if is_lost:
            self.registry.mark_lost(code)
        else:
            self.registry.mark_available(code, condition)
        fines = self._assess_loan_fines(loan, code, assessment)
        logger.info(f"Loan {loan.id} closed ({'lost' if is_lost else 'returned'}), "
                    f"fine {assessment.total}{' (override)' if assessment.overridden else ''}")
        return ReturnResult(
            loan_id=loan.id,
            tracking_code=code,
            fine_amount=assessment.total,
            fine_ids=[f.id for f in fines],
            overdue_days=assessment.overdue_days,
            is_lost=is_lost,
            fine_overridden=assessment.overridden,
        )

    def _assess_loan_fines(self, loan, code, assessment: FineAssessment):
        if not assessment.is_chargeable:
            return []
        description = (f"{assessment.fine_type.value} fine for {code}: "
                       f"{assessment.overdue_days} day(s) overdue"
                       f"{', manual override' if assessment.overridden else ''}")
        borrowers = loan.borrowers
        if not loan.is_group:
            return [self.fines.assess(borrowers[0], assessment.fine_type, assessment.total,
                                      loan=loan, description=description)]
        if self.group_fine_split == "first_member":
            shares = [assessment.total] + [Decimal("0")] * (len(borrowers) - 1)
        else:
            shares = split_evenly(assessment.total, len(borrowers))
        return [self.fines.assess(b, assessment.fine_type, share, loan=loan,
                                  description=f"{description} (group share)")
                for b, share in zip(borrowers, shares) if share > 0]

    def _process_theft(self, accused_loan, victim_loan, condition, notes, resolve_theft,
                       returned_date=None):
        if accused_loan.is_group:
            raise TrackingCodeMismatchError(
                f"Group loan {accused_loan.id} is for {accused_loan.tracking_code}; "
                f"{victim_loan.tracking_code} belongs to another loan.")
        today = self._returned_date(accused_loan, self._returned_date(victim_loan, returned_date))
        accused = accused_loan.borrower
        victim_code = victim_loan.tracking_code
        accused_code = accused_loan.tracking_code

        self.ledger.close_loan(
            victim_loan, condition, Decimal("0"), False,
            f"Returned by borrower {accused.id} in place of {accused_code}; owner not at fault.",
            today)
        self.registry.mark_available(victim_code, condition)

        self.ledger.close_loan(
            accused_loan, None, Decimal("0"), True,
            notes or f"Returned {victim_code} belonging to another borrower instead of this copy.",
            today)
        self.registry.mark_lost(accused_code)

        theft_rate = self.schedule.rate(FineType.THEFT)
        fine = self.fines.assess(
            accused, FineType.THEFT, theft_rate, loan=accused_loan,
            description=f"Theft fine: returned {victim_code} belonging to another borrower")
        case = self.theft.record(accused, accused_loan, victim_loan, fine,
                                 resolved=resolve_theft, reported_date=today)
        logger.warning(f"Theft detected: borrower {accused.id} returned {victim_code} "
                       f"(loan {victim_loan.id}) instead of {accused_code}; case {case.id}")
        return ReturnResult(
            loan_id=victim_loan.id,
            tracking_code=victim_code,
            fine_amount=Decimal("0.00"),
            theft_case_id=case.id,
            accused_loan_id=accused_loan.id,
            theft_fine_amount=to_money(theft_rate),
            fine_ids=[fine.id],
        )

    # ---- lost & found

    def book_found(self, tracking_code: str, condition=None, confirm_recovery: bool = True) -> FoundResult:
        code = normalize_tracking_code(tracking_code)
        condition = as_condition(condition)
        with self.locks.hold(code), transaction(self.db):
            copy = self.registry.lookup(code)
            if copy.status != CopyStatus.LOST:
                raise CopyNotLostError(f"Copy {code} is {copy.status.value}, not lost.")
            loan = self.ledger.lost_loan_for(copy)
            self.registry.mark_found(code, condition)
            cleared = []
            if confirm_recovery and loan is not None:
                for fine in self.fines.unpaid_for_loan(loan.id, FineType.LOST_BOOK):
                    cleared.append(self.fines.clear(fine.id, RECOVERY_REASON).id)
            result = FoundResult(loan.id if loan is not None else None, code, cleared)
        logger.info(f"Lost copy {code} found; cleared fines {cleared}")
        return result

    def overdue_loans(self, as_of: Optional[datetime.date] = None) -> List[Loan]:
        return self.ledger.overdue(as_of or self.clock())

    # ---- fines & theft cases

    def pay_fine(self, fine_id, amount=None):
        with transaction(self.db):
            fine = self.fines.pay(fine_id, amount)
        return fine

    def clear_fine(self, fine_id, reason: str):
        with transaction(self.db):
            fine = self.fines.clear(fine_id, reason)
        return fine

    def collect_theft_fine(self, case_id, amount=None):
        with transaction(self.db):
            case = self.theft.collect(case_id, amount, today=self.clock())
        return case

    def waive_theft_fine(self, case_id):
        with transaction(self.db):
            case = self.theft.waive(case_id, today=self.clock())
        return case

    def resolve_theft_case(self, case_id, action: str, amount=None):
        if action == "collect":
            return self.collect_theft_fine(case_id, amount)
        if action == "waive":
            return self.waive_theft_fine(case_id)
        raise ValidationError(f"Unknown theft case action {action!r}; expected collect or waive.")

    def investigate_theft_case(self, case_id, notes: Optional[str] = None):
        with transaction(self.db):
            case = self.theft.investigate(case_id, notes)
        return case

    def close_theft_case(self, case_id, notes: Optional[str] = None):
        with transaction(self.db):
            case = self.theft.close(case_id, notes)
        return case
