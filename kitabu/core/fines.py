#!/usr/bin/env python

"""
    Fine schedule and fine accounting for Kitabu.

    `FineSchedule` resolves the rate for every fine category from
    configuration, falling back to defaults; `compute_fine` is the pure
    fine calculation run once per loan when it closes; `FineAccount`
    creates Fine rows and moves them through pay/clear.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional
from sqlalchemy.exc import SQLAlchemyError
from kitabu.core.models import (
    Condition, Fine, FineSetting, FineStatus, FineType, Loan
)
from kitabu.core.exceptions import (
    FineNotFoundError,
    FineNotPayableError,
    InvalidAmountError,
    ValidationError,
)
from kitabu.core.utils import overdue_days, to_money

logger = logging.getLogger(__name__)

DEFAULT_RATES = {
    FineType.OVERDUE: Decimal("10"),
    FineType.CONDITION_FAIR: Decimal("50"),
    FineType.CONDITION_POOR: Decimal("150"),
    FineType.DAMAGED: Decimal("300"),
    FineType.LOST_BOOK: Decimal("500"),
    FineType.THEFT: Decimal("800"),
}

CONDITION_FINES = {
    Condition.FAIR: FineType.CONDITION_FAIR,
    Condition.POOR: FineType.CONDITION_POOR,
    Condition.DAMAGED: FineType.DAMAGED,
}


class FineSchedule:
    """Immutable rate table, built once and injected into the engine."""

    def __init__(self, rates: Optional[Mapping] = None):
        self._rates = dict(DEFAULT_RATES)
        for key, value in (rates or {}).items():
            fine_type = self._coerce_type(key)
            amount = self._coerce_amount(fine_type, value)
            if fine_type is not None and amount is not None:
                self._rates[fine_type] = amount

    @staticmethod
    def _coerce_type(key):
        if isinstance(key, FineType):
            return key
        try:
            return FineType(str(key).strip().lower())
        except ValueError:
            logger.warning(f"Ignoring unknown fine type in configuration: {key!r}")
            return None

    @staticmethod
    def _coerce_amount(fine_type, value):
        if value is None or value == "" or fine_type is None:
            return None
        try:
            amount = to_money(value)
        except (InvalidOperation, ValueError, TypeError):
            logger.warning(f"Malformed rate {value!r} for {fine_type.value}; using default")
            return None
        if not amount.is_finite() or amount < 0:
            logger.warning(f"Invalid rate {value!r} for {fine_type.value}; using default")
            return None
        return amount

    def rate(self, fine_type: FineType) -> Decimal:
        return self._rates.get(fine_type, DEFAULT_RATES[fine_type])

    def as_dict(self):
        return {fine_type.value: amount for fine_type, amount in self._rates.items()}

    def merged(self, rates: Mapping):
        combined = dict(self._rates)
        combined.update(rates or {})
        return FineSchedule(combined)

    @classmethod
    def from_config(cls, rates: Optional[Mapping] = None):
        """Builds a schedule from `kitabu.configs.FINE_RATES` style values."""
        if rates is None:
            from kitabu.configs import FINE_RATES
            rates = FINE_RATES
        return cls(rates)

    @classmethod
    def load(cls, db, rates: Optional[Mapping] = None):
        """Config rates overlaid with any rows in the fine_settings table.

        A failing settings query degrades to the configured/default rates.
        """
        schedule = cls.from_config(rates)
        try:
            settings = db.query(FineSetting).all()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not read fine settings, using defaults: {e}")
            return schedule
        return schedule.merged({s.fine_type: s.amount for s in settings})

    def __repr__(self):
        return f"FineSchedule({self.as_dict()!r})"


@dataclass(frozen=True)
class FineAssessment:
    overdue_days: int
    overdue_fine: Decimal
    condition_fine: Decimal
    total: Decimal
    fine_type: FineType
    overridden: bool = False

    @property
    def is_chargeable(self):
        return self.total > 0


def compute_fine(schedule: FineSchedule, due_date: datetime.date,
                 returned_date: datetime.date, condition: Condition,
                 is_lost: bool = False, override=None) -> FineAssessment:
    days = overdue_days(due_date, returned_date)
    overdue_fine = days * schedule.rate(FineType.OVERDUE)
    condition_type = CONDITION_FINES.get(condition)
    condition_fine = schedule.rate(condition_type) if condition_type else Decimal("0")

    if is_lost:
        fine_type = FineType.LOST_BOOK
        total = schedule.rate(FineType.LOST_BOOK)
    else:
        fine_type = condition_type or FineType.OVERDUE
        total = overdue_fine + condition_fine

    if override is not None:
        override = to_money(override)
        if override < 0:
            raise InvalidAmountError("Fine override must not be negative.")
        return FineAssessment(days, to_money(overdue_fine), to_money(condition_fine),
                              override, fine_type, overridden=True)
    return FineAssessment(days, to_money(overdue_fine), to_money(condition_fine),
                          to_money(total), fine_type)


class FineAccount:
    """Creates fines and applies the only permitted mutations: pay and clear."""

    def __init__(self, db):
        self.db = db

    def get(self, fine_id) -> Fine:
        fine = self.db.get(Fine, fine_id)
        if fine is None:
            raise FineNotFoundError(f"No fine with id {fine_id}.")
        return fine

    def assess(self, borrower, fine_type: FineType, amount, loan: Optional[Loan] = None,
               description: Optional[str] = None) -> Fine:
        amount = to_money(amount)
        if amount < 0:
            raise InvalidAmountError("Fine amount must not be negative.")
        fine = Fine(
            borrower_id=borrower.id,
            loan_id=loan.id if loan is not None else None,
            fine_type=fine_type,
            amount=amount,
            status=FineStatus.UNPAID,
            description=description,
        )
        self.db.add(fine)
        self.db.flush()
        logger.info(f"Assessed {fine_type.value} fine {amount} on borrower {borrower.id}")
        return fine

    def pay(self, fine_id, amount=None) -> Fine:
        fine = self.get(fine_id)
        if fine.status != FineStatus.UNPAID:
            raise FineNotPayableError(f"Fine {fine.id} is already {fine.status.value}.")
        paid = to_money(amount) if amount is not None else fine.amount
        if amount is not None and paid <= 0:
            raise InvalidAmountError("Payment amount must be positive.")
        fine.status = FineStatus.PAID
        fine.amount_paid = paid
        self.db.flush()
        # Shared group loans count as paid only once every share is settled
        if fine.loan is not None and not self.unpaid_for_loan(fine.loan_id):
            fine.loan.fine_paid = True
            self.db.flush()
        logger.info(f"Fine {fine.id} paid: {paid}")
        return fine

    def clear(self, fine_id, reason: str) -> Fine:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to clear a fine.")
        fine = self.get(fine_id)
        if fine.status != FineStatus.UNPAID:
            raise FineNotPayableError(f"Fine {fine.id} is already {fine.status.value}.")
        fine.status = FineStatus.CLEARED
        fine.cleared_reason = reason.strip()
        self.db.flush()
        logger.info(f"Fine {fine.id} cleared: {fine.cleared_reason}")
        return fine

    def unpaid_for(self, borrower_id):
        return self.db.query(Fine).filter(
            Fine.borrower_id == borrower_id,
            Fine.is_unpaid
        ).order_by(Fine.id).all()

    def outstanding(self, borrower_id) -> Decimal:
        return to_money(sum((f.amount for f in self.unpaid_for(borrower_id)), Decimal("0")))

    def unpaid_for_loan(self, loan_id, fine_type: Optional[FineType] = None):
        query = self.db.query(Fine).filter(
            Fine.loan_id == loan_id,
            Fine.is_unpaid
        )
        if fine_type is not None:
            query = query.filter(Fine.fine_type == fine_type)
        return query.order_by(Fine.id).all()
