#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_fines
    ~~~~~~~~~~~~~~~~

    Fine schedule resolution, the fine calculation and fine accounting.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import datetime
import logging
from decimal import Decimal
import pytest
from kitabu.core.exceptions import (
    FineNotPayableError,
    InvalidAmountError,
    ValidationError,
)
from kitabu.core.fines import DEFAULT_RATES, FineAccount, FineSchedule, compute_fine
from kitabu.core.models import Borrower, Condition, FineSetting, FineStatus, FineType

DUE = datetime.date(2024, 1, 15)


def test_defaults():
    schedule = FineSchedule()
    assert schedule.rate(FineType.OVERDUE) == Decimal("10")
    assert schedule.rate(FineType.CONDITION_FAIR) == Decimal("50")
    assert schedule.rate(FineType.CONDITION_POOR) == Decimal("150")
    assert schedule.rate(FineType.DAMAGED) == Decimal("300")
    assert schedule.rate(FineType.LOST_BOOK) == Decimal("500")
    assert schedule.rate(FineType.THEFT) == Decimal("800")


def test_configured_rates_override_defaults():
    schedule = FineSchedule({"overdue": "20", "theft": 1000})
    assert schedule.rate(FineType.OVERDUE) == Decimal("20.00")
    assert schedule.rate(FineType.THEFT) == Decimal("1000.00")
    assert schedule.rate(FineType.LOST_BOOK) == DEFAULT_RATES[FineType.LOST_BOOK]


@pytest.mark.parametrize("value", ["abc", "-5", "NaN", "Infinity"])
def test_malformed_rate_falls_back_with_warning(value, caplog):
    with caplog.at_level(logging.WARNING, logger="kitabu.core.fines"):
        schedule = FineSchedule({"overdue": value})
    assert schedule.rate(FineType.OVERDUE) == Decimal("10")
    assert caplog.records


def test_unset_and_unknown_rates_are_ignored():
    schedule = FineSchedule({"overdue": None, "damaged": "", "parking": "5"})
    assert schedule.as_dict() == {t.value: r for t, r in DEFAULT_RATES.items()}


def test_from_config_reads_environment_rates(monkeypatch):
    monkeypatch.setattr("kitabu.configs.FINE_RATES", {"lost_book": "650", "overdue": None})
    schedule = FineSchedule.from_config()
    assert schedule.rate(FineType.LOST_BOOK) == Decimal("650.00")
    assert schedule.rate(FineType.OVERDUE) == Decimal("10")


def test_load_prefers_settings_table(db_session):
    db_session.add(FineSetting(fine_type=FineType.OVERDUE, amount=Decimal("15")))
    db_session.commit()
    schedule = FineSchedule.load(db_session, rates={"overdue": "20", "theft": "900"})
    assert schedule.rate(FineType.OVERDUE) == Decimal("15.00")
    assert schedule.rate(FineType.THEFT) == Decimal("900.00")


def test_overdue_and_fair_condition_add_up():
    assessment = compute_fine(FineSchedule(), DUE, datetime.date(2024, 1, 20), Condition.FAIR)
    assert assessment.overdue_days == 5
    assert assessment.overdue_fine == Decimal("50.00")
    assert assessment.condition_fine == Decimal("50.00")
    assert assessment.total == Decimal("100.00")
    assert assessment.fine_type == FineType.CONDITION_FAIR


def test_on_time_good_return_is_free():
    assessment = compute_fine(FineSchedule(), DUE, DUE, Condition.GOOD)
    assert assessment.total == Decimal("0.00")
    assert not assessment.is_chargeable


def test_early_return_has_no_overdue():
    assessment = compute_fine(FineSchedule(), DUE, datetime.date(2024, 1, 10), Condition.POOR)
    assert assessment.overdue_days == 0
    assert assessment.total == Decimal("150.00")


def test_lost_replaces_other_fines():
    assessment = compute_fine(FineSchedule(), DUE, datetime.date(2024, 2, 15),
                              Condition.DAMAGED, is_lost=True)
    assert assessment.total == Decimal("500.00")
    assert assessment.fine_type == FineType.LOST_BOOK


def test_override_replaces_total():
    assessment = compute_fine(FineSchedule(), DUE, datetime.date(2024, 1, 20),
                              Condition.FAIR, override="30")
    assert assessment.total == Decimal("30.00")
    assert assessment.overridden
    assert assessment.overdue_fine == Decimal("50.00")


def test_negative_override_rejected():
    with pytest.raises(InvalidAmountError):
        compute_fine(FineSchedule(), DUE, DUE, Condition.GOOD, override=-1)


@pytest.fixture
def account(db_session):
    return FineAccount(db_session)


@pytest.fixture
def borrower(db_session):
    b = Borrower(name="Wanjiru", reference_number="ADM0100")
    db_session.add(b)
    db_session.commit()
    return b


def test_pay_defaults_to_full_amount(account, borrower):
    fine = account.assess(borrower, FineType.OVERDUE, 40)
    paid = account.pay(fine.id)
    assert paid.status == FineStatus.PAID
    assert paid.amount_paid == Decimal("40.00")


def test_paid_fine_cannot_be_paid_or_cleared(account, borrower):
    fine = account.assess(borrower, FineType.OVERDUE, 40)
    account.pay(fine.id)
    with pytest.raises(FineNotPayableError):
        account.pay(fine.id)
    with pytest.raises(FineNotPayableError):
        account.clear(fine.id, "mistake")


def test_clear_requires_reason(account, borrower):
    fine = account.assess(borrower, FineType.OVERDUE, 40)
    with pytest.raises(ValidationError):
        account.clear(fine.id, "  ")
    cleared = account.clear(fine.id, "entered twice")
    assert cleared.status == FineStatus.CLEARED
    assert cleared.cleared_reason == "entered twice"


def test_explicit_payment_must_be_positive(account, borrower):
    fine = account.assess(borrower, FineType.OVERDUE, 40)
    with pytest.raises(InvalidAmountError):
        account.pay(fine.id, 0)


def test_outstanding_sums_unpaid(account, borrower):
    account.assess(borrower, FineType.OVERDUE, 40)
    second = account.assess(borrower, FineType.DAMAGED, 300)
    account.assess(borrower, FineType.CONDITION_FAIR, 50)
    account.clear(second.id, "waived")
    assert account.outstanding(borrower.id) == Decimal("90.00")
