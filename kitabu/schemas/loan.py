#!/usr/bin/env python
"""
    Loan schemas for Kitabu, including the receipts returned by the
    issue, return and book-found operations.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from pydantic import BaseModel
from typing import List, Optional
from datetime import date
from decimal import Decimal
from kitabu.core.models import Condition, LoanStatus

class Loan(BaseModel):
    id: int
    kind: str
    tracking_code: str
    borrower_ids: List[int]
    borrowed_date: date
    due_date: date
    returned_date: Optional[date] = None
    status: LoanStatus
    condition_at_issue: Condition
    condition_at_return: Optional[Condition] = None
    fine_amount: Decimal
    fine_overridden: bool = False
    fine_paid: bool = False
    is_lost: bool = False
    notes: Optional[str] = None
    return_notes: Optional[str] = None

    class Config:
        from_attributes = True

class IssueReceipt(BaseModel):
    loan_id: int
    tracking_code: str
    borrower_ids: List[int]
    borrowed_date: date
    due_date: date
    is_group: bool = False

    class Config:
        from_attributes = True

class ReturnReceipt(BaseModel):
    loan_id: int
    tracking_code: str
    fine_amount: Decimal
    fine_ids: List[int] = []
    overdue_days: int = 0
    is_lost: bool = False
    fine_overridden: bool = False
    theft_case_id: Optional[int] = None
    accused_loan_id: Optional[int] = None
    theft_fine_amount: Optional[Decimal] = None

    class Config:
        from_attributes = True

class FoundReceipt(BaseModel):
    loan_id: Optional[int] = None
    tracking_code: str
    cleared_fine_ids: List[int] = []

    class Config:
        from_attributes = True
