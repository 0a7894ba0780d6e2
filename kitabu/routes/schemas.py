from pydantic import BaseModel
from typing import List, Literal, Optional
from datetime import date
from decimal import Decimal
from kitabu.core.models import Condition

class IssueRequest(BaseModel):
    tracking_code: str
    borrower_id: int
    due_date: Optional[date] = None
    condition_at_issue: Optional[Condition] = None
    borrowed_date: Optional[date] = None
    allow_inactive: bool = False
    notes: Optional[str] = None

class GroupIssueRequest(BaseModel):
    tracking_code: str
    borrower_ids: List[int]
    due_date: Optional[date] = None
    condition_at_issue: Optional[Condition] = None
    borrowed_date: Optional[date] = None
    allow_inactive: bool = False
    notes: Optional[str] = None

class ReturnRequest(BaseModel):
    tracking_code: str
    condition_at_return: Condition = Condition.GOOD
    is_lost: bool = False
    return_notes: Optional[str] = None
    fine_override: Optional[Decimal] = None
    expected_loan_id: Optional[int] = None
    borrower_id: Optional[int] = None
    resolve_theft: bool = True
    returned_date: Optional[date] = None

class GroupReturnRequest(BaseModel):
    tracking_code: str
    condition_at_return: Condition = Condition.GOOD
    is_lost: bool = False
    return_notes: Optional[str] = None
    fine_override: Optional[Decimal] = None
    returned_date: Optional[date] = None

class LostRequest(BaseModel):
    notes: Optional[str] = None
    fine_override: Optional[Decimal] = None
    returned_date: Optional[date] = None

class FoundRequest(BaseModel):
    tracking_code: str
    condition: Condition = Condition.GOOD
    confirm_recovery: bool = True

class TheftResolutionRequest(BaseModel):
    action: Literal["collect", "waive"]
    amount: Optional[Decimal] = None

class NotesRequest(BaseModel):
    notes: Optional[str] = None

class PaymentRequest(BaseModel):
    amount: Optional[Decimal] = None

class ClearRequest(BaseModel):
    reason: str
