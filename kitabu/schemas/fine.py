from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from kitabu.core.models import FineStatus, FineType

class Fine(BaseModel):
    id: int
    borrower_id: int
    loan_id: Optional[int] = None
    fine_type: FineType
    amount: Decimal
    amount_paid: Optional[Decimal] = None
    status: FineStatus
    description: Optional[str] = None
    cleared_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class FineSummary(BaseModel):
    borrower_id: int
    outstanding: Decimal
    fines: List[Fine]
