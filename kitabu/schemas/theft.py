from pydantic import BaseModel
from typing import Optional
from datetime import date
from kitabu.core.models import TheftStatus

class TheftCase(BaseModel):
    id: int
    accused_borrower_id: int
    victim_borrower_id: Optional[int] = None
    victim_loan_id: int
    accused_loan_id: int
    fine_id: int
    expected_tracking_code: str
    returned_tracking_code: str
    status: TheftStatus
    resolution_notes: Optional[str] = None
    reported_date: date
    resolved_date: Optional[date] = None

    class Config:
        from_attributes = True
