#!/usr/bin/env python
"""
    Book copy schema for Kitabu.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from pydantic import BaseModel
from typing import Optional
from kitabu.core.models import Condition, CopyStatus

class Copy(BaseModel):

    id: int
    book_id: int
    copy_number: int
    tracking_code: str
    status: CopyStatus
    condition: Condition
    current_loan_id: Optional[int] = None

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": 1,
                "book_id": 1,
                "copy_number": 1,
                "tracking_code": "BK1/001/25",
                "status": "available",
                "condition": "good",
                "current_loan_id": None
            }
        }
