from kitabu.schemas.book_copy import Copy
from kitabu.schemas.loan import Loan, IssueReceipt, ReturnReceipt, FoundReceipt
from kitabu.schemas.fine import Fine, FineSummary
from kitabu.schemas.theft import TheftCase

__all__ = [
    "Copy", "Loan", "IssueReceipt", "ReturnReceipt", "FoundReceipt",
    "Fine", "FineSummary", "TheftCase",
]
