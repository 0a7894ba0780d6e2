import datetime
import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from kitabu.core.exceptions import InvalidTrackingCodeError

logger = logging.getLogger(__name__)

# book code / copy number / two-digit year, e.g. BK1/001/25
TRACKING_CODE_RE = re.compile(r"^[A-Z0-9]{2,4}/\d{3}/\d{2}$")
CENTS = Decimal("0.01")

def normalize_tracking_code(code: str) -> str:
    """Strips and upper-cases a scanned or typed code, then validates it.

    Raises InvalidTrackingCodeError when the result does not match
    PREFIX/NNN/YY.
    """
    if not isinstance(code, str):
        raise InvalidTrackingCodeError(f"Tracking code must be a string, got {type(code).__name__}.")
    normalized = code.strip().upper()
    if not TRACKING_CODE_RE.match(normalized):
        raise InvalidTrackingCodeError(
            f"Invalid tracking code '{code}'. Expected PREFIX/NUMBER/YEAR (e.g. ACC/001/24).")
    return normalized

def make_tracking_code(book_code: str, copy_number: int, year: int) -> str:
    return normalize_tracking_code(f"{book_code}/{copy_number:03d}/{year % 100:02d}")

def overdue_days(due_date: datetime.date, returned_date: datetime.date) -> int:
    return max(0, (returned_date - due_date).days)

def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)

def split_evenly(total: Decimal, parts: int):
    """Splits an amount into `parts` shares that sum exactly to `total`;
    the leftover cent(s) go to the first share.
    """
    total = to_money(total)
    share = (total / parts).quantize(CENTS, rounding=ROUND_HALF_UP)
    if share * parts > total:
        share -= CENTS
    shares = [share] * parts
    shares[0] += total - share * parts
    return shares
