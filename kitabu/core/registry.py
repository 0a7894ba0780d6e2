#!/usr/bin/env python

"""
    Copy registry for Kitabu: the single source of truth for whether a
    physical copy can be lent right now.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from typing import Optional
from kitabu.core.models import Book, BookCopy, Condition, CopyStatus
from kitabu.core.exceptions import (
    AlreadyBorrowedError,
    CopyNotFoundError,
    CopyNotLostError,
    NotBorrowedError,
)
from kitabu.core.utils import make_tracking_code, normalize_tracking_code

logger = logging.getLogger(__name__)


class CopyRegistry:

    def __init__(self, db):
        self.db = db

    def lookup(self, tracking_code: str) -> BookCopy:
        code = normalize_tracking_code(tracking_code)
        copy = self.db.query(BookCopy).filter(BookCopy.tracking_code == code).first()
        if copy is None:
            raise CopyNotFoundError(f"No copy with tracking code {code}.")
        return copy

    def find(self, tracking_code: str) -> Optional[BookCopy]:
        try:
            return self.lookup(tracking_code)
        except CopyNotFoundError:
            return None

    def add_copy(self, book: Book, copy_number: int, year: int,
                 condition: Condition = Condition.GOOD) -> BookCopy:
        copy = BookCopy(
            book=book,
            copy_number=copy_number,
            tracking_code=make_tracking_code(book.book_code, copy_number, year),
            status=CopyStatus.AVAILABLE,
            condition=condition,
        )
        self.db.add(copy)
        self.db.flush()
        return copy

    def _transition(self, copy, expected, values):
        """Compare-and-swap on status: only one concurrent caller can move
        a copy out of `expected`.
        """
        updated = self.db.query(BookCopy).filter(
            BookCopy.id == copy.id,
            BookCopy.status.in_(expected)
        ).update(values, synchronize_session=False)
        self.db.expire(copy)
        return updated == 1

    def mark_borrowed(self, tracking_code: str, loan_id: int) -> BookCopy:
        copy = self.lookup(tracking_code)
        swapped = self._transition(copy, [CopyStatus.AVAILABLE], {
            BookCopy.status: CopyStatus.BORROWED,
            BookCopy.current_loan_id: loan_id,
        })
        if not swapped:
            raise AlreadyBorrowedError(f"Copy {copy.tracking_code} is {copy.status.value}.")
        logger.info(f"Copy {copy.tracking_code} borrowed on loan {loan_id}")
        return copy

    def mark_available(self, tracking_code: str, condition_at_return: Condition) -> BookCopy:
        copy = self.lookup(tracking_code)
        swapped = self._transition(copy, [CopyStatus.BORROWED], {
            BookCopy.status: CopyStatus.AVAILABLE,
            BookCopy.condition: condition_at_return,
            BookCopy.current_loan_id: None,
        })
        if not swapped:
            raise NotBorrowedError(f"Copy {copy.tracking_code} is {copy.status.value}, not borrowed.")
        logger.info(f"Copy {copy.tracking_code} available ({condition_at_return.value})")
        return copy

    def mark_lost(self, tracking_code: str) -> BookCopy:
        copy = self.lookup(tracking_code)
        self._transition(copy, [CopyStatus.AVAILABLE, CopyStatus.BORROWED], {
            BookCopy.status: CopyStatus.LOST,
            BookCopy.current_loan_id: None,
        })
        logger.info(f"Copy {copy.tracking_code} marked lost")
        return copy

    def mark_found(self, tracking_code: str, condition: Condition = Condition.GOOD) -> BookCopy:
        copy = self.lookup(tracking_code)
        swapped = self._transition(copy, [CopyStatus.LOST], {
            BookCopy.status: CopyStatus.AVAILABLE,
            BookCopy.condition: condition,
        })
        if not swapped:
            raise CopyNotLostError(f"Copy {copy.tracking_code} is {copy.status.value}, not lost.")
        logger.info(f"Lost copy {copy.tracking_code} recovered")
        return copy
