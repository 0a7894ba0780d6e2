#!/usr/bin/env python

"""
    Circulation models for Kitabu,
    including books, physical copies, borrowers, loans, fines
    and theft cases.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Numeric, Date, DateTime, Text,
    ForeignKey, Table, UniqueConstraint, Enum as SQLAlchemyEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from kitabu.core.db import Base
import enum

class CopyStatus(enum.Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    LOST = "lost"

class Condition(enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DAMAGED = "damaged"

class LoanStatus(enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"

class BorrowerKind(enum.Enum):
    STUDENT = "student"
    STAFF = "staff"

class FineType(enum.Enum):
    OVERDUE = "overdue"
    CONDITION_FAIR = "condition_fair"
    CONDITION_POOR = "condition_poor"
    DAMAGED = "damaged"
    LOST_BOOK = "lost_book"
    THEFT = "theft"

class FineStatus(enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    CLEARED = "cleared"

class TheftStatus(enum.Enum):
    REPORTED = "reported"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    CLOSED = "closed"

def _enum(cls):
    return SQLAlchemyEnum(cls, values_callable=lambda e: [m.value for m in e])

class Book(Base):
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    author = Column(String)
    book_code = Column(String(4), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())

    copies = relationship('BookCopy', back_populates='book', cascade='all, delete-orphan')

class BookCopy(Base):
    __tablename__ = 'book_copies'
    __table_args__ = (UniqueConstraint('book_id', 'copy_number'),)

    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), nullable=False)
    copy_number = Column(Integer, nullable=False)
    tracking_code = Column(String(16), unique=True, nullable=False, index=True)
    status = Column(_enum(CopyStatus), default=CopyStatus.AVAILABLE, nullable=False)
    condition = Column(_enum(Condition), default=Condition.GOOD, nullable=False)
    # Set only while borrowed; no FK since loans already reference copies
    current_loan_id = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    book = relationship('Book', back_populates='copies')
    loans = relationship('Loan', back_populates='copy')

    @hybrid_property
    def is_loanable(self):
        return self.status == CopyStatus.AVAILABLE

class Borrower(Base):
    __tablename__ = 'borrowers'

    id = Column(Integer, primary_key=True)
    kind = Column(_enum(BorrowerKind), default=BorrowerKind.STUDENT, nullable=False)
    name = Column(String, nullable=False)
    # admission number for students, staff number for staff
    reference_number = Column(String, unique=True)
    class_grade = Column(String)
    active = Column(Boolean, default=True, nullable=False)

    fines = relationship('Fine', back_populates='borrower')

    @property
    def is_student(self):
        return self.kind == BorrowerKind.STUDENT

loan_members = Table(
    'loan_members',
    Base.metadata,
    Column('loan_id', Integer, ForeignKey('loans.id', ondelete='CASCADE'), primary_key=True),
    Column('borrower_id', Integer, ForeignKey('borrowers.id', ondelete='CASCADE'), primary_key=True),
)

class Loan(Base):
    """A single circulation record. Rows are either IndividualLoan or
    GroupLoan, discriminated by `kind`.
    """
    __tablename__ = 'loans'

    id = Column(Integer, primary_key=True)
    kind = Column(String(16), nullable=False)
    copy_id = Column(Integer, ForeignKey('book_copies.id'), nullable=False, index=True)
    borrowed_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    returned_date = Column(Date, nullable=True)
    status = Column(_enum(LoanStatus), default=LoanStatus.ACTIVE, nullable=False, index=True)
    condition_at_issue = Column(_enum(Condition), default=Condition.GOOD, nullable=False)
    condition_at_return = Column(_enum(Condition), nullable=True)
    fine_amount = Column(Numeric(10, 2), default=0, nullable=False)
    fine_overridden = Column(Boolean, default=False, nullable=False)
    fine_paid = Column(Boolean, default=False, nullable=False)
    is_lost = Column(Boolean, default=False, nullable=False)
    notes = Column(Text)
    return_notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=func.now())

    copy = relationship('BookCopy', back_populates='loans')
    fines = relationship('Fine', back_populates='loan')

    __mapper_args__ = {'polymorphic_on': kind, 'polymorphic_identity': 'loan'}

    @hybrid_property
    def is_active(self):
        return self.status == LoanStatus.ACTIVE

    @property
    def tracking_code(self):
        return self.copy.tracking_code

    @property
    def is_group(self):
        return False

    @property
    def borrower_ids(self):
        return [b.id for b in self.borrowers]

    def is_overdue(self, as_of):
        return self.status == LoanStatus.ACTIVE and as_of > self.due_date

class IndividualLoan(Loan):
    borrower_id = Column(Integer, ForeignKey('borrowers.id'), nullable=True, index=True)
    borrower = relationship('Borrower')

    __mapper_args__ = {'polymorphic_identity': 'individual'}

    @property
    def borrowers(self):
        return [self.borrower]

class GroupLoan(Loan):
    members = relationship('Borrower', secondary=loan_members, order_by='Borrower.id')

    __mapper_args__ = {'polymorphic_identity': 'group'}

    @property
    def borrowers(self):
        return list(self.members)

    @property
    def is_group(self):
        return True

class Fine(Base):
    __tablename__ = 'fines'

    id = Column(Integer, primary_key=True)
    borrower_id = Column(Integer, ForeignKey('borrowers.id'), nullable=False, index=True)
    loan_id = Column(Integer, ForeignKey('loans.id'), nullable=True)
    fine_type = Column(_enum(FineType), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=True)
    status = Column(_enum(FineStatus), default=FineStatus.UNPAID, nullable=False)
    description = Column(Text)
    cleared_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    borrower = relationship('Borrower', back_populates='fines')
    loan = relationship('Loan', back_populates='fines')

    @hybrid_property
    def is_unpaid(self):
        return self.status == FineStatus.UNPAID

class TheftCase(Base):
    __tablename__ = 'theft_cases'

    id = Column(Integer, primary_key=True)
    accused_borrower_id = Column(Integer, ForeignKey('borrowers.id'), nullable=False)
    # null when the stolen copy was on a group loan
    victim_borrower_id = Column(Integer, ForeignKey('borrowers.id'), nullable=True)
    victim_loan_id = Column(Integer, ForeignKey('loans.id'), nullable=False)
    accused_loan_id = Column(Integer, ForeignKey('loans.id'), nullable=False)
    fine_id = Column(Integer, ForeignKey('fines.id'), nullable=False)
    expected_tracking_code = Column(String(16), nullable=False)
    returned_tracking_code = Column(String(16), nullable=False)
    status = Column(_enum(TheftStatus), default=TheftStatus.REPORTED, nullable=False)
    resolution_notes = Column(Text)
    reported_date = Column(Date, nullable=False)
    resolved_date = Column(Date, nullable=True)

    accused = relationship('Borrower', foreign_keys=[accused_borrower_id])
    victim = relationship('Borrower', foreign_keys=[victim_borrower_id])
    victim_loan = relationship('Loan', foreign_keys=[victim_loan_id])
    accused_loan = relationship('Loan', foreign_keys=[accused_loan_id])
    fine = relationship('Fine')

    @property
    def is_open(self):
        return self.status in (TheftStatus.REPORTED, TheftStatus.INVESTIGATING)

class FineSetting(Base):
    __tablename__ = 'fine_settings'

    id = Column(Integer, primary_key=True)
    fine_type = Column(_enum(FineType), unique=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    description = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())
