#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.conftest
    ~~~~~~~~~~~~~~

    Shared fixtures: an in-memory database per test, a settable clock
    and small factories for books, copies and borrowers.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import os

# Set TESTING before any kitabu imports so no postgres engine is built
os.environ["TESTING"] = "true"

import datetime
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from kitabu.core.db import Base
from kitabu.core.models import Book, Borrower, BorrowerKind, Condition
from kitabu.core.registry import CopyRegistry
from kitabu.core.circulation import CirculationEngine, CopyLocks
from kitabu.core.fines import FineSchedule


class Clock:
    """Callable clock whose date tests can move forward."""

    def __init__(self, today):
        self.today = today

    def __call__(self):
        return self.today

    def advance(self, days):
        self.today += datetime.timedelta(days=days)


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def clock():
    return Clock(datetime.date(2024, 1, 1))


@pytest.fixture
def engine(db_session, clock):
    return CirculationEngine(db_session, schedule=FineSchedule(), clock=clock,
                             locks=CopyLocks())


@pytest.fixture
def make_copies(db_session):
    def _make(book_code="BK1", count=1, year=2025, title=None):
        registry = CopyRegistry(db_session)
        book = Book(title=title or f"Book {book_code}", book_code=book_code)
        db_session.add(book)
        db_session.flush()
        copies = [registry.add_copy(book, n, year, Condition.GOOD)
                  for n in range(1, count + 1)]
        db_session.commit()
        return [c.tracking_code for c in copies]
    return _make


@pytest.fixture
def make_borrower(db_session):
    counter = {"n": 0}

    def _make(name=None, kind=BorrowerKind.STUDENT, active=True):
        counter["n"] += 1
        borrower = Borrower(
            name=name or f"Borrower {counter['n']}",
            kind=kind,
            reference_number=f"ADM{counter['n']:04d}",
            active=active,
        )
        db_session.add(borrower)
        db_session.commit()
        return borrower.id
    return _make
