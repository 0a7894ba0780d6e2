#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_concurrency
    ~~~~~~~~~~~~~~~~~~~~~~

    Simultaneous requests for the same copy from separate sessions.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import datetime
import threading
import time
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from kitabu.core.circulation import CirculationEngine, CopyLocks
from kitabu.core.db import Base
from kitabu.core.exceptions import CopyUnavailableError, LoanNotActiveError
from kitabu.core.fines import FineSchedule
from kitabu.core.models import Book, Borrower, BookCopy, CopyStatus, Loan, LoanStatus
from kitabu.core.registry import CopyRegistry

TODAY = datetime.date(2024, 1, 1)


@pytest.fixture
def file_db(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'kitabu.db'}",
                           connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    book = Book(title="Kifo Kisimani", book_code="KK")
    session.add(book)
    session.flush()
    CopyRegistry(session).add_copy(book, 1, 2025)
    session.add_all([Borrower(name=f"Student {i}", reference_number=f"ADM{i}")
                     for i in range(8)])
    session.commit()
    session.close()
    yield SessionLocal
    engine.dispose()


def _race(SessionLocal, action, workers=8, locks=None):
    if locks is None:
        locks = CopyLocks()
    barrier = threading.Barrier(workers)
    outcomes = []

    def run(i):
        session = SessionLocal()
        engine = CirculationEngine(session, schedule=FineSchedule(), clock=lambda: TODAY,
                                   locks=locks)
        barrier.wait()
        try:
            outcomes.append(action(engine, i))
        except Exception as e:
            outcomes.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


def test_simultaneous_issue_has_one_winner(file_db):
    locks = CopyLocks()
    outcomes = _race(file_db, lambda engine, i: engine.issue("KK/001/25", i + 1), locks=locks)
    assert len(locks) == 0

    errors = [o for o in outcomes if isinstance(o, Exception)]
    assert len(outcomes) - len(errors) == 1
    assert all(isinstance(e, CopyUnavailableError) for e in errors)

    session = file_db()
    assert session.query(Loan).filter(Loan.status == LoanStatus.ACTIVE).count() == 1
    assert session.query(BookCopy).one().status == CopyStatus.BORROWED
    session.close()


def test_simultaneous_return_closes_once(file_db):
    session = file_db()
    CirculationEngine(session, schedule=FineSchedule(), clock=lambda: TODAY,
                      locks=CopyLocks()).issue("KK/001/25", 1)
    session.close()

    outcomes = _race(file_db, lambda engine, i: engine.return_copy("KK/001/25"))

    errors = [o for o in outcomes if isinstance(o, Exception)]
    assert len(outcomes) - len(errors) == 1
    assert all(isinstance(e, LoanNotActiveError) for e in errors)

    session = file_db()
    assert session.query(Loan).filter(Loan.status == LoanStatus.RETURNED).count() == 1
    assert session.query(BookCopy).one().status == CopyStatus.AVAILABLE
    session.close()


def test_idle_copy_locks_are_released():
    locks = CopyLocks()
    with locks.hold("KK/002/25", "KK/001/25", "KK/001/25"):
        assert len(locks) == 2
    assert len(locks) == 0

    with pytest.raises(RuntimeError):
        with locks.hold("KK/001/25"):
            raise RuntimeError("boom")
    assert len(locks) == 0


def test_waiter_keeps_lock_alive():
    locks = CopyLocks()
    entered = threading.Event()

    def wait_for_copy():
        with locks.hold("KK/001/25"):
            entered.set()

    with locks.hold("KK/001/25"):
        waiter = threading.Thread(target=wait_for_copy)
        waiter.start()
        # Let the waiter register before the holder leaves
        for _ in range(100):
            if locks._locks["KK/001/25"][1] == 2:
                break
            time.sleep(0.01)
    waiter.join(timeout=5)
    assert entered.is_set()
    assert len(locks) == 0
