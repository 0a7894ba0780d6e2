#!/usr/bin/env python

"""
    Core module for Kitabu: persistence, copy registry, loan ledger,
    fine schedule, theft tracking and the circulation engine.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from kitabu.core.db import Base, engine, session, init, transaction

__all__ = ["Base", "engine", "session", "init", "transaction"]
