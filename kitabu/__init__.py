#!/usr/bin/env python

"""
    Kitabu, a school library circulation and fine engine.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

__version__ = '0.1.0'
