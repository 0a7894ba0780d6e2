#!/usr/bin/env python

"""
    Configurations for Kitabu

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('KITABU_HOST', 'localhost')
PORT = int(os.environ.get('KITABU_PORT', 8080))
WORKERS = int(os.environ.get('KITABU_WORKERS', 1))
DEBUG = bool(int(os.environ.get('KITABU_DEBUG', 0)))
LOG_LEVEL = os.environ.get('KITABU_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('KITABU_SSL_CRT')
SSL_KEY = os.environ.get('KITABU_SSL_KEY')

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT
    SCHEME = 'https'

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'kitabu'),
}

# Database configuration
DB_URI = os.environ.get('KITABU_DB_URI') or (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

# Circulation policy
LOAN_DAYS = int(os.environ.get('KITABU_LOAN_DAYS', 14))
GROUP_FINE_SPLIT = os.environ.get('KITABU_GROUP_FINE_SPLIT', 'equal')

# Fine rates; unset or malformed values fall back to the schedule defaults
FINE_RATES = {
    'overdue': os.environ.get('KITABU_FINE_OVERDUE'),
    'condition_fair': os.environ.get('KITABU_FINE_CONDITION_FAIR'),
    'condition_poor': os.environ.get('KITABU_FINE_CONDITION_POOR'),
    'damaged': os.environ.get('KITABU_FINE_DAMAGED'),
    'lost_book': os.environ.get('KITABU_FINE_LOST_BOOK'),
    'theft': os.environ.get('KITABU_FINE_THEFT'),
}

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'LOG_LEVEL', 'OPTIONS', 'DB_URI',
    'DB_CONFIG', 'TESTING', 'LOAN_DAYS', 'GROUP_FINE_SPLIT', 'FINE_RATES'
]
