import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from kitabu.configs import DB_URI, DEBUG
from kitabu.core.exceptions import DatabaseInsertError

logger = logging.getLogger(__name__)

# In-memory SQLite must share one connection across threads
engine_kwargs = {'echo': DEBUG}
if DB_URI.startswith('sqlite'):
    engine_kwargs['connect_args'] = {'check_same_thread': False}
    if ':memory:' in DB_URI:
        engine_kwargs['poolclass'] = StaticPool
else:
    engine_kwargs['client_encoding'] = 'utf8'
engine = create_engine(DB_URI, **engine_kwargs)
session = scoped_session(sessionmaker(
    bind=engine, autocommit=False, autoflush=False))

Base = declarative_base()

def init(bind=engine):
    try:
        Base.metadata.create_all(bind=bind)
        return session
    except SQLAlchemyError as e:
        logger.warning(f"[WARNING] Database initialization failed: {e}")

@contextmanager
def transaction(db):
    """Commits on success; rolls back everything written inside the block
    when any exception escapes, so callers never observe partial writes.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Rolled back transaction: {e}")
        raise DatabaseInsertError(f"Failed to persist changes: {str(e)}.") from e
    except Exception as e:
        db.rollback()
        logger.warning(f"Rolled back transaction: {e!r}")
        raise
