# clinic_flow/database.py

import threading
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import SETTINGS

SQLALCHEMY_DATABASE_URL = SETTINGS.database_url

connect_args = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db):
    """
    Unit of work over a session.

    The outermost scope commits on success and rolls back on any exception.
    Inner scopes join the outer one, so a flow built from several mutating
    operations commits exactly once.
    """
    depth = db.info.get("tx_depth", 0)
    db.info["tx_depth"] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except BaseException:
        if depth == 0:
            db.rollback()
        raise
    finally:
        db.info["tx_depth"] = depth


_locks = {}
_locks_guard = threading.Lock()


def clinic_lock(key: str) -> threading.RLock:
    """Process-wide re-entrant lock for a serialization scope (clinic, doctor...)."""
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock
