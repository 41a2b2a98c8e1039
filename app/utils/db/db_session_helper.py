"""Session context manager for code running outside a request (tasks, background work)."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from app.db import db_manager


@contextmanager
def db_session() -> Iterator[Session]:
    db = db_manager.SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
