# costbasis/db/session.py
"""Database engine for the wallet/transaction store."""

import os
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

# Get database URL from environment, default to local SQLite
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./costbasis.db")


def _make_engine(url: str) -> Engine:
    if url.startswith("sqlite:///") and ":memory:" not in url:
        Path(url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        echo=False,
    )


# The engine only reads; transactions are written by whatever imports them
engine = _make_engine(DATABASE_URL)


def create_db_and_tables(bind: Optional[Engine] = None):
    """Create all tables if they don't exist."""
    SQLModel.metadata.create_all(bind if bind is not None else engine)


def get_session() -> Session:
    """Get a new database session on the configured engine."""
    return Session(engine)
