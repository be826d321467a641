from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import DATABASE_URL, DB_ECHO

logger = logging.getLogger(__name__)

engine = create_engine(
    DATABASE_URL,
    echo=DB_ECHO,
    future=True,
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """ORM base for every model."""
    pass


def init_db() -> None:
    """Create the tables if they do not exist."""
    # models must be imported so they register on Base.metadata
    from . import auth_models, models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.debug("Tables ensured on %s", engine.url)


def drop_db() -> None:
    from . import auth_models, models  # noqa: F401

    Base.metadata.drop_all(bind=engine)


@contextmanager
def db_session() -> Iterator[Session]:
    """
    Session context manager:
    - commit if everything went fine
    - rollback on exceptions
    - always close
    """
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
