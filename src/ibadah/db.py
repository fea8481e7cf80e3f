"""
SQLAlchemy engine and session handling.

A ``Database`` is built explicitly by the caller and passed to whatever needs
storage; nothing in the package holds a module-level engine.
"""
from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


class Database:
    def __init__(self, url: str, *, echo: bool = False) -> None:
        self._url = url
        self._logger = logging.getLogger(self.__class__.__name__)
        self._engine = self._create_engine(url, echo)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        # Importing the models registers their tables on Base.metadata.
        from ibadah import models as _models  # noqa: F401

        Base.metadata.create_all(self._engine)
        self._logger.info("Database schema ensured: %s", self._url.split("?")[0].split("@")[-1])

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Single unit of work. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory SQLite lives per connection; share one across sessions.
            return create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, echo=echo, pool_pre_ping=True)
