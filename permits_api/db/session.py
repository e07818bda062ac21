from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.base import Base

logger = logging.getLogger(__name__)


class DatabaseUnavailableError(RuntimeError):
    pass


class Database:
    """Owns the engine and session factory for one application instance."""

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        self.url = url
        self._engine_kwargs = engine_kwargs
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseUnavailableError("Database is not connected")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def connect(self) -> "Database":
        if self._engine is not None:
            return self

        kwargs: dict[str, Any] = {"pool_pre_ping": True, **self._engine_kwargs}
        if self.url.startswith("sqlite"):
            connect_args = dict(kwargs.pop("connect_args", {}) or {})
            connect_args.setdefault("check_same_thread", False)
            kwargs["connect_args"] = connect_args

        engine = create_engine(self.url, **kwargs)
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            engine.dispose()
            raise DatabaseUnavailableError(f"Database unreachable: {exc.__class__.__name__}") from exc

        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
        logger.info("database_connected dialect=%s", engine.dialect.name)
        return self

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("database_disposed")

    def new_session(self) -> Session:
        if self._session_factory is None:
            raise DatabaseUnavailableError("Database is not connected")
        return self._session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.new_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
