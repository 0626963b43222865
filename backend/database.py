import logging
import uuid
from threading import RLock
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.core import config

logger = logging.getLogger(__name__)

Base = declarative_base()


def generate_id() -> str:
    return uuid.uuid4().hex


class StoreManager:
    """Owns the engine and session factory of the credential and document store.

    The engine is created on first use and checks connections before handing
    them out, so a dropped database connection is re-established on demand.
    One manager is built per process (see ``backend.main.create_app``) and
    reached by handlers through ``get_db``.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self.echo = echo
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None
        self._lock = RLock()
        self._schema_checked = False

    def _create_engine(self) -> Engine:
        kwargs = {'echo': self.echo, 'pool_pre_ping': True}
        if self.database_url.startswith('sqlite'):
            kwargs['connect_args'] = {'check_same_thread': False}
            if ':memory:' in self.database_url or self.database_url.rstrip('/') == 'sqlite:':
                kwargs['poolclass'] = StaticPool
        logger.info('Creating database engine for %s', self.database_url.split('@')[-1])
        return create_engine(self.database_url, **kwargs)

    def _ensure_engine(self) -> Engine:
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._create_engine()
                    self._session_factory = sessionmaker(
                        autocommit=False,
                        autoflush=False,
                        bind=self._engine,
                    )
        return self._engine

    @property
    def engine(self) -> Engine:
        return self._ensure_engine()

    def session(self) -> Session:
        self._ensure_engine()
        return self._session_factory()

    def ensure_schema(self) -> None:
        if self._schema_checked:
            return

        with self._lock:
            if self._schema_checked:
                return

            # model modules register their tables on Base.metadata when imported
            from backend.models import (  # noqa: F401
                competition,
                course,
                live_class,
                mentor,
                mock_test,
                notebook,
                payment,
                school,
                topic,
                user,
            )

            Base.metadata.create_all(bind=self.engine)
            self._schema_checked = True

    def dispose(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._schema_checked = False


def get_store(request: Request) -> StoreManager:
    return request.app.state.store


def get_db(request: Request) -> Iterator[Session]:
    db = get_store(request).session()
    try:
        yield db
    finally:
        db.close()
