"""Base repository classes with common session handling."""

import asyncio
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ...config.logging import get_logger
from ...services.alerts.exceptions import RepositoryError
from ..database import get_session_factory, get_session_sync

logger = get_logger(__name__)


class BaseRepository:
    """Base repository class providing common session management."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session or get_session_sync()
        self._external_session = session is not None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._external_session:
            self.session.close()


class ThreadedRepository:
    """
    Base for repositories exposed to the event loop.

    Every call opens its own session in a worker thread via
    ``asyncio.to_thread``; SQLAlchemy failures surface as ``RepositoryError``.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def _run(
        self, operation: str, work: Callable[..., Any], *args: Any
    ) -> Any:
        try:
            return await asyncio.to_thread(self._in_session, work, *args)
        except SQLAlchemyError as e:
            logger.error(
                "Repository operation failed",
                repository=type(self).__name__,
                operation=operation,
                error=str(e),
                exc_info=True,
            )
            raise RepositoryError(operation, str(e)) from e

    def _in_session(self, work: Callable[..., Any], *args: Any) -> Any:
        with self.session_factory() as session:
            try:
                return work(session, *args)
            except Exception:
                session.rollback()
                raise
