import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, TypeVar

from sqlalchemy.orm import Session, sessionmaker

import models
from database import DEFAULT_DATABASE_URL, make_engine
from live import InvalidationTracker
from logger import get_logger

T = TypeVar("T")

log = get_logger(__name__)


class StoreClosed(Exception):
    """The store was closed and accepts no more work."""


class Store:
    """
    Handle on the record store.

    Owns the engine, the session factory, the single worker thread every
    storage call runs on and the invalidation tracker used by live queries.
    Build one per database and pass it to whatever needs storage.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        self.database_url = database_url
        self.engine = make_engine(database_url, echo=echo)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)
        self.tracker = InvalidationTracker(models.Base.metadata)
        self.tracker.install(self.SessionLocal)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-worker")
        self._closed = False

    @classmethod
    def from_settings(cls, settings) -> "Store":
        return cls(settings.database_url, echo=settings.sql_echo)

    @property
    def closed(self) -> bool:
        return self._closed

    def create_all(self) -> None:
        models.Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    async def run(self, work: Callable[[Session], T]) -> T:
        """Run ``work`` with a fresh session on the worker thread and await its result."""
        if self._closed:
            raise StoreClosed("record store is closed")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, self._in_session, work)
        except RuntimeError as exc:
            if self._closed:
                raise StoreClosed("record store is closed") from exc
            raise

    def _in_session(self, work: Callable[[Session], T]) -> T:
        with self.SessionLocal() as db:
            return work(db)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        self.engine.dispose()
        log.info("store_closed", database_url=self.engine.url.render_as_string(hide_password=True))
