"""Portfolio store — the single in-process owner of user portfolios.

Concurrency model (one asyncio loop):
  - Each user has a lazily created ``asyncio.Lock``; every read-modify-write
    of that user's portfolio runs under it (``transact``). Unrelated users
    never wait on each other.
  - Portfolios are immutable values and entries are replaced, never edited,
    so ``snapshot()`` is a consistent copy without locking everyone.
  - ``persist()`` is serialized by a writer lock; the SQLite write happens
    in a worker thread on a snapshot taken under that lock.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, TypeVar

from ethsim.engine.errors import PersistenceError, UninitializedUser
from ethsim.observability.logger import get_logger
from ethsim.observability.metrics import metrics
from ethsim.storage.database import Database
from ethsim.storage.models import UserPortfolio

log = get_logger(__name__)

T = TypeVar("T")


class PortfolioStore:
    """In-memory portfolios backed by a ``Database`` snapshot."""

    def __init__(self, db: Database | None = None):
        self._db = db
        self._portfolios: dict[str, UserPortfolio] = {}
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._write_lock = asyncio.Lock()
        self._version = 0
        self._persisted_version = 0

    def load(self) -> int:
        """Replace in-memory state with the database snapshot."""
        if self._db is None:
            return 0
        self._portfolios = self._db.load_all()
        self._version = self._persisted_version = 0
        return len(self._portfolios)

    # ── Reads ────────────────────────────────────────────────────────

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._portfolios

    def __len__(self) -> int:
        return len(self._portfolios)

    def get(self, user_id: str) -> UserPortfolio | None:
        return self._portfolios.get(user_id)

    def require(self, user_id: str) -> UserPortfolio:
        portfolio = self._portfolios.get(user_id)
        if portfolio is None:
            raise UninitializedUser(user_id)
        return portfolio

    def snapshot(self) -> dict[str, UserPortfolio]:
        return dict(self._portfolios)

    @property
    def dirty(self) -> bool:
        """True when memory holds changes the database has not seen."""
        return self._version != self._persisted_version

    # ── Writes ───────────────────────────────────────────────────────

    def lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def locked(self, user_id: str) -> AsyncIterator[None]:
        async with self.lock_for(user_id):
            yield

    def _replace(self, portfolio: UserPortfolio) -> None:
        self._portfolios[portfolio.user_id] = portfolio
        self._version += 1

    async def create(self, portfolio: UserPortfolio) -> tuple[UserPortfolio, bool]:
        """Add ``portfolio`` unless the user already has one.

        Returns the stored portfolio and whether it was created.
        """
        async with self.locked(portfolio.user_id):
            existing = self._portfolios.get(portfolio.user_id)
            if existing is not None:
                return existing, False
            self._replace(portfolio)
            log.info("portfolio_store.created", user_id=portfolio.user_id)
            return portfolio, True

    async def transact(
        self,
        user_id: str,
        fn: Callable[[UserPortfolio], tuple[UserPortfolio, T]],
    ) -> tuple[UserPortfolio, T]:
        """Run ``fn`` on the user's current portfolio under the user lock.

        ``fn`` returns ``(new_portfolio, result)``; the new portfolio
        replaces the old one only if ``fn`` returns normally, so a raising
        ``fn`` leaves the store untouched.
        """
        async with self.locked(user_id):
            current = self.require(user_id)
            updated, result = fn(current)
            self._replace(updated)
            return updated, result

    async def persist(self) -> bool:
        """Write the full snapshot once. Returns True if a write happened.

        Raises PersistenceError; memory stays authoritative and the next
        call retries the write.
        """
        if self._db is None:
            return False
        async with self._write_lock:
            version = self._version
            snapshot = dict(self._portfolios)
            try:
                await asyncio.to_thread(self._db.save_all, snapshot)
            except PersistenceError:
                metrics.incr("persistence.failures")
                raise
            self._persisted_version = max(self._persisted_version, version)
            metrics.incr("persistence.writes")
            log.debug("portfolio_store.persisted", users=len(snapshot), version=version)
            return True
