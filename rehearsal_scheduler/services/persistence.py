"""
Persistence collaborator.

Defines the storage interface the scheduling service talks to, and the
SQLAlchemy implementation of it.

The interface is deliberately small:
- get / query / upsert / delete for entities
- with_exclusive(lock_key, fn) for the validate-then-persist critical section
"""

import logging
import threading
from abc import abstractmethod
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence, TypeVar, Union

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rehearsal_scheduler.config import Settings, get_settings
from rehearsal_scheduler.domain.errors import SeriesCommitFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

LockKey = Union[str, Iterable[str]]


class Persistence(Protocol):
    """
    Protocol for storage backends.

    Implementations:
    - SQLAlchemyPersistence: Uses a SQLAlchemy session (SQLite or PostgreSQL)
    """

    @abstractmethod
    def get(self, entity_type: type[T], entity_id: Any) -> Optional[T]:
        """
        Get an entity by primary key.

        Returns:
            Entity or None if not found (or soft-deleted)
        """
        ...

    @abstractmethod
    def query(
        self,
        entity_type: type[T],
        *criteria,
        order_by: Any = None,
        limit: Optional[int] = None,
    ) -> Sequence[T]:
        """
        Query entities by equality/range predicates.

        Args:
            entity_type: Model class
            criteria: SQLAlchemy column expressions, combined with AND
            order_by: Column or list of columns
            limit: Maximum rows

        Returns:
            Matching entities (soft-deleted rows excluded)
        """
        ...

    @abstractmethod
    def upsert(self, entity: T) -> T:
        """Insert or update an entity."""
        ...

    @abstractmethod
    def refresh(self, entity: T) -> T:
        """Reload an entity's state from storage, discarding cached values."""
        ...

    @abstractmethod
    def delete(self, entity_type: type, entity_id: Any) -> bool:
        """
        Delete an entity by primary key.

        Returns:
            True if something was deleted
        """
        ...

    @abstractmethod
    def with_exclusive(
        self,
        lock_key: LockKey,
        fn: Callable[[], T],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run fn while holding the named lock(s), as one unit of work.

        Every write made by fn is kept if fn returns and discarded if it
        raises. Locks are always released.

        Raises:
            SeriesCommitFailed: If a lock cannot be acquired in time or the
                writes cannot be committed
        """
        ...


class LockRegistry:
    """Process-wide named locks."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


_default_registry = LockRegistry()


def _normalize_keys(lock_key: LockKey) -> list[str]:
    keys = [lock_key] if isinstance(lock_key, str) else list(lock_key)
    # Fixed acquisition order prevents lock-order deadlocks between commits
    return sorted(set(keys))


class SQLAlchemyPersistence:
    """
    Persistence backed by a SQLAlchemy session.

    Outside with_exclusive() every upsert/delete commits immediately.
    Inside it, writes are only flushed and the whole block commits or rolls
    back together.

    On PostgreSQL, with_exclusive() also takes transaction-scoped advisory
    locks so that separate processes are serialized too.
    """

    def __init__(
        self,
        session: Session,
        lock_timeout: float = 5.0,
        locks: Optional[LockRegistry] = None,
    ):
        self.session = session
        self.lock_timeout = lock_timeout
        self._locks = locks or _default_registry
        self._depth = 0

    @classmethod
    def from_settings(
        cls,
        session: Session,
        settings: Optional[Settings] = None,
        locks: Optional[LockRegistry] = None,
    ) -> "SQLAlchemyPersistence":
        """Build a persistence layer whose lock wait comes from application settings."""
        settings = settings or get_settings()
        return cls(session, lock_timeout=settings.lock_timeout_seconds, locks=locks)

    @property
    def in_unit_of_work(self) -> bool:
        return self._depth > 0

    def _finish_write(self) -> None:
        if self.in_unit_of_work:
            self.session.flush()
            return
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def get(self, entity_type: type[T], entity_id: Any) -> Optional[T]:
        if entity_id is None:
            return None
        entity = self.session.get(entity_type, entity_id)
        if entity is not None and getattr(entity, "deleted_at", None) is not None:
            return None
        return entity

    def query(
        self,
        entity_type: type[T],
        *criteria,
        order_by: Any = None,
        limit: Optional[int] = None,
    ) -> Sequence[T]:
        stmt = select(entity_type)
        if criteria:
            stmt = stmt.where(*criteria)
        if hasattr(entity_type, "deleted_at"):
            stmt = stmt.where(entity_type.deleted_at.is_(None))
        if order_by is not None:
            if isinstance(order_by, (list, tuple)):
                stmt = stmt.order_by(*order_by)
            else:
                stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def refresh(self, entity: T) -> T:
        self.session.refresh(entity)
        return entity

    def upsert(self, entity: T) -> T:
        self.session.add(entity)
        self._finish_write()
        return entity

    def upsert_all(self, entities: Iterable[T]) -> list[T]:
        entities = list(entities)
        self.session.add_all(entities)
        self._finish_write()
        return entities

    def delete(self, entity_type: type, entity_id: Any) -> bool:
        entity = self.session.get(entity_type, entity_id)
        if entity is None:
            return False
        self.session.delete(entity)
        self._finish_write()
        return True

    def with_exclusive(
        self,
        lock_key: LockKey,
        fn: Callable[[], T],
        timeout: Optional[float] = None,
    ) -> T:
        keys = _normalize_keys(lock_key)
        wait = self.lock_timeout if timeout is None else timeout

        acquired: list[threading.Lock] = []
        try:
            for key in keys:
                lock = self._locks.get(key)
                if not lock.acquire(timeout=wait):
                    raise SeriesCommitFailed(f"Timed out waiting for scheduling lock '{key}'")
                acquired.append(lock)
            logger.debug(f"Acquired scheduling locks {keys}")
            return self._run_unit_of_work(keys, fn)
        finally:
            for lock in reversed(acquired):
                lock.release()

    def _run_unit_of_work(self, keys: list[str], fn: Callable[[], T]) -> T:
        outermost = self._depth == 0
        self._depth += 1
        try:
            if outermost and self.session.get_bind().dialect.name == "postgresql":
                for key in keys:
                    self.session.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                        {"key": key},
                    )
            result = fn()
            if outermost:
                self.session.commit()
            return result
        except SQLAlchemyError as e:
            if outermost:
                self.session.rollback()
            raise SeriesCommitFailed(f"Persistence failure: {e}", original_error=e)
        except Exception:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1
