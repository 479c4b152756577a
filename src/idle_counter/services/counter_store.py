"""Durable storage for the singleton counter.

The store is the single source of truth. Callers never receive a mutable
handle: reads return immutable :class:`CounterSnapshot` copies and every
write goes through :meth:`CounterStore.commit`, a compare-and-set keyed on
the snapshot's ``version``.
"""

from __future__ import annotations

import abc
import logging
import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from idle_counter.db.session import SessionLocal
from idle_counter.db.time import ensure_utc, utcnow
from idle_counter.models import SINGLETON_SLOT, CounterRecord
from idle_counter.services.errors import CommitConflictError, StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterSnapshot:
    """Immutable copy of the counter as committed by the store."""

    id: str
    value: int
    last_updated: datetime
    version: int

    def idle_for(self, now: datetime) -> float:
        """Return the number of seconds since the last committed change."""
        return (now - self.last_updated).total_seconds()


class CounterStore(abc.ABC):
    """Atomic access to the singleton counter record."""

    @abc.abstractmethod
    def read(self) -> CounterSnapshot:
        """Return the counter, creating it at zero when absent."""

    @abc.abstractmethod
    def commit(
        self, expected_version: int, new_value: int, new_timestamp: datetime
    ) -> CounterSnapshot:
        """Apply ``new_value`` if the record is still at ``expected_version``.

        Raises:
            CommitConflictError: another commit landed since the caller's read.
            StoreUnavailableError: the backing store could not be reached.
            ValueError: ``new_value`` is negative.
        """

    def ping(self) -> bool:
        """Return True if the store answers a read."""
        try:
            self.read()
        except StoreUnavailableError:
            return False
        return True


def _check_value(new_value: int) -> None:
    if new_value < 0:
        raise ValueError(f"counter value must be non-negative, got {new_value}")


class MemoryCounterStore(CounterStore):
    """Single-entry arena guarded by a lock.

    Suitable for single-process deployments and tests; state is lost on exit.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._lock = threading.Lock()
        self._record: CounterSnapshot | None = None
        self._clock = clock

    def read(self) -> CounterSnapshot:
        with self._lock:
            if self._record is None:
                self._record = CounterSnapshot(
                    id=uuid.uuid4().hex,
                    value=0,
                    last_updated=self._clock(),
                    version=0,
                )
                logger.info("Initialized counter %s", self._record.id)
            return self._record

    def commit(
        self, expected_version: int, new_value: int, new_timestamp: datetime
    ) -> CounterSnapshot:
        _check_value(new_value)
        with self._lock:
            current = self._record
            if current is None or current.version != expected_version:
                raise CommitConflictError(
                    f"expected version {expected_version}, "
                    f"found {None if current is None else current.version}"
                )
            self._record = replace(
                current,
                value=new_value,
                last_updated=new_timestamp,
                version=current.version + 1,
            )
            return self._record

    def load(self, value: int, last_updated: datetime) -> CounterSnapshot:
        """Overwrite the record unconditionally (fixtures and imports only)."""
        _check_value(value)
        with self._lock:
            previous = self._record
            self._record = CounterSnapshot(
                id=previous.id if previous else uuid.uuid4().hex,
                value=value,
                last_updated=last_updated,
                version=(previous.version + 1) if previous else 0,
            )
            return self._record


def _to_snapshot(record: CounterRecord) -> CounterSnapshot:
    return CounterSnapshot(
        id=record.counter_id,
        value=int(record.value),
        last_updated=ensure_utc(record.last_updated),
        version=int(record.version),
    )


class SqlCounterStore(CounterStore):
    """Counter store backed by a single SQL row.

    Every operation opens its own short-lived session; no transaction is held
    open between a caller's read and its commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._clock = clock

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            logger.warning("Counter store unavailable: %s", exc)
            raise StoreUnavailableError("counter store unavailable") from exc

    @staticmethod
    def _select(db: Session) -> CounterRecord | None:
        stmt = select(CounterRecord).where(CounterRecord.slot == SINGLETON_SLOT)
        return db.execute(stmt).scalar_one_or_none()

    def read(self) -> CounterSnapshot:
        with self._session() as db:
            record = self._select(db)
            if record is None:
                record = self._create(db)
            return _to_snapshot(record)

    def _create(self, db: Session) -> CounterRecord:
        record = CounterRecord(
            slot=SINGLETON_SLOT,
            counter_id=uuid.uuid4().hex,
            value=0,
            last_updated=self._clock(),
            version=0,
        )
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent first reader inserted the row first.
            db.rollback()
            existing = self._select(db)
            if existing is None:
                raise
            return existing
        logger.info("Initialized counter %s", record.counter_id)
        return record

    def commit(
        self, expected_version: int, new_value: int, new_timestamp: datetime
    ) -> CounterSnapshot:
        _check_value(new_value)
        stmt = (
            update(CounterRecord)
            .where(
                CounterRecord.slot == SINGLETON_SLOT,
                CounterRecord.version == expected_version,
            )
            .values(
                value=new_value,
                last_updated=new_timestamp,
                version=CounterRecord.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with self._session() as db:
            result = db.execute(stmt)
            if result.rowcount != 1:
                db.rollback()
                raise CommitConflictError(f"counter moved past version {expected_version}")
            record = self._select(db)
            if record is None:  # pragma: no cover - row deleted mid-transaction
                db.rollback()
                raise CommitConflictError("counter row disappeared during commit")
            snapshot = _to_snapshot(record)
            db.commit()
            return snapshot
