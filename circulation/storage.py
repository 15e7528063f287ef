"""
In-memory record store with a unit-of-work transaction scope.

Every repository keeps its rows in a named table of a shared ``Store``.
Writes go through ``put``/``delete``, which record the previous row in the
active transaction's undo journal; if the ``transaction()`` block raises,
the journal is replayed backwards and no partial state survives.

Transactions are serialised on one re-entrant lock, so a read-check-write
sequence inside a block sees no interleaved writer. Nested ``transaction()``
calls join the outermost one. Rows are copied on the way in and on the way
out: callers only change stored state by saving.
"""

from __future__ import annotations
import copy
import itertools
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class Transaction:
    def __init__(self) -> None:
        self._undo: List[Tuple[Dict[str, Any], str, Any]] = []

    def record(self, table: Dict[str, Any], key: str, previous: Any) -> None:
        self._undo.append((table, key, previous))

    def rollback(self) -> None:
        for table, key, previous in reversed(self._undo):
            if previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous
        self._undo.clear()

    @property
    def writes(self) -> int:
        return len(self._undo)


class Store:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._local = threading.local()
        self._tables: Dict[str, Dict[str, Any]] = {}
        self._seq = itertools.count(1)

    def _table(self, name: str) -> Dict[str, Any]:
        return self._tables.setdefault(name, {})

    @property
    def current(self) -> Optional[Transaction]:
        return getattr(self._local, "tx", None)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._lock:
            outer = self.current
            if outer is not None:
                yield outer
                return

            tx = Transaction()
            self._local.tx = tx
            try:
                yield tx
            except BaseException:
                logger.debug("Rolling back transaction | writes=%d", tx.writes)
                tx.rollback()
                raise
            finally:
                self._local.tx = None

    def next_seq(self) -> int:
        with self._lock:
            return next(self._seq)

    # reads
    def get(self, table: str, key: str) -> Optional[Any]:
        with self._lock:
            row = self._table(table).get(key)
            return copy.copy(row) if row is not None else None

    def select(self, table: str, where: Optional[Callable[[Any], bool]] = None) -> List[Any]:
        with self._lock:
            return [
                copy.copy(row)
                for row in self._table(table).values()
                if where is None or where(row)
            ]

    def exists(self, table: str, where: Callable[[Any], bool]) -> bool:
        with self._lock:
            return any(where(row) for row in self._table(table).values())

    # writes
    def put(self, table: str, key: str, row: Any) -> None:
        with self.transaction() as tx:
            rows = self._table(table)
            tx.record(rows, key, rows.get(key, _MISSING))
            rows[key] = copy.copy(row)

    def delete(self, table: str, key: str) -> None:
        with self.transaction() as tx:
            rows = self._table(table)
            if key in rows:
                tx.record(rows, key, rows.pop(key))
