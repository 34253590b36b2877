"""Key-value stores used by the device registry and confirmation engine.

Values are JSON-able dicts. Each table gets its own store instance (or its
own namespace in the SQL store). Reads return copies, so callers never
mutate stored state without going through ``set``.
"""

import copy
import json
import threading
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from devconfirm.models.kv import KVEntry


class KeyValueStore:
    """Interface over get/set/delete/list."""

    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, key: str, value: dict) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def list(self) -> list[dict]:
        """All values in insertion order."""
        raise NotImplementedError


class InMemoryStore(KeyValueStore):
    def __init__(self):
        self._data: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def list(self) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(v) for v in self._data.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SQLStore(KeyValueStore):
    """Durable store: one row per key in ``kv_entries``, scoped by namespace."""

    def __init__(self, engine: Engine, namespace: str):
        self._engine = engine
        self.namespace = namespace
        self._lock = threading.Lock()

    def _row(self, session: Session, key: str) -> Optional[KVEntry]:
        return session.exec(
            select(KVEntry).where(KVEntry.namespace == self.namespace, KVEntry.key == key)
        ).first()

    def get(self, key: str) -> Optional[dict]:
        with Session(self._engine) as session:
            row = self._row(session, key)
            return json.loads(row.value) if row else None

    def set(self, key: str, value: dict) -> None:
        body = json.dumps(value)
        with self._lock, Session(self._engine) as session:
            row = self._row(session, key)
            if row:
                row.value = body
                row.updated_at = datetime.now(timezone.utc)
            else:
                row = KVEntry(namespace=self.namespace, key=key, value=body)
            session.add(row)
            session.commit()

    def delete(self, key: str) -> bool:
        with self._lock, Session(self._engine) as session:
            row = self._row(session, key)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def list(self) -> list[dict]:
        with Session(self._engine) as session:
            rows = session.exec(
                select(KVEntry).where(KVEntry.namespace == self.namespace).order_by(KVEntry.id)
            ).all()
            return [json.loads(r.value) for r in rows]
