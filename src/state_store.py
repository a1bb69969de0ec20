import json
import logging
import os
import threading
from typing import Dict, Iterable, Optional
from urllib.parse import urlparse

from sqlalchemy import Column, MetaData, String, Table, create_engine, delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert


logger = logging.getLogger(__name__)

DEFAULT_JSON_PATH = ".rate_limit_store.json"


class _MemoryStateStore:
    """Process-local store, used by tests and `--no-persist` runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_many(self, values: Dict[str, str]):
        self._data.update(values)

    def delete_many(self, keys: Iterable[str]):
        for key in keys:
            self._data.pop(key, None)


class _JSONStateStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        if not os.path.exists(self.path):
            self._write({})

    def _read(self) -> dict:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except ValueError as exc:
            logger.warning("State store %s is not valid JSON, starting empty: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict):
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_many(self, values: Dict[str, str]):
        with self._lock:
            data = self._read()
            data.update(values)
            self._write(data)

    def delete_many(self, keys: Iterable[str]):
        with self._lock:
            data = self._read()
            removed = [k for k in keys if data.pop(k, None) is not None]
            if removed:
                self._write(data)


class _SQLAlchemyStateStore:
    """Key/value rows in a `rate_limit_state` table, for any SQLAlchemy URL.

    `set_many` writes all of its keys in a single transaction, so the
    counter and its timestamp never disagree after a crash.
    """

    def __init__(self, db_url: str):
        # Treat a bare file path as a sqlite database
        if not urlparse(db_url).scheme:
            db_url = f"sqlite:///{db_url}"

        self.engine = create_engine(db_url, future=True)
        self.metadata = MetaData()
        self.entries = Table(
            "rate_limit_state",
            self.metadata,
            Column("key", String(255), primary_key=True),
            Column("value", String(64), nullable=False),
        )
        self.metadata.create_all(self.engine)
        self._insert = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}.get(self.engine.dialect.name)

    def get(self, key: str) -> Optional[str]:
        with self.engine.connect() as conn:
            return conn.execute(select(self.entries.c.value).where(self.entries.c.key == key)).scalar_one_or_none()

    def _upsert(self, conn, key: str, value: str):
        if self._insert is not None:
            stmt = self._insert(self.entries).values(key=key, value=value)
            conn.execute(stmt.on_conflict_do_update(index_elements=["key"], set_={"value": stmt.excluded.value}))
            return
        res = conn.execute(self.entries.update().where(self.entries.c.key == key).values(value=value))
        if res.rowcount == 0:
            conn.execute(self.entries.insert().values(key=key, value=value))

    def set_many(self, values: Dict[str, str]):
        with self.engine.begin() as conn:
            for key, value in values.items():
                self._upsert(conn, key, value)

    def delete_many(self, keys: Iterable[str]):
        keys = list(keys)
        if not keys:
            return
        with self.engine.begin() as conn:
            conn.execute(delete(self.entries).where(self.entries.c.key.in_(keys)))


class StateStore:
    """Key/value store holding the rate limiter's `requestCount` / `lastRequestTime`.

    Selection rules:
    - If `memory=True` -> in-process dict, nothing is written to disk.
    - Else if env `RATE_LIMIT_DB_URL` is set -> SQL backend via SQLAlchemy.
    - Else if `path` (or env `RATE_LIMIT_STORE_PATH`) ends with .db or starts
      with 'sqlite' -> SQLite backend via SQLAlchemy.
    - Else that path is used as a JSON file.
    - Otherwise default to a JSON file `.rate_limit_store.json` in cwd.
    """

    def __init__(self, path: Optional[str] = None, db_url: Optional[str] = None, memory: bool = False):
        if memory:
            self._impl = _MemoryStateStore()
            return

        db_url = db_url or os.getenv("RATE_LIMIT_DB_URL")
        if db_url:
            self._impl = _SQLAlchemyStateStore(db_url)
            return

        env_path = path or os.getenv("RATE_LIMIT_STORE_PATH")
        if env_path:
            env_path = str(env_path)
            if env_path.startswith("sqlite"):
                self._impl = _SQLAlchemyStateStore(env_path)
            elif env_path.endswith(".db"):
                self._impl = _SQLAlchemyStateStore(f"sqlite:///{env_path}")
            else:
                self._impl = _JSONStateStore(env_path)
            return

        self._impl = _JSONStateStore(os.path.join(os.getcwd(), DEFAULT_JSON_PATH))

    @property
    def backend(self) -> str:
        return {
            _MemoryStateStore: "memory",
            _JSONStateStore: "json",
            _SQLAlchemyStateStore: "sql",
        }[type(self._impl)]

    def get(self, key: str) -> Optional[str]:
        return self._impl.get(key)

    def set(self, key: str, value: str):
        self._impl.set_many({key: value})

    def set_many(self, values: Dict[str, str]):
        self._impl.set_many(values)

    def delete_many(self, keys: Iterable[str]):
        self._impl.delete_many(keys)
