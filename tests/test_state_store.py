import json

import pytest
from sqlalchemy.exc import IntegrityError

from src.rate_limit import RateLimitState, RateLimiter, clear_state, load_state, save_state
from src.state_store import StateStore


def test_json_store_persists_across_instances(tmp_path, monkeypatch):
    store_path = tmp_path / "rate_limit.json"
    monkeypatch.delenv("RATE_LIMIT_DB_URL", raising=False)
    monkeypatch.setenv("RATE_LIMIT_STORE_PATH", str(store_path))

    store = StateStore()
    assert store.backend == "json"
    limiter = RateLimiter(store, max_requests=20, window_ms=60000, clock=lambda: 42)
    limiter.check()

    with open(store_path, "r") as f:
        data = json.load(f)
    assert data == {"requestCount": "1", "lastRequestTime": "42"}

    # A fresh store (new process) reads the same state back
    assert load_state(StateStore()) == RateLimitState(1, 42)


def test_corrupt_json_store_starts_empty(tmp_path):
    store_path = tmp_path / "broken.json"
    store_path.write_text("{not json")
    store = StateStore(path=str(store_path))
    assert store.get("requestCount") is None
    store.set("requestCount", "3")
    assert StateStore(path=str(store_path)).get("requestCount") == "3"


def test_sqlite_store_by_db_suffix(tmp_path, monkeypatch):
    monkeypatch.delenv("RATE_LIMIT_DB_URL", raising=False)
    db_path = tmp_path / "rate_limit.db"
    store = StateStore(path=str(db_path))
    assert store.backend == "sql"

    store.set("requestCount", "5")
    store.set("requestCount", "6")
    assert StateStore(path=str(db_path)).get("requestCount") == "6"
    assert store.get("lastRequestTime") is None


def test_db_url_env_wins(tmp_path, monkeypatch):
    db_path = tmp_path / "env.db"
    monkeypatch.setenv("RATE_LIMIT_DB_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("RATE_LIMIT_STORE_PATH", str(tmp_path / "ignored.json"))

    store = StateStore()
    assert store.backend == "sql"
    store.set("lastRequestTime", "99")
    assert store.get("lastRequestTime") == "99"
    assert not (tmp_path / "ignored.json").exists()


def test_memory_store_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = StateStore(memory=True)
    store.set("requestCount", "1")
    assert store.backend == "memory"
    assert list(tmp_path.iterdir()) == []


class RecordingStore:
    def __init__(self):
        self.data = {}
        self.writes = []

    def get(self, key):
        return self.data.get(key)

    def set_many(self, values):
        self.writes.append(dict(values))
        self.data.update(values)

    def delete_many(self, keys):
        for key in keys:
            self.data.pop(key, None)


def test_save_state_writes_both_keys_at_once():
    store = RecordingStore()
    save_state(store, RateLimitState(3, 1000), namespace="abc")
    assert store.writes == [{"abc:requestCount": "3", "abc:lastRequestTime": "1000"}]


@pytest.mark.parametrize("kind", ["memory", "json", "sql"])
def test_set_many_and_delete_many(kind, tmp_path, monkeypatch):
    monkeypatch.delenv("RATE_LIMIT_DB_URL", raising=False)
    if kind == "memory":
        store = StateStore(memory=True)
    elif kind == "json":
        store = StateStore(path=str(tmp_path / "state.json"))
    else:
        store = StateStore(path=str(tmp_path / "state.db"))
    assert store.backend == kind

    store.set_many({"a:requestCount": "2", "a:lastRequestTime": "10", "b:requestCount": "7"})
    store.set_many({"a:requestCount": "3"})
    assert store.get("a:requestCount") == "3"
    assert store.get("a:lastRequestTime") == "10"

    clear_state(store, "a")
    assert store.get("a:requestCount") is None
    assert store.get("a:lastRequestTime") is None
    assert store.get("b:requestCount") == "7"

    store.delete_many([])
    assert store.get("b:requestCount") == "7"


def test_sql_set_many_rolls_back_as_a_whole(tmp_path, monkeypatch):
    monkeypatch.delenv("RATE_LIMIT_DB_URL", raising=False)
    store = StateStore(path=str(tmp_path / "state.db"))
    store.set_many({"requestCount": "1", "lastRequestTime": "5"})

    # value column is NOT NULL, so the second row fails and the first must not stick
    with pytest.raises(IntegrityError):
        store.set_many({"requestCount": "2", "lastRequestTime": None})

    assert load_state(store) == RateLimitState(1, 5)
