import sqlite3

import pytest

import storage.db_config as db_config
from storage.reminder import MemoryReminderStore, SqliteReminderStore


@pytest.fixture
def conn():
    db = sqlite3.connect(":memory:")
    db_config.migrate(db)
    yield db
    db.close()


RECORD = {
    "id": "01HZZZ",
    "text": "喝水",
    "intervalMinutes": 30,
    "state": "active",
    "nextTriggerTime": 1_700_000_000_000,
    "createdAt": 1_699_999_000_000,
}


def test_migrate_sets_user_version(conn):
    assert conn.execute("PRAGMA user_version").fetchone()[0] == 1
    db_config.migrate(conn)
    assert conn.execute("PRAGMA user_version").fetchone()[0] == 1


def test_empty_slot_loads_empty_list(conn):
    assert SqliteReminderStore(conn=conn).load() == []


def test_save_then_load(conn):
    store = SqliteReminderStore(conn=conn)
    store.save([RECORD])
    assert store.load() == [RECORD]

    store.save([])
    assert store.load() == []


def test_slots_are_independent(conn):
    SqliteReminderStore("a", conn=conn).save([RECORD])
    assert SqliteReminderStore("b", conn=conn).load() == []


@pytest.mark.parametrize("raw", ["{not json", '{"id": "x"}', "42"])
def test_corrupt_slot_loads_empty_list(conn, raw):
    conn.execute("INSERT INTO kv_store (key, value) VALUES (?, ?)", ("reminders", raw))
    assert SqliteReminderStore(conn=conn).load() == []


def test_non_object_items_dropped(conn):
    conn.execute("INSERT INTO kv_store (key, value) VALUES (?, ?)", ("reminders", '[1, "x", {"id": "ok"}]'))
    assert SqliteReminderStore(conn=conn).load() == [{"id": "ok"}]


def test_uninitialised_database_raises(monkeypatch):
    monkeypatch.setattr(db_config, "conn", None)
    with pytest.raises(RuntimeError):
        SqliteReminderStore().load()


def test_init_db_uses_module_connection(tmp_path):
    path = tmp_path / "data" / "chime.db"
    try:
        db_config.init_db(str(path))
        assert path.exists()
        SqliteReminderStore().save([RECORD])
        assert SqliteReminderStore().load() == [RECORD]
    finally:
        db_config.close_db()
    assert db_config.conn is None


def test_memory_store_copies():
    store = MemoryReminderStore([RECORD])
    loaded = store.load()
    loaded[0]["text"] = "changed"
    assert store.load()[0]["text"] == "喝水"
    store.save(loaded)
    assert store.save_count == 1
    assert store.records[0]["text"] == "changed"
