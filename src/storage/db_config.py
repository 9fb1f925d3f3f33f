import os
import sqlite3

from logger import logger


conn: sqlite3.Connection | None = None

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at_utc TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


def migrate(db: sqlite3.Connection) -> None:
    user_version = db.execute("PRAGMA user_version").fetchone()[0]

    if user_version == 0:  # 数据库初始版本
        db.executescript(_SCHEMA_V1)
        db.execute("PRAGMA user_version = 1")

    # 数据库升级逻辑可以在这里继续添加
    db.commit()


def init_db(db_path: str) -> sqlite3.Connection:
    global conn
    if db_path != ":memory:":
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

    conn = sqlite3.connect(db_path)
    migrate(conn)
    logger.info(f"数据库已就绪: {db_path}")
    return conn


def close_db() -> None:
    global conn
    if conn is not None:
        conn.close()
        conn = None


__all__ = ["conn", "init_db", "close_db", "migrate"]
