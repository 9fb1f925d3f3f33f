"""
提醒的持久化: 一个命名槽位保存全部提醒记录（JSON 数组）。

ReminderManager 只依赖 load()/save(records) 两个同步方法。
"""

from __future__ import annotations

import copy
import json
import sqlite3
from typing import Any, Protocol

import storage.db_config as db_config
from logger import logger

__all__ = ["ReminderStore", "SqliteReminderStore", "MemoryReminderStore"]


class ReminderStore(Protocol):
    def load(self) -> list[dict[str, Any]]: ...

    def save(self, records: list[dict[str, Any]]) -> None: ...


class SqliteReminderStore:
    """kv_store 表中的一个槽位"""

    def __init__(self, slot: str = "reminders", conn: sqlite3.Connection | None = None) -> None:
        self.slot = slot
        self._conn = conn

    def _ensure_conn(self) -> sqlite3.Connection:
        conn = self._conn or db_config.conn
        if conn is None:
            raise RuntimeError("数据库未初始化，请先调用 init_db()")
        return conn

    def load(self) -> list[dict[str, Any]]:
        conn = self._ensure_conn()
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (self.slot,)).fetchone()
        if row is None:
            return []

        try:
            loaded = json.loads(row[0])
        except json.JSONDecodeError:
            logger.error(f"槽位 {self.slot} 的内容无法解析为 JSON，已按空列表处理")
            return []

        if not isinstance(loaded, list):
            logger.error(f"槽位 {self.slot} 的内容不是列表，已按空列表处理")
            return []
        return [item for item in loaded if isinstance(item, dict)]

    def save(self, records: list[dict[str, Any]]) -> None:
        conn = self._ensure_conn()
        payload = json.dumps(records, ensure_ascii=False)
        with conn:
            conn.execute(
                "INSERT INTO kv_store (key, value, updated_at_utc) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at_utc = CURRENT_TIMESTAMP",
                (self.slot, payload),
            )
        logger.trace(f"已保存 {len(records)} 条提醒到槽位 {self.slot}")


class MemoryReminderStore:
    """进程内存储，重启即丢失"""

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self.records: list[dict[str, Any]] = copy.deepcopy(records or [])
        self.save_count = 0

    def load(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.records)

    def save(self, records: list[dict[str, Any]]) -> None:
        self.records = copy.deepcopy(records)
        self.save_count += 1
