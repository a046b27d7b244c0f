# -*- coding: utf-8 -*-
"""
calhub/storage.py
事件缓存 + SQLite（aiosqlite）持久化：
- 初始化/建表
- 启动时整表读入内存（文件缺失或损坏 => 空缓存，不影响启动）
- merge：按 per-source id upsert，推送标记只增不减
- 删除被更高优先级来源取代的旧记录
- 清理过期（默认 48 小时前）
- 每次变更后整表重写（DELETE + INSERT，一个事务内完成）
字段与 calhub.models.Event 完全对齐：
id, type, source, token, title, details, url, date, sent_digest, sent_24h, sent_2h
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import aiosqlite

from calhub.models import SENT_FLAGS, Event, GroupKey, to_utc
from calhub.utils import now_utc

DEFAULT_RETENTION_HOURS = 48


# --------- 建表 SQL（严格对齐 Event 字段） ---------
SCHEMA_EVENTS = """
CREATE TABLE IF NOT EXISTS events (
    id          TEXT PRIMARY KEY,
    type        TEXT NOT NULL,
    source      TEXT NOT NULL,
    token       TEXT NOT NULL,
    title       TEXT,
    details     TEXT,
    url         TEXT,
    date        TEXT NOT NULL,
    sent_digest INTEGER DEFAULT 0,
    sent_24h    INTEGER DEFAULT 0,
    sent_2h     INTEGER DEFAULT 0
);
"""

SQL_INSERT = """
INSERT INTO events(
    id, type, source, token, title, details, url, date, sent_digest, sent_24h, sent_2h
) VALUES(?,?,?,?,?,?,?,?,?,?,?);
"""

SQL_SELECT = """
SELECT id, type, source, token, title, details, url, date, sent_digest, sent_24h, sent_2h
  FROM events;
"""


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """
    初始化数据库并返回连接。文件不是合法的 SQLite 时这里会抛 aiosqlite.DatabaseError。
    """
    p = Path(db_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(p))
    try:
        await db.execute("PRAGMA journal_mode=WAL;")
        await db.execute("PRAGMA synchronous=NORMAL;")
        await db.execute(SCHEMA_EVENTS)
        await db.commit()
    except BaseException:
        await db.close()
        raise
    return db


def _to_row(ev: Event) -> tuple:
    return (
        ev.id, ev.type, ev.source, ev.token, ev.title, ev.details, ev.url,
        to_utc(ev.date).isoformat(),
        int(ev.sent_digest), int(ev.sent_24h), int(ev.sent_2h),
    )


# --------- 读 / 写整表 ---------
async def load_events(db: aiosqlite.Connection) -> List[Event]:
    """读出全部记录；单行解析失败只跳过该行"""
    out: List[Event] = []
    async with db.execute(SQL_SELECT) as cur:
        async for row in cur:
            try:
                out.append(Event.from_dict({
                    "id": row[0],
                    "type": row[1],
                    "source": row[2],
                    "token": row[3],
                    "title": row[4],
                    "details": row[5],
                    "url": row[6],
                    "date": row[7],
                    "sent_digest": row[8],
                    "sent_24h": row[9],
                    "sent_2h": row[10],
                }))
            except (KeyError, TypeError, ValueError) as e:
                print(f"[storage] 跳过损坏的行 id={row[0]!r}: {e!r}")
    return out


async def save_events(db: aiosqlite.Connection, events: Iterable[Event]) -> None:
    """整表重写：不做增量写，文件里永远是一份完整快照"""
    rows = [_to_row(ev) for ev in events]
    try:
        await db.execute("DELETE FROM events;")
        await db.executemany(SQL_INSERT, rows)
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


# --------- 内存缓存（唯一真相） ---------
class CacheStore:
    """
    id -> Event 的内存映射，所有读改写都在同一把锁里完成；
    对外只给副本，调用方拿到的对象改了也不会影响缓存。
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        retention_hours: int = DEFAULT_RETENTION_HOURS,
    ) -> None:
        self._db_path = Path(db_path)
        self._retention = timedelta(hours=retention_hours)
        self._cache: Dict[str, Event] = {}
        self._lock = asyncio.Lock()
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def open(self) -> int:
        """
        打开数据库并载入缓存，返回载入条数。
        文件损坏时挪到 <path>.corrupt 再建新库；全部失败也只是空缓存 + 日志。
        """
        async with self._lock:
            try:
                self._db = await init_db(self._db_path)
                events = await load_events(self._db)
            except (aiosqlite.Error, OSError) as e:
                print(f"[storage] 读取缓存失败，从空缓存启动: {e!r}")
                await self._close_db()
                self._db = await self._reset_db()
                events = []

            self._cache = {ev.id: ev for ev in events}
            print(f"[storage] 已载入 {len(self._cache)} 条缓存事件")
            return len(self._cache)

    async def _reset_db(self) -> Optional[aiosqlite.Connection]:
        try:
            if self._db_path.exists():
                aside = self._db_path.with_name(self._db_path.name + ".corrupt")
                self._db_path.replace(aside)
                print(f"[storage] 损坏的缓存文件已移到 {aside}")
            return await init_db(self._db_path)
        except (aiosqlite.Error, OSError) as e:
            print(f"[storage] 无法重建缓存文件，仅使用内存缓存: {e!r}")
            return None

    async def _close_db(self) -> None:
        if self._db is None:
            return
        try:
            await self._db.close()
        except (aiosqlite.Error, OSError) as e:
            print(f"[storage] 关闭数据库出错: {e!r}")
        self._db = None

    async def close(self) -> None:
        async with self._lock:
            await self._close_db()

    async def _persist(self) -> None:
        """持久化失败只打日志：内存缓存仍然有效，下次变更再写"""
        if self._db is None:
            print("[storage] 没有可用的数据库连接，本次未持久化")
            return
        try:
            await save_events(self._db, self._cache.values())
        except (aiosqlite.Error, OSError) as e:
            print(f"[storage] 写入缓存失败: {e!r}")

    # --------- 变更操作 ---------
    async def merge(self, fresh: Iterable[Event], now: Optional[datetime] = None) -> None:
        """
        fresh 必须是已经跨来源去重过的胜者列表。
        1) upsert：已有同 id 的记录时继承其推送标记（只做 OR，不回退）
        2) 删除与胜者同 (token, 日期, 类型) 但 id 不同的旧记录，标记先并到胜者上
        3) 清理过期
        4) 持久化
        """
        winners = [replace(ev) for ev in fresh]
        async with self._lock:
            for ev in winners:
                old = self._cache.get(ev.id)
                if old is not None:
                    for flag in SENT_FLAGS:
                        if getattr(old, flag):
                            setattr(ev, flag, True)
                self._cache[ev.id] = ev

            by_key: Dict[GroupKey, List[str]] = {}
            for id_, cached in self._cache.items():
                by_key.setdefault(cached.group_key, []).append(id_)

            for ev in winners:
                for id_ in by_key.get(ev.group_key, []):
                    if id_ == ev.id or id_ not in self._cache:
                        continue
                    loser = self._cache.pop(id_)
                    for flag in SENT_FLAGS:
                        if getattr(loser, flag):
                            setattr(ev, flag, True)

            removed = self._evict_locked(now)
            if removed:
                print(f"[storage] 清理过期事件 {removed} 条")
            await self._persist()

    async def evict(self, now: Optional[datetime] = None) -> int:
        """单独清理过期记录，返回删除条数"""
        async with self._lock:
            removed = self._evict_locked(now)
            if removed:
                await self._persist()
            return removed

    def _evict_locked(self, now: Optional[datetime]) -> int:
        cutoff = to_utc(now or now_utc()) - self._retention
        expired = [id_ for id_, ev in self._cache.items() if to_utc(ev.date) < cutoff]
        for id_ in expired:
            del self._cache[id_]
        return len(expired)

    async def mark(self, event_id: str, flag: str) -> bool:
        """
        按 per-source id 置位推送标记并持久化。
        id 不存在（可能刚被清理）时什么都不做，返回 False。
        """
        if flag not in SENT_FLAGS:
            raise ValueError(f"unknown sent flag: {flag!r}")
        async with self._lock:
            ev = self._cache.get(event_id)
            if ev is None:
                return False
            if not getattr(ev, flag):
                setattr(ev, flag, True)
                await self._persist()
            return True

    # --------- 查询 ---------
    async def snapshot(self) -> List[Event]:
        """全部缓存记录的副本（未跨来源去重）"""
        async with self._lock:
            return [replace(ev) for ev in self._cache.values()]
