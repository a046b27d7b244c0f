# -*- coding: utf-8 -*-
"""
calhub/aggregator.py
串起：collector（并发扫描） -> reconciler（跨来源去重） -> storage（合并/清理/落盘）
对外提供：
- refresh()       扫描所有来源并返回当前事件集合
- events()        只读缓存，不访问网络
- mark_sent_*()   推送成功后由调度器回调置位
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Mapping, Optional, Sequence

from calhub.collector import DEFAULT_TIMEOUT_SEC, PER_SOURCE_TIMEOUT_SEC, Scanner, collect
from calhub.models import FLAG_2H, FLAG_24H, FLAG_DIGEST, Event
from calhub.reconciler import dedupe_cross_source
from calhub.storage import CacheStore


class Aggregator:
    """唯一的缓存写入方；缓存实例由外部构造后传进来"""

    def __init__(
        self,
        store: CacheStore,
        scanners: Sequence[Scanner],
        priority: Optional[Mapping[str, int]] = None,
        per_source_timeout: float = PER_SOURCE_TIMEOUT_SEC,
    ) -> None:
        self._store = store
        self._scanners = list(scanners)
        self._priority = priority
        self._per_source_timeout = per_source_timeout

    @property
    def store(self) -> CacheStore:
        return self._store

    async def refresh(
        self,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        now: Optional[datetime] = None,
    ) -> List[Event]:
        """
        扫描 -> 去重 -> 合并进缓存 -> 清理 -> 落盘，返回去重后的完整事件列表。
        不抛异常：所有来源都失败时 fresh 为空，缓存原样返回（过期的仍会清掉）。
        网络扫描不持有缓存锁。
        """
        fresh = await collect(self._scanners, timeout=timeout, per_source_timeout=self._per_source_timeout)
        winners = dedupe_cross_source(fresh, self._priority)
        print(f"[aggregator] 本轮采集 {len(fresh)} 条，去重后 {len(winners)} 条")
        await self._store.merge(winners, now=now)
        return await self.events()

    async def events(self) -> List[Event]:
        """缓存内容再做一次跨来源去重：上一轮遗留的落败来源记录在这里被隐藏"""
        return dedupe_cross_source(await self._store.snapshot(), self._priority)

    # id 不存在时静默忽略：记录可能在读取和置位之间被清理掉了
    async def mark_sent_digest(self, event_id: str) -> bool:
        return await self._store.mark(event_id, FLAG_DIGEST)

    async def mark_sent_24h(self, event_id: str) -> bool:
        return await self._store.mark(event_id, FLAG_24H)

    async def mark_sent_2h(self, event_id: str) -> bool:
        return await self._store.mark(event_id, FLAG_2H)
