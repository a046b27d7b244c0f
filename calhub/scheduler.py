# -*- coding: utf-8 -*-
"""
calhub/scheduler.py
定时推送：周报、24h 提醒、2h 提醒。
- 只有 deliver 成功才置位推送标记；失败的下一轮自动重试
- 单条失败不影响同一批里的其它事件
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from calhub.aggregator import Aggregator
from calhub.filters import events_due_24h, events_due_2h, events_for_digest
from calhub.formatter import format_alert_2h, format_alert_24h, format_digest
from calhub.models import Event, to_utc
from calhub.utils import now_utc

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class Sink(Protocol):
    async def deliver(self, text: str) -> bool:
        ...


def _parse_hhmm(s: str) -> Optional[int]:
    """'HH:MM' -> 小时；格式不对返回 None"""
    try:
        hh, mm = str(s).strip().split(":")
        h, m = int(hh), int(mm)
    except ValueError:
        return None
    if not (0 <= h < 24 and 0 <= m < 60):
        return None
    return h


def is_digest_time(schedule_cfg: Dict[str, Any], now: datetime) -> bool:
    """当前是否是配置的周几 + 小时（UTC）；周几写错按 monday 处理"""
    weekday = str(schedule_cfg.get("digest_weekday", "monday")).strip().lower()
    want_day = WEEKDAYS.index(weekday) if weekday in WEEKDAYS else 0
    hour = _parse_hhmm(schedule_cfg.get("digest_time_utc", "09:00"))
    if hour is None:
        return False
    now = to_utc(now)
    return now.weekday() == want_day and now.hour == hour


async def _send_digest(agg: Aggregator, sink: Sink, now: datetime) -> int:
    events = events_for_digest(await agg.events(), now)
    parts = format_digest(events, now, now + timedelta(days=7))

    # 周报可能切成多条：每条成功后只标记它包含的事件，失败的留到下次
    marked = 0
    for i, part in enumerate(parts, 1):
        if not await sink.deliver(part.text):
            print(f"[scheduler] digest 第 {i}/{len(parts)} 条发送失败，{len(part.events)} 条事件下次再试")
            continue
        for e in part.events:
            await agg.mark_sent_digest(e.id)
        marked += len(part.events)
    print(f"[scheduler] digest 已发送，标记 {marked}/{len(events)} 条事件")
    return marked


async def check_digest(
    agg: Aggregator,
    sink: Sink,
    schedule_cfg: Dict[str, Any],
    now: Optional[datetime] = None,
) -> int:
    now = to_utc(now) if now is not None else now_utc()
    if not is_digest_time(schedule_cfg, now):
        return 0
    return await _send_digest(agg, sink, now)


async def send_digest_now(agg: Aggregator, sink: Sink, timeout: float = 30.0) -> int:
    """立即刷新并发送周报（命令行 --digest-now）"""
    await agg.refresh(timeout=timeout)
    return await _send_digest(agg, sink, now_utc())


async def _send_each(
    tag: str,
    events: List[Event],
    sink: Sink,
    render: Callable[[Event], str],
    mark: Callable[[str], Awaitable[bool]],
) -> int:
    sent = 0
    for e in events:
        if not await sink.deliver(render(e)):
            print(f"[{tag}] send error for {e.id}")
            continue
        await mark(e.id)
        sent += 1
        print(f"[{tag}] sent for {e.id}")
    return sent


async def check_alerts_24h(agg: Aggregator, sink: Sink, now: Optional[datetime] = None) -> int:
    events = events_due_24h(await agg.events(), now)
    return await _send_each("alert24h", events, sink, format_alert_24h, agg.mark_sent_24h)


async def check_alerts_2h(agg: Aggregator, sink: Sink, now: Optional[datetime] = None) -> int:
    events = events_due_2h(await agg.events(), now)
    return await _send_each("alert2h", events, sink, format_alert_2h, agg.mark_sent_2h)


async def run_checks(
    agg: Aggregator,
    sink: Sink,
    schedule_cfg: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """每小时一次：周报 -> 24h -> 2h"""
    now = to_utc(now) if now is not None else now_utc()
    return {
        "digest": await check_digest(agg, sink, schedule_cfg, now),
        "alert24h": await check_alerts_24h(agg, sink, now),
        "alert2h": await check_alerts_2h(agg, sink, now),
    }
