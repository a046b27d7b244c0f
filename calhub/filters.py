# -*- coding: utf-8 -*-
"""
calhub/filters.py
时间窗口查询：输入是已经跨来源去重过的事件列表，纯函数，不改入参。
所有比较都按 UTC；结果按 date 升序。

| 查询           | 窗口（相对 now）           | 额外条件                 | 幂等         |
| 周报 digest    | [-14d, +7d]                | -                        | !sent_digest |
| 24h 提醒       | [+20h, +28h]               | -                        | !sent_24h    |
| 2h 提醒        | [+90min, +150min]          | 仅 listing / airdrop     | !sent_2h     |
| 今天           | [今天 00:00, 明天 00:00)   | -                        | -            |
| 明天           | [明天 00:00, 后天 00:00)   | -                        | -            |
| 按类型即将发生 | (now, now+30d]             | type == 指定类型         | -            |
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from calhub.models import AIRDROP, LISTING, Event, to_utc
from calhub.utils import now_utc

# 这些窗口边界是线上跑出来的经验值，不要随手改成整数
DIGEST_LOOKBACK = timedelta(days=14)
DIGEST_LOOKAHEAD = timedelta(days=7)
ALERT_24H_FROM = timedelta(hours=20)
ALERT_24H_TO = timedelta(hours=28)
ALERT_2H_FROM = timedelta(minutes=90)
ALERT_2H_TO = timedelta(minutes=150)
UPCOMING_HORIZON = timedelta(days=30)

ALERT_2H_TYPES = (LISTING, AIRDROP)


def _now(now: Optional[datetime]) -> datetime:
    return to_utc(now) if now is not None else now_utc()


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def sort_by_date(events: Iterable[Event]) -> List[Event]:
    return sorted(events, key=lambda e: to_utc(e.date))


def _select(events: Iterable[Event], keep: Callable[[Event], bool]) -> List[Event]:
    return sort_by_date(e for e in events if keep(e))


def events_for_week(events: Iterable[Event], now: Optional[datetime] = None) -> List[Event]:
    """最近 14 天 + 未来 7 天，不看推送标记（/week、/digest 查询用）"""
    t = _now(now)
    lo, hi = t - DIGEST_LOOKBACK, t + DIGEST_LOOKAHEAD
    return _select(events, lambda e: lo <= to_utc(e.date) <= hi)


def events_for_digest(events: Iterable[Event], now: Optional[datetime] = None) -> List[Event]:
    """同 events_for_week，但排除已经进过周报的"""
    return [e for e in events_for_week(events, now) if not e.sent_digest]


def events_due_24h(events: Iterable[Event], now: Optional[datetime] = None) -> List[Event]:
    """
    20–28 小时后发生且还没发过 24h 提醒的事件。
    窗口比 24h 宽 8 小时，用来吸收轮询间隔，配合 sent_24h 保证只发一次。
    """
    t = _now(now)
    lo, hi = t + ALERT_24H_FROM, t + ALERT_24H_TO
    return _select(events, lambda e: not e.sent_24h and lo <= to_utc(e.date) <= hi)


def events_due_2h(events: Iterable[Event], now: Optional[datetime] = None) -> List[Event]:
    """90–150 分钟后发生的 listing / airdrop，且还没发过 2h 提醒"""
    t = _now(now)
    lo, hi = t + ALERT_2H_FROM, t + ALERT_2H_TO
    return _select(
        events,
        lambda e: e.type in ALERT_2H_TYPES and not e.sent_2h and lo <= to_utc(e.date) <= hi,
    )


def events_today(events: Iterable[Event], now: Optional[datetime] = None) -> List[Event]:
    start = _midnight(_now(now))
    end = start + timedelta(days=1)
    return _select(events, lambda e: start <= to_utc(e.date) < end)


def events_tomorrow(events: Iterable[Event], now: Optional[datetime] = None) -> List[Event]:
    """明天全天，不看 sent_24h（按需查询，不触发推送）"""
    start = _midnight(_now(now)) + timedelta(days=1)
    end = start + timedelta(days=1)
    return _select(events, lambda e: start <= to_utc(e.date) < end)


def events_upcoming(
    events: Iterable[Event],
    event_type: str,
    now: Optional[datetime] = None,
) -> List[Event]:
    t = _now(now)
    hi = t + UPCOMING_HORIZON
    return _select(events, lambda e: e.type == event_type and t < to_utc(e.date) <= hi)
