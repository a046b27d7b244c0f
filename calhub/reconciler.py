# -*- coding: utf-8 -*-
"""
calhub/reconciler.py
跨来源去重：不同来源报同一个事件（同 token、同一天、同类型）时只保留一条。
- 胜者：来源优先级数字最小的；同优先级保留最先出现的
- 胜者的推送标记 = 组内所有成员标记的 OR，避免换了来源后重复推送
- 输出顺序 = 各组第一次出现的顺序
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional

from calhub.models import SENT_FLAGS, Event, GroupKey

# 数字越小优先级越高；可被 ops/config.yml 的 sources.<name>.priority 覆盖
DEFAULT_SOURCE_PRIORITY: Dict[str, int] = {
    "binance": 1,
    "bybit": 2,
    "okx": 3,
    "tokenunlocks": 4,
    "airdrops": 5,
}

UNKNOWN_PRIORITY = 99


def source_priority(source: str, priority: Optional[Mapping[str, int]] = None) -> int:
    table = DEFAULT_SOURCE_PRIORITY if priority is None else priority
    return int(table.get(source, UNKNOWN_PRIORITY))


def group_events(events: Iterable[Event]) -> Dict[GroupKey, List[Event]]:
    """按 (token, 日期, 类型) 分组；dict 保留插入顺序"""
    groups: Dict[GroupKey, List[Event]] = {}
    for ev in events:
        groups.setdefault(ev.group_key, []).append(ev)
    return groups


def pick_winner(group: List[Event], priority: Optional[Mapping[str, int]] = None) -> Event:
    """
    选出组内胜者并合并推送标记。返回的是新对象，不修改入参。
    """
    winner = group[0]
    for ev in group[1:]:
        # 严格小于：同优先级保留先出现的
        if source_priority(ev.source, priority) < source_priority(winner.source, priority):
            winner = ev

    merged = {flag: any(getattr(ev, flag) for ev in group) for flag in SENT_FLAGS}
    return replace(winner, **merged)


def dedupe_cross_source(
    events: Iterable[Event],
    priority: Optional[Mapping[str, int]] = None,
) -> List[Event]:
    """每个 (token, 日期, 类型) 只输出一条，按首次出现顺序排列。"""
    out: List[Event] = []
    for group in group_events(events).values():
        if len(group) == 1:
            out.append(replace(group[0]))
            continue
        out.append(pick_winner(group, priority))
    return out
