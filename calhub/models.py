# -*- coding: utf-8 -*-
"""
models.py
定义事件数据模型。字段名与 storage.py 的建表 SQL 以及缓存文件一一对应，
改字段时两边要一起改。
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple

# 事件类型（封闭集合）
LAUNCHPOOL = "launchpool"
LISTING = "listing"
UNLOCK = "unlock"
AIRDROP = "airdrop"

EVENT_TYPES = (LAUNCHPOOL, LISTING, UNLOCK, AIRDROP)

# 提取不到 ticker 时的占位
UNKNOWN_TOKEN = "UNKNOWN"

# 三个推送里程碑对应的字段名
FLAG_DIGEST = "sent_digest"
FLAG_24H = "sent_24h"
FLAG_2H = "sent_2h"

SENT_FLAGS = (FLAG_DIGEST, FLAG_24H, FLAG_2H)


def to_utc(dt: datetime) -> datetime:
    """naive 时间按 UTC 处理；带时区的统一转成 UTC。"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_key(dt: datetime) -> str:
    """按 UTC 截断到天：YYYYMMDD"""
    return to_utc(dt).strftime("%Y%m%d")


def normalize_token(token: str) -> str:
    token = (token or "").strip().upper()
    return token or UNKNOWN_TOKEN


def make_event_id(source: str, token: str, date: datetime) -> str:
    """
    稳定 ID：source:TOKEN:YYYYMMDD
    同一来源、同一 token、同一天重复扫描得到同一个 id，推送标记才能跨轮次保留。
    """
    return f"{source}:{normalize_token(token)}:{day_key(date)}"


class GroupKey(NamedTuple):
    """跨来源去重的分组键（token, UTC 日期, 类型）"""

    token: str
    day: str
    type: str


@dataclass
class Event:
    # 主键：source:TOKEN:YYYYMMDD
    id: str

    # launchpool / listing / unlock / airdrop
    type: str

    # 来源名，如 binance / bybit / airdrops
    source: str

    # 大写 ticker；提取失败时为 UNKNOWN
    token: str

    # 展示用字段，不参与身份判定
    title: str

    # 事件发生时间（UTC），不是公告发布时间
    date: datetime

    url: str = ""
    details: str = ""

    # 推送标记：只会从 False 变 True
    sent_digest: bool = False
    sent_24h: bool = False
    sent_2h: bool = False

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.token, day_key(self.date), self.type)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["date"] = to_utc(self.date).isoformat()
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Event":
        date = d["date"]
        if isinstance(date, str):
            date = datetime.fromisoformat(date.replace("Z", "+00:00"))
        return cls(
            id=str(d["id"]),
            type=str(d["type"]),
            source=str(d["source"]),
            token=str(d.get("token") or UNKNOWN_TOKEN),
            title=str(d.get("title") or ""),
            date=to_utc(date),
            url=str(d.get("url") or ""),
            details=str(d.get("details") or ""),
            sent_digest=bool(d.get("sent_digest", False)),
            sent_24h=bool(d.get("sent_24h", False)),
            sent_2h=bool(d.get("sent_2h", False)),
        )


def new_event(
    type: str,
    source: str,
    token: str,
    title: str,
    date: datetime,
    url: str = "",
    details: str = "",
) -> Event:
    """扫描器统一用这个构造候选事件：规范化 token、时间转 UTC、生成 id。"""
    if type not in EVENT_TYPES:
        raise ValueError(f"unknown event type: {type!r}")
    token = normalize_token(token)
    date = to_utc(date)
    return Event(
        id=make_event_id(source, token, date),
        type=type,
        source=source,
        token=token,
        title=title,
        date=date,
        url=url,
        details=details,
    )
