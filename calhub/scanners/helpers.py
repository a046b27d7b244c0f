# -*- coding: utf-8 -*-
"""
扫描器公共工具：
- 从公告标题里提取 ticker
- 从公告标题里提取事件日期（公告发布时间 != 事件发生时间）
- 共享 httpx AsyncClient
- 采集窗口判断、按 id 去重
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

import httpx

from calhub.models import Event

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# 交易所一般提前 7–14 天公告
SCAN_LOOKBACK = timedelta(days=14)
SCAN_LOOKAHEAD = timedelta(days=7)

_CLIENT: Optional[httpx.AsyncClient] = None


def ensure_client() -> httpx.AsyncClient:
    """全局复用一个 httpx AsyncClient，避免频繁建连。"""
    global _CLIENT
    if _CLIENT is None or _CLIENT.is_closed:
        _CLIENT = httpx.AsyncClient(
            timeout=15.0,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
    return _CLIENT


async def close_client() -> None:
    global _CLIENT
    if _CLIENT is not None:
        await _CLIENT.aclose()
        _CLIENT = None


def scan_window(now: datetime) -> Tuple[datetime, datetime]:
    return now - SCAN_LOOKBACK, now + SCAN_LOOKAHEAD


def dedupe_by_id(events: Iterable[Event]) -> List[Event]:
    """同一来源多个接口可能返回同一事件（如 Binance 的 listing 和 launchpool 栏目），保留第一条"""
    seen = set()
    out: List[Event] = []
    for ev in events:
        if ev.id in seen:
            continue
        seen.add(ev.id)
        out.append(ev)
    return out


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(int(ms) // 1000, tz=timezone.utc)


# -------------------- 日期提取 --------------------

# "2026-02-21"，可选 "10:00" 和 "UTC"
_ISO_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b(?:\s+(\d{1,2}:\d{2})(?:\s*UTC)?)?")

_MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sep": 9, "october": 10, "oct": 10,
    "november": 11, "nov": 11, "december": 12, "dec": 12,
}

_EN_DATE_RE = re.compile(
    r"\b(January|February|March|April|May|June|July|August|September|October|November|December"
    r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+(\d{1,2})\b"
)


def extract_event_date(title: str, fallback: datetime) -> Tuple[datetime, bool]:
    """
    从标题中找事件日期：先找 ISO 日期（可带时间），再找英文月份 "February 21"。
    找不到、或者比发布日期早 7 天以上时返回 (fallback, False)。
    """
    earliest = fallback - timedelta(days=7)

    m = _ISO_DATE_RE.search(title or "")
    if m:
        try:
            dt = datetime.strptime(m.group(1), "%Y-%m-%d").replace(tzinfo=timezone.utc)
            if m.group(2):
                hh, mm = m.group(2).split(":")
                dt = dt.replace(hour=int(hh), minute=int(mm))
            if dt >= earliest:
                return dt, True
        except ValueError:
            pass

    m = _EN_DATE_RE.search(title or "")
    if m:
        try:
            dt = datetime(fallback.year, _MONTHS[m.group(1).lower()], int(m.group(2)), tzinfo=timezone.utc)
            if dt >= earliest:
                return dt, True
        except ValueError:
            pass

    return fallback, False


# -------------------- ticker 提取 --------------------

# "(BIRB)"；排除 "(2026-02-21)" 这种
_PAREN_RE = re.compile(r"\(([A-Z][A-Z0-9]{1,9})\)")
_USDT_PAIR_RE = re.compile(r"\b([A-Z]{2,10})USDT\b")
_BTC_PAIR_RE = re.compile(r"\b([A-Z]{2,10})BTC\b")
_UPPER_WORD_RE = re.compile(r"\b([A-Z]{2,10})\b")

# 不是 ticker 的大写词
STOP_WORDS = frozenset({
    "WILL", "LIST", "LISTS", "THE", "AND", "FOR", "WITH", "FROM", "NEW", "NOW",
    "OKX", "BYBIT", "BINANCE", "SPOT", "ZONE", "IN", "ON", "OF", "TO", "IS",
    "TGE", "IEO", "ICO", "LAUNCHPOOL", "JUMPSTART", "INNOVATION", "TRADING",
    "PAIRS", "PAIR", "MARGIN", "FUTURES", "PRE", "MARKET", "CONTRACT", "PERPETUAL",
    "LAUNCH", "MULTIPLE", "MARGINED", "USD", "NOTICE", "REMOVAL", "BSC",
    "EEA", "SUPPORT", "CONVERT", "STANDARD", "UP", "LEVERAGE", "MAIN", "EARN",
})


def extract_token_from_parentheses(title: str) -> str:
    m = _PAREN_RE.search(title or "")
    return m.group(1) if m else ""


def extract_token(title: str) -> str:
    """
    顺序：(TICKER) -> XYZUSDT -> XYZBTC -> 第一个不在停用词里的大写词。
    都没有返回空串，由调用方换成 UNKNOWN。
    """
    title = title or ""
    tok = extract_token_from_parentheses(title)
    if tok:
        return tok

    for pattern in (_USDT_PAIR_RE, _BTC_PAIR_RE):
        m = pattern.search(title)
        if m and m.group(1) not in STOP_WORDS:
            return m.group(1)

    for word in _UPPER_WORD_RE.findall(title):
        if word not in STOP_WORDS:
            return word
    return ""
