"""
airdrops.io RSS 扫描：发布日期即事件日期。
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import Any, List, Optional

import feedparser
import httpx

from calhub.models import AIRDROP, Event, new_event
from calhub.scanners.helpers import ensure_client, extract_token, scan_window
from calhub.utils import now_utc, strip_html, truncate

SOURCE = "airdrops"

FEED_URL = "https://airdrops.io/feed/"

# 单次最多读 2MB
MAX_BODY_BYTES = 2 << 20


def _entry_date(entry: Any) -> Optional[datetime]:
    """feedparser 解析出的 struct_time 是 UTC"""
    for key in ("published_parsed", "updated_parsed"):
        st = entry.get(key)
        if st:
            return datetime.fromtimestamp(calendar.timegm(st), tz=timezone.utc)
    return None


def parse_feed(text: str, now: Optional[datetime] = None) -> List[Event]:
    """
    解析 RSS 文本，返回 [-14d, +7d] 内的空投事件。
    没有日期或日期无法解析的条目直接跳过。
    """
    now = now or now_utc()
    lo, hi = scan_window(now)
    events: List[Event] = []

    feed = feedparser.parse(text)
    for entry in feed.get("entries", []):
        title = (entry.get("title") or "").strip()
        if not title:
            continue
        event_date = _entry_date(entry)
        if event_date is None:
            print(f"[airdrops] 无法解析日期: {title[:60]}")
            continue
        if event_date < lo or event_date > hi:
            continue

        events.append(new_event(
            type=AIRDROP,
            source=SOURCE,
            token=extract_token(title),
            title=title,
            date=event_date,
            url=(entry.get("link") or "").strip(),
            details=truncate(strip_html(entry.get("summary") or entry.get("description") or ""), 200),
        ))
    return events


class AirdropsScanner:
    name = SOURCE

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def scan(self) -> List[Event]:
        client = self._client or ensure_client()
        try:
            resp = await client.get(
                FEED_URL,
                headers={"Accept": "application/rss+xml, application/xml, text/xml"},
            )
        except httpx.HTTPError as e:
            print(f"[airdrops] 请求失败: {e!r}")
            return []
        if resp.status_code != 200:
            print(f"[airdrops] 响应失败 status={resp.status_code}")
            return []
        return parse_feed(resp.text[:MAX_BODY_BYTES])
