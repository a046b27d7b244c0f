"""
Bybit 公告扫描（v5 announcements 接口，new_crypto 类型）。
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Union

import httpx

from calhub.models import LAUNCHPOOL, LISTING, Event, new_event
from calhub.scanners.helpers import (
    ensure_client,
    extract_event_date,
    extract_token,
    extract_token_from_parentheses,
    ms_to_datetime,
    scan_window,
)
from calhub.utils import now_utc, truncate

SOURCE = "bybit"

LISTING_URL = "https://api.bybit.com/v5/announcements/index?locale=en-US&limit=20&type=new_crypto"


def classify_title(title: str) -> Optional[str]:
    upper = (title or "").upper()
    if "LAUNCHPOOL" in upper:
        return LAUNCHPOOL
    if any(w in upper for w in ("LIST", "PERPETUAL", "FUTURES", "CONVERT")):
        return LISTING
    return None


def parse_announcements(obj: Union[Dict, List], now: Optional[datetime] = None) -> List[Event]:
    now = now or now_utc()
    lo, hi = scan_window(now)
    result = obj.get("result") if isinstance(obj, dict) else None
    items = result.get("list") if isinstance(result, dict) else None
    if not isinstance(items, list):
        items = []

    events: List[Event] = []
    for a in items:
        if not isinstance(a, dict):
            continue
        title = str(a.get("title") or "").strip()
        try:
            published = ms_to_datetime(a.get("dateTimestamp") or 0)
        except (TypeError, ValueError, OverflowError):
            continue

        event_date, _ = extract_event_date(title, published)
        if event_date < lo or event_date > hi:
            continue

        ev_type = classify_title(title)
        if ev_type is None:
            continue

        token = extract_token_from_parentheses(title) or extract_token(title)
        events.append(new_event(
            type=ev_type,
            source=SOURCE,
            token=token,
            title=title,
            date=event_date,
            url=str(a.get("url") or ""),
            details=truncate(str(a.get("description") or ""), 200),
        ))
    return events


class BybitScanner:
    name = SOURCE

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def scan(self) -> List[Event]:
        client = self._client or ensure_client()
        try:
            resp = await client.get(LISTING_URL)
            if resp.status_code != 200:
                print(f"[bybit] 响应失败 status={resp.status_code}")
                return []
            obj = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            print(f"[bybit] 请求失败: {e!r}")
            return []
        return parse_announcements(obj)
