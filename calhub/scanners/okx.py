"""
OKX 公告扫描（v5 support/announcements，新币上线栏目）。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx

from calhub.models import LAUNCHPOOL, LISTING, Event, new_event
from calhub.scanners.helpers import (
    USER_AGENT,
    ensure_client,
    extract_event_date,
    extract_token,
    extract_token_from_parentheses,
    ms_to_datetime,
    scan_window,
)
from calhub.utils import now_utc

SOURCE = "okx"

LISTING_URL = (
    "https://www.okx.com/api/v5/support/announcements"
    "?page=1&limit=20&annType=announcements-new-listings"
)


def classify_title(title: str) -> Optional[str]:
    upper = (title or "").upper()
    if "JUMPSTART" in upper:
        return LAUNCHPOOL
    if any(w in upper for w in ("TO LIST", "WILL LIST", "LISTING", "TO SUPPORT")):
        return LISTING
    return None


def _details(obj: Union[Dict, List]) -> List[Dict[str, Any]]:
    """data 是分组列表，每组的 details 才是公告；code != "0" 视为接口报错"""
    if not isinstance(obj, dict) or str(obj.get("code", "")) != "0":
        return []
    out: List[Dict[str, Any]] = []
    groups = obj.get("data")
    for group in groups if isinstance(groups, list) else []:
        details = group.get("details") if isinstance(group, dict) else None
        if isinstance(details, list):
            out.extend(d for d in details if isinstance(d, dict))
    return out


def _published(d: Dict[str, Any]) -> Optional[datetime]:
    # pTime / businessPTime 是字符串形式的毫秒时间戳
    for key in ("pTime", "businessPTime"):
        raw = str(d.get(key) or "")
        if raw.isdigit() and int(raw) > 0:
            return ms_to_datetime(int(raw))
    return None


def parse_announcements(obj: Union[Dict, List], now: Optional[datetime] = None) -> List[Event]:
    now = now or now_utc()
    lo, hi = scan_window(now)
    events: List[Event] = []

    for d in _details(obj):
        title = str(d.get("title") or "").strip()
        published = _published(d)
        if not title or published is None:
            continue

        event_date, _ = extract_event_date(title, published)
        if event_date < lo or event_date > hi:
            continue

        ev_type = classify_title(title)
        if ev_type is None:
            continue

        events.append(new_event(
            type=ev_type,
            source=SOURCE,
            token=extract_token_from_parentheses(title) or extract_token(title),
            title=title,
            date=event_date,
            url=str(d.get("url") or ""),
        ))
    return events


class OKXScanner:
    name = SOURCE

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def scan(self) -> List[Event]:
        client = self._client or ensure_client()
        try:
            resp = await client.get(
                LISTING_URL,
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            )
            if resp.status_code != 200:
                print(f"[okx] 响应失败 status={resp.status_code}")
                return []
            obj = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            print(f"[okx] 请求失败: {e!r}")
            return []
        if isinstance(obj, dict) and str(obj.get("code", "")) != "0":
            print(f"[okx] 接口报错 code={obj.get('code')!r} msg={obj.get('msg')!r}")
            return []
        return parse_announcements(obj)
