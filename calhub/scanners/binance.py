"""
Binance 公告扫描：新币上线 + Launchpool 两个栏目（CMS JSON 接口）。
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import httpx

from calhub.models import LAUNCHPOOL, LISTING, Event, new_event
from calhub.scanners.helpers import (
    dedupe_by_id,
    ensure_client,
    extract_token,
    extract_token_from_parentheses,
    ms_to_datetime,
    scan_window,
)
from calhub.utils import now_utc

SOURCE = "binance"

LISTING_URL = (
    "https://www.binance.com/bapi/composite/v1/public/cms/article/list/query"
    "?type=1&pageNo=1&pageSize=20&catalogId=48"
)
LAUNCHPOOL_URL = (
    "https://www.binance.com/bapi/composite/v1/public/cms/article/list/query"
    "?type=1&pageNo=1&pageSize=20&catalogId=161"
)
ARTICLE_BASE = "https://www.binance.com/en/support/announcement/"

# 标题末尾的 "(2026-02-21)"
_TITLE_DATE_RE = re.compile(r"\((\d{4}-\d{2}-\d{2})\)")


def classify_title(title: str) -> Optional[str]:
    upper = (title or "").upper()
    # 下架、通知、暂停之类不算事件
    if any(w in upper for w in ("DELIST", "REMOVAL", "NOTICE ON", "SUSPEND")):
        return None
    if "LAUNCHPOOL" in upper:
        return LAUNCHPOOL
    if any(w in upper for w in ("WILL LIST", "WILL LAUNCH", "NEW LISTING", "PERPETUAL")):
        return LISTING
    return None


def _list(v: Any) -> List[Any]:
    return list(v) if isinstance(v, list) else []


def _articles(obj: Union[Dict, List]) -> List[Dict[str, Any]]:
    """接口有时把 articles 放在 data.catalogs[*] 里，有时直接放在 data 下"""
    if not isinstance(obj, dict):
        return []
    data = obj.get("data")
    if not isinstance(data, dict):
        return []
    out = _list(data.get("articles"))
    for cat in _list(data.get("catalogs")):
        if isinstance(cat, dict):
            out.extend(_list(cat.get("articles")))
    return [a for a in out if isinstance(a, dict)]


def parse_articles(obj: Union[Dict, List], now: Optional[datetime] = None) -> List[Event]:
    """
    把接口返回的 JSON 转成事件列表。

    参数:
        obj: 解析后的 JSON 对象
        now: 当前时间（测试时注入）

    返回:
        公告日期或事件日期落在 [-14d, +7d] 内的事件
    """
    now = now or now_utc()
    lo, hi = scan_window(now)
    events: List[Event] = []

    for a in _articles(obj):
        title = str(a.get("title") or "").strip()
        if not title:
            continue
        try:
            announced = ms_to_datetime(a.get("releaseDate") or 0)
        except (TypeError, ValueError, OverflowError):
            continue

        event_date = announced
        m = _TITLE_DATE_RE.search(title)
        if m:
            try:
                event_date = datetime.strptime(m.group(1), "%Y-%m-%d").replace(tzinfo=timezone.utc)
            except ValueError:
                pass

        if announced < lo and event_date < lo:
            continue
        if announced > hi and event_date > hi:
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
            url=ARTICLE_BASE + str(a.get("code") or ""),
        ))
    return events


class BinanceScanner:
    name = SOURCE

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def _fetch(self, url: str) -> Union[Dict, List]:
        client = self._client or ensure_client()
        resp = await client.get(url, headers={"Accept": "application/json"})
        if resp.status_code != 200:
            raise httpx.HTTPStatusError(
                f"status={resp.status_code}", request=resp.request, response=resp
            )
        return resp.json()

    async def scan(self) -> List[Event]:
        now = now_utc()
        events: List[Event] = []
        for url in (LISTING_URL, LAUNCHPOOL_URL):
            try:
                obj = await self._fetch(url)
            except (httpx.HTTPError, ValueError) as e:
                print(f"[binance] 请求失败 {url}: {e!r}")
                continue
            events.extend(parse_articles(obj, now))
        return dedupe_by_id(events)
