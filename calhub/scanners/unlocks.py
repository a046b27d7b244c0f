# -*- coding: utf-8 -*-
"""
代币解锁扫描（tokenunlocks.app）。
- 接口直接返回解锁列表：token / name / unlockDate / unlockPercent / unlockValueUSD
- 只保留 [now, now + 7d] 内的解锁；unlockDate 是纯日期，按 UTC 零点处理
- 主接口失败时换备用接口
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import httpx

from calhub.models import UNLOCK, Event, new_event, normalize_token
from calhub.scanners.helpers import USER_AGENT, ensure_client
from calhub.utils import now_utc

SOURCE = "tokenunlocks"

UNLOCKS_URLS = (
    "https://token.unlocks.app/api/v1/upcoming?days=7",
    "https://tokenunlocks.app/api/unlocks?days=7",
)
TOKEN_PAGE = "https://tokenunlocks.app/token/"

UNLOCK_HORIZON = timedelta(days=7)


def format_unlock_details(pct: float, value_usd: float) -> str:
    """'unlock 15% supply ~$120M'；两项都没有时返回空串"""
    parts: List[str] = []
    if pct > 0:
        parts.append(f"unlock {pct:.0f}% supply" if pct == int(pct) else f"unlock {pct:.1f}% supply")
    if value_usd > 0:
        if value_usd >= 1_000_000:
            parts.append(f"~${value_usd / 1_000_000:.0f}M")
        else:
            parts.append(f"~${value_usd / 1_000:.0f}K")
    return " ".join(parts)


def _num(v: Any) -> float:
    try:
        return float(v or 0)
    except (TypeError, ValueError):
        return 0.0


def parse_unlocks(obj: Union[Dict, List], now: Optional[datetime] = None) -> List[Event]:
    now = now or now_utc()
    horizon = now + UNLOCK_HORIZON
    if isinstance(obj, dict):
        # 部分镜像把列表包在 data 下
        obj = obj.get("data") or []
    if not isinstance(obj, list):
        return []

    events: List[Event] = []
    for u in obj:
        if not isinstance(u, dict):
            continue
        raw_date = str(u.get("unlockDate") or "").strip()
        if not raw_date:
            continue
        try:
            date = datetime.strptime(raw_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            print(f"[tokenunlocks] 无法解析 unlockDate={raw_date!r}")
            continue
        if date < now or date > horizon:
            continue

        token = normalize_token(str(u.get("token") or ""))
        name = str(u.get("name") or "").strip() or token
        events.append(new_event(
            type=UNLOCK,
            source=SOURCE,
            token=token,
            title=f"{name} ({token}) token unlock",
            date=date,
            url=TOKEN_PAGE + token.lower(),
            details=format_unlock_details(_num(u.get("unlockPercent")), _num(u.get("unlockValueUSD"))),
        ))
    return events


class UnlocksScanner:
    name = SOURCE

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def scan(self) -> List[Event]:
        client = self._client or ensure_client()
        for url in UNLOCKS_URLS:
            try:
                resp = await client.get(url, headers={"Accept": "application/json", "User-Agent": USER_AGENT})
                if resp.status_code != 200:
                    print(f"[tokenunlocks] {url} 响应失败 status={resp.status_code}")
                    continue
                return parse_unlocks(resp.json())
            except (httpx.HTTPError, ValueError) as e:
                print(f"[tokenunlocks] {url} 请求失败: {e!r}")
        return []
