# -*- coding: utf-8 -*-
"""
calhub/commands.py
Telegram 命令：按需查询缓存并回复到发命令的 chat。
- /today /tomorrow /week /digest：按时间窗口列出事件
- /listings /unlocks /airdrops /launchpools：未来 30 天内某一类事件
- /refresh：立即重新扫描所有来源
- /start /help：命令列表
命令只读，不会置位任何推送标记（/digest 查看不等于周报已推送）。
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from calhub.aggregator import Aggregator
from calhub.filters import events_for_week, events_today, events_tomorrow, events_upcoming
from calhub.formatter import format_digest, format_event_list, format_help
from calhub.models import AIRDROP, LAUNCHPOOL, LISTING, UNLOCK
from calhub.utils import now_utc


class ChatSink(Protocol):
    async def deliver(self, text: str, chat_id: Optional[str] = None) -> bool:
        ...


class UpdateSource(Protocol):
    async def get_updates(self, offset: int, timeout: int = 30) -> Optional[Tuple[List[Dict[str, Any]], int]]:
        ...


def parse_command(text: str) -> str:
    """'/Today@MyBot foo' -> '/today'（群聊里命令会带 @机器人名）"""
    parts = (text or "").strip().split(maxsplit=1)
    if not parts:
        return ""
    return parts[0].split("@", 1)[0].lower()


class CommandHandler:
    def __init__(self, agg: Aggregator, sink: ChatSink, refresh_timeout: float = 30.0) -> None:
        self._agg = agg
        self._sink = sink
        self._refresh_timeout = refresh_timeout
        self._routes: Dict[str, Callable[[str], Awaitable[None]]] = {
            "/start": self._help,
            "/help": self._help,
            "/digest": self._digest,
            "/today": self._today,
            "/tomorrow": self._tomorrow,
            "/week": self._week,
            "/listings": partial(self._upcoming, LISTING, "🆕 Upcoming listings"),
            "/unlocks": partial(self._upcoming, UNLOCK, "🔓 Upcoming unlocks"),
            "/airdrops": partial(self._upcoming, AIRDROP, "🪂 Upcoming airdrops / TGE"),
            "/launchpools": partial(self._upcoming, LAUNCHPOOL, "🌾 Upcoming launchpools"),
            "/refresh": self._refresh,
        }

    @property
    def commands(self) -> List[str]:
        return list(self._routes)

    async def handle(self, chat_id: str, text: str) -> bool:
        """处理一条消息；不认识的命令忽略并返回 False"""
        cmd = parse_command(text)
        route = self._routes.get(cmd)
        if route is None:
            return False
        print(f"[commands] {cmd} from chat {chat_id}")
        await route(chat_id)
        return True

    async def _send(self, chat_id: str, text: str) -> None:
        if not await self._sink.deliver(text, chat_id):
            print(f"[commands] reply to chat {chat_id} failed")

    async def _help(self, chat_id: str) -> None:
        await self._send(chat_id, format_help())

    async def _digest(self, chat_id: str) -> None:
        now = now_utc()
        events = events_for_week(await self._agg.events(), now)
        for part in format_digest(events, now, now + timedelta(days=7)):
            await self._send(chat_id, part.text)

    async def _today(self, chat_id: str) -> None:
        events = events_today(await self._agg.events())
        await self._send(chat_id, format_event_list(events, "📅 Events today"))

    async def _tomorrow(self, chat_id: str) -> None:
        events = events_tomorrow(await self._agg.events())
        await self._send(chat_id, format_event_list(events, "📅 Events tomorrow"))

    async def _week(self, chat_id: str) -> None:
        events = events_for_week(await self._agg.events())
        await self._send(chat_id, format_event_list(events, "📅 Events this week"))

    async def _upcoming(self, event_type: str, header: str, chat_id: str) -> None:
        events = events_upcoming(await self._agg.events(), event_type)
        await self._send(chat_id, format_event_list(events, header))

    async def _refresh(self, chat_id: str) -> None:
        await self._send(chat_id, "🔄 Refreshing…")
        events = await self._agg.refresh(timeout=self._refresh_timeout)
        await self._send(chat_id, f"✅ Refreshed: {len(events)} events")


async def run_polling(
    source: UpdateSource,
    handler: CommandHandler,
    poll_timeout: int = 30,
    retry_sec: float = 5.0,
):
    """长轮询收命令；拉取失败等 retry_sec 再试，单条命令出错不影响后续"""
    print("[commands] polling started")
    offset = 0
    try:
        while True:
            got = await source.get_updates(offset, poll_timeout)
            if got is None:
                await asyncio.sleep(retry_sec)
                continue
            updates, offset = got
            for u in updates:
                msg = u.get("message") or {}
                text = str(msg.get("text") or "")
                chat_id = (msg.get("chat") or {}).get("id")
                if chat_id is None or not text.startswith("/"):
                    continue
                try:
                    await handler.handle(str(chat_id), text)
                except Exception as e:
                    print(f"[commands] {text!r} error: {e!r}")
    except asyncio.CancelledError:
        print("[commands] cancelled")
        raise
    finally:
        print("[commands] polling finished")
