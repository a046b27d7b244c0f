from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from calhub.aggregator import Aggregator
from calhub.commands import CommandHandler, parse_command, run_polling
from calhub.models import LISTING, UNLOCK, Event, new_event
from calhub.storage import CacheStore
from calhub.utils import now_utc

TODAY = now_utc().replace(hour=0, minute=0, second=0, microsecond=0)


class FakeChatSink:
    def __init__(self) -> None:
        self.sent: List[Tuple[Optional[str], str]] = []

    async def deliver(self, text: str, chat_id: Optional[str] = None) -> bool:
        self.sent.append((chat_id, text))
        return True


class FakeScanner:
    name = "binance"

    def __init__(self, events: List[Event]) -> None:
        self.events = events

    async def scan(self) -> List[Event]:
        return list(self.events)


async def _handler(tmp_path, events: List[Event], scanners=()) -> Tuple[CommandHandler, Aggregator, FakeChatSink]:
    store = CacheStore(tmp_path / "events.db")
    await store.open()
    await store.merge(events)
    agg = Aggregator(store, list(scanners))
    sink = FakeChatSink()
    return CommandHandler(agg, sink, refresh_timeout=5.0), agg, sink


def _events() -> List[Event]:
    return [
        new_event(LISTING, "binance", "NOWX", "Binance Will List Nowx (NOWX)", TODAY),
        new_event(LISTING, "binance", "TMRW", "Binance Will List Tmrw (TMRW)", TODAY + timedelta(days=1, hours=12)),
        new_event(UNLOCK, "tokenunlocks", "ARB", "Arbitrum (ARB) token unlock", TODAY + timedelta(days=3)),
    ]


def test_parse_command() -> None:
    assert parse_command("/Today@CalendarBot extra words") == "/today"
    assert parse_command("  /week  ") == "/week"
    assert parse_command("") == ""


def test_today_tomorrow_and_by_type(tmp_path) -> None:
    async def run():
        handler, agg, sink = await _handler(tmp_path, _events())
        for cmd in ("/today@CalendarBot", "/tomorrow", "/unlocks", "/launchpools"):
            assert await handler.handle("77", cmd)
        await agg.store.close()
        return sink.sent

    sent = asyncio.run(run())
    assert [chat for chat, _ in sent] == ["77"] * 4
    today, tomorrow, unlocks, launchpools = [text for _, text in sent]
    assert "NOWX" in today and "TMRW" not in today
    assert "TMRW" in tomorrow and "NOWX" not in tomorrow
    assert "ARB" in unlocks and "NOWX" not in unlocks
    assert launchpools.endswith("No events found.")


def test_unknown_command_is_ignored(tmp_path) -> None:
    async def run():
        handler, agg, sink = await _handler(tmp_path, _events())
        handled = await handler.handle("77", "/nope")
        await agg.store.close()
        return handled, sink.sent

    assert asyncio.run(run()) == (False, [])


def test_digest_command_does_not_mark_events(tmp_path) -> None:
    async def run():
        handler, agg, sink = await _handler(tmp_path, _events())
        await handler.handle("77", "/digest")
        out = await agg.events()
        await agg.store.close()
        return sink.sent, out

    sent, out = asyncio.run(run())
    assert len(sent) == 1
    assert "WEEKLY EVENTS" in sent[0][1]
    assert not any(e.sent_digest for e in out)


def test_refresh_command_rescans(tmp_path) -> None:
    fresh = new_event(LISTING, "binance", "NEW", "Binance Will List New (NEW)", TODAY + timedelta(days=2))

    async def run():
        handler, agg, sink = await _handler(tmp_path, _events(), scanners=[FakeScanner([fresh])])
        await handler.handle("77", "/refresh")
        await agg.store.close()
        return sink.sent

    sent = asyncio.run(run())
    assert [text for _, text in sent] == ["🔄 Refreshing…", "✅ Refreshed: 4 events"]


def test_help_on_start(tmp_path) -> None:
    async def run():
        handler, agg, sink = await _handler(tmp_path, [])
        await handler.handle("77", "/start")
        await agg.store.close()
        return sink.sent

    (chat, text), = asyncio.run(run())
    assert "/refresh" in text


class FakeUpdates:
    def __init__(self, batches: List[Any]) -> None:
        self.batches = list(batches)
        self.offsets: List[int] = []

    async def get_updates(self, offset: int, timeout: int = 30):
        self.offsets.append(offset)
        if not self.batches:
            await asyncio.sleep(3600)
        return self.batches.pop(0)


class RecordingHandler:
    def __init__(self) -> None:
        self.seen: List[Tuple[str, str]] = []

    async def handle(self, chat_id: str, text: str) -> bool:
        self.seen.append((chat_id, text))
        if text == "/boom":
            raise RuntimeError("handler failed")
        return True


def _update(update_id: int, text: str, chat: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"update_id": update_id, "message": {"text": text, "chat": chat if chat is not None else {"id": 7}}}


def test_polling_dispatches_commands_and_advances_offset() -> None:
    updates = FakeUpdates([
        None,
        ([
            _update(1, "/boom"),
            _update(2, "hello there"),
            _update(3, "/today", chat={}),
            _update(4, "/week"),
        ], 5),
    ])
    handler = RecordingHandler()

    async def run():
        task = asyncio.create_task(run_polling(updates, handler, retry_sec=0.01))
        await asyncio.sleep(0.2)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())
    # 拉取失败后重试；一条命令出错不影响后面的
    assert updates.offsets[:3] == [0, 0, 5]
    assert handler.seen == [("7", "/boom"), ("7", "/week")]
