"""
消息模板（纯文本，不用 Markdown，省去转义）
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, NamedTuple, Tuple

from calhub.models import AIRDROP, LAUNCHPOOL, LISTING, UNLOCK, Event, to_utc
from calhub.utils import truncate

# Telegram 单条消息上限 4096
MAX_MESSAGE_CHARS = 4000

# 周报单行上限，保证任意一行都能放进一条消息
MAX_DIGEST_LINE_CHARS = 500

_ICONS = {LAUNCHPOOL: "🌾", LISTING: "🆕", UNLOCK: "🔓", AIRDROP: "🪂"}

_LABELS = {
    LAUNCHPOOL: "LAUNCHPOOL",
    LISTING: "LISTING",
    UNLOCK: "UNLOCK",
    AIRDROP: "AIRDROP/TGE",
}

_SOURCE_NAMES = {
    "binance": "Binance",
    "bybit": "Bybit",
    "okx": "OKX",
    "tokenunlocks": "TokenUnlocks",
    "airdrops": "Airdrops.io",
}

# 周报里的分段顺序
_SECTIONS: Tuple[Tuple[str, str], ...] = (
    (LAUNCHPOOL, "🌾 LAUNCHPOOL"),
    (LISTING, "🆕 LISTINGS"),
    (UNLOCK, "🔓 UNLOCKS"),
    (AIRDROP, "🪂 TGE / AIRDROP"),
)


def source_name(source: str) -> str:
    return _SOURCE_NAMES.get(source) or source[:1].upper() + source[1:]


def _day(dt: datetime) -> str:
    return to_utc(dt).strftime("%d %b").lstrip("0")


class DigestPart(NamedTuple):
    """周报的一条消息，以及这条消息里实际出现的事件"""

    text: str
    events: List[Event]


def _digest_line(e: Event) -> str:
    line = f"• {_day(e.date)} — {source_name(e.source)}: {e.title}"
    if e.details:
        line += f" ({e.details})"
    return truncate(line, MAX_DIGEST_LINE_CHARS)


def format_digest(events: Iterable[Event], start: datetime, end: datetime) -> List[DigestPart]:
    """
    周报按 MAX_MESSAGE_CHARS 切成多条消息，不截断任何事件。
    每条 DigestPart 带上它包含的事件，发送成功后只标记这些。
    """
    events = list(events)
    title = f"📅 WEEKLY EVENTS | {_day(start)} – {_day(end)} {to_utc(end).year}"
    if not events:
        return [DigestPart(f"{title}\n\nNo events found for this week.", [])]

    footer = "ℹ️ Alerts follow 24h and 2h before each event"
    # 给最后一条的 footer 预留位置
    budget = MAX_MESSAGE_CHARS - len(footer) - 2

    parts: List[DigestPart] = []
    lines: List[str] = [title]
    size = len(title)
    included: List[Event] = []

    for ev_type, header in _SECTIONS:
        section = [e for e in events if e.type == ev_type]
        if not section:
            continue
        pending = ["", header]
        for e in section:
            add = pending + [_digest_line(e)]
            cost = sum(len(s) + 1 for s in add)
            if included and size + cost > budget:
                parts.append(DigestPart("\n".join(lines), included))
                lines = [f"{title} (cont.)"]
                size = len(lines[0])
                included = []
                add = ["", header, add[-1]]
                cost = sum(len(s) + 1 for s in add)
            lines.extend(add)
            size += cost
            included.append(e)
            pending = []

    lines.extend(["", footer])
    parts.append(DigestPart("\n".join(lines), included))
    return parts


def format_alert_24h(e: Event) -> str:
    lines = [
        f"⏰ TOMORROW | {_LABELS.get(e.type, e.type.upper())}",
        e.title,
        f"📅 {to_utc(e.date).strftime('%d %b %Y, %H:%M')} UTC",
    ]
    if e.url:
        lines.append(f"🔗 {e.url}")
    return "\n".join(lines)


def format_alert_2h(e: Event) -> str:
    lines = [
        f"🚨 IN 2 HOURS | {_LABELS.get(e.type, e.type.upper())}",
        f"{e.title} starts at {to_utc(e.date).strftime('%H:%M')} UTC",
    ]
    if e.url:
        lines.append(f"🔗 {e.url}")
    return "\n".join(lines)


def format_event_list(events: Iterable[Event], header: str) -> str:
    events = list(events)
    if not events:
        return f"{header}\n\nNo events found."

    lines = [header]
    for e in events:
        lines.append("")
        lines.append(f"{_ICONS.get(e.type, '📌')} {e.token} — {e.title}")
        lines.append(f"   📅 {to_utc(e.date).strftime('%d %b, %H:%M')} UTC")
        if e.details:
            lines.append(f"   ℹ️ {e.details}")
        if e.url:
            lines.append(f"   🔗 {e.url}")
    return truncate("\n".join(lines), MAX_MESSAGE_CHARS)


def format_help() -> str:
    return "\n".join([
        "🤖 Crypto Calendar Bot",
        "",
        "Commands:",
        "/today — events today",
        "/tomorrow — events tomorrow",
        "/week — events this week",
        "/listings — upcoming listings",
        "/unlocks — upcoming token unlocks",
        "/airdrops — upcoming airdrops / TGE",
        "/launchpools — upcoming launchpools",
        "/digest — weekly digest",
        "/refresh — rescan all sources now",
    ])
