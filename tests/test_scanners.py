from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx

from calhub.models import AIRDROP, LAUNCHPOOL, LISTING, UNLOCK
from calhub.scanners import airdrops, binance, bybit, okx, unlocks
from calhub.scanners.helpers import dedupe_by_id, extract_event_date, extract_token
from calhub.utils import now_utc

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


# -------------------- helpers --------------------

def test_extract_token() -> None:
    assert extract_token("Binance Will List Pudgy Penguins (PENGU)") == "PENGU"
    assert extract_token("ZROUSDT Perpetual Contract Now Live") == "ZRO"
    assert extract_token("New pair: ORDIBTC") == "ORDI"
    assert extract_token("Introducing JUP on Binance Launchpool") == "JUP"
    assert extract_token("the quick brown fox") == ""


def test_extract_event_date() -> None:
    dt, found = extract_event_date("Trading opens 2026-01-15 10:00 UTC", NOW)
    assert found
    assert dt == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

    dt, found = extract_event_date("Deposits open February 21", NOW)
    assert found
    assert dt == datetime(2026, 2, 21, tzinfo=timezone.utc)

    assert extract_event_date("No date in here", NOW) == (NOW, False)
    # 比发布时间早一周以上的日期不可信
    assert extract_event_date("Recap of 2025-12-01", NOW) == (NOW, False)


def test_dedupe_by_id_keeps_first() -> None:
    a = binance.parse_articles(_binance_payload(), NOW)
    assert len(dedupe_by_id(a + a)) == len(a)


# -------------------- binance --------------------

def _binance_payload() -> dict:
    return {
        "code": "000000",
        "data": {
            "catalogs": [
                {
                    "catalogId": 48,
                    "articles": [
                        {
                            "code": "abc123",
                            "title": "Binance Will List Pudgy Penguins (PENGU) with Seed Tag Applied (2026-01-12)",
                            "releaseDate": _ms(datetime(2026, 1, 9, tzinfo=timezone.utc)),
                        },
                        {
                            "code": "zzz",
                            "title": "Notice on Removal of Spot Trading Pairs - 2026-01-11",
                            "releaseDate": _ms(datetime(2026, 1, 9, tzinfo=timezone.utc)),
                        },
                        {
                            "code": "old",
                            "title": "Binance Will List Ancient (OLD)",
                            "releaseDate": _ms(datetime(2025, 11, 1, tzinfo=timezone.utc)),
                        },
                    ],
                },
            ],
            "articles": [
                {
                    "code": "pool1",
                    "title": "Introducing Kernel (KERNEL) on Binance Launchpool",
                    "releaseDate": _ms(datetime(2026, 1, 8, 6, 30, tzinfo=timezone.utc)),
                },
            ],
        },
    }


def test_binance_parse_articles() -> None:
    events = {e.token: e for e in binance.parse_articles(_binance_payload(), NOW)}

    assert sorted(events) == ["KERNEL", "PENGU"]

    pengu = events["PENGU"]
    assert pengu.type == LISTING
    assert pengu.id == "binance:PENGU:20260112"
    assert pengu.date == datetime(2026, 1, 12, tzinfo=timezone.utc)
    assert pengu.url == binance.ARTICLE_BASE + "abc123"

    kernel = events["KERNEL"]
    assert kernel.type == LAUNCHPOOL
    assert kernel.date == datetime(2026, 1, 8, 6, 30, tzinfo=timezone.utc)


def test_binance_parse_garbage() -> None:
    assert binance.parse_articles([], NOW) == []
    assert binance.parse_articles({"data": None}, NOW) == []
    assert binance.parse_articles({"data": []}, NOW) == []
    assert binance.parse_articles({"data": {"catalogs": [[1], "x", None]}}, NOW) == []
    assert binance.parse_articles({"data": {"articles": 5, "catalogs": {"a": 1}}}, NOW) == []


def test_binance_scan_survives_one_failing_catalog() -> None:
    released = now_utc() - timedelta(days=1)

    def handler(request: httpx.Request) -> httpx.Response:
        if "catalogId=161" in str(request.url):
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"data": {"articles": [
            {"code": "x1", "title": "Binance Will List Foo (FOO)", "releaseDate": _ms(released)},
        ]}})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await binance.BinanceScanner(client).scan()

    events = asyncio.run(run())
    assert [e.token for e in events] == ["FOO"]


# -------------------- bybit --------------------

def test_bybit_parse_announcements() -> None:
    payload = {
        "retCode": 0,
        "result": {
            "total": 3,
            "list": [
                {
                    "title": "New Listing: LayerZero (ZRO) spot trading starts 2026-01-12 08:00 UTC",
                    "description": "x" * 300,
                    "url": "https://announcements.bybit.com/article/zro",
                    "dateTimestamp": _ms(datetime(2026, 1, 9, tzinfo=timezone.utc)),
                },
                {
                    "title": "Scheduled system maintenance",
                    "description": "",
                    "url": "https://announcements.bybit.com/article/mx",
                    "dateTimestamp": _ms(datetime(2026, 1, 9, tzinfo=timezone.utc)),
                },
                {
                    "title": "Bybit Will List Ancient (OLD)",
                    "url": "https://announcements.bybit.com/article/old",
                    "dateTimestamp": _ms(datetime(2025, 11, 1, tzinfo=timezone.utc)),
                },
            ],
        },
    }

    events = bybit.parse_announcements(payload, NOW)

    assert len(events) == 1
    ev = events[0]
    assert ev.id == "bybit:ZRO:20260112"
    assert ev.type == LISTING
    assert ev.date == datetime(2026, 1, 12, 8, 0, tzinfo=timezone.utc)
    assert ev.url.endswith("/zro")
    assert len(ev.details) == 200


def test_bybit_parse_garbage() -> None:
    assert bybit.parse_announcements([], NOW) == []
    assert bybit.parse_announcements({"result": None}, NOW) == []
    assert bybit.parse_announcements({"result": []}, NOW) == []
    assert bybit.parse_announcements({"result": {"list": "oops"}}, NOW) == []


def test_bybit_scan_http_error_returns_empty() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await bybit.BybitScanner(client).scan()

    assert asyncio.run(run()) == []


# -------------------- airdrops --------------------

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>airdrops.io</title>
    <item>
      <title>Monad (MON) Airdrop</title>
      <link>https://airdrops.io/monad/</link>
      <pubDate>Fri, 09 Jan 2026 10:00:00 +0000</pubDate>
      <description><![CDATA[<p>Claim <b>MON</b> now</p>]]></description>
    </item>
    <item>
      <title>Ancient Airdrop</title>
      <link>https://airdrops.io/ancient/</link>
      <pubDate>Sat, 01 Nov 2025 10:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Undated Airdrop</title>
      <link>https://airdrops.io/undated/</link>
    </item>
  </channel>
</rss>
"""


def test_airdrops_parse_feed() -> None:
    events = airdrops.parse_feed(RSS, NOW)

    assert len(events) == 1
    ev = events[0]
    assert ev.type == AIRDROP
    assert ev.id == "airdrops:MON:20260109"
    assert ev.date == datetime(2026, 1, 9, 10, 0, tzinfo=timezone.utc)
    assert ev.url == "https://airdrops.io/monad/"
    assert ev.details == "Claim MON now"


def test_airdrops_parse_not_xml() -> None:
    assert airdrops.parse_feed("not a feed at all", NOW) == []


# -------------------- okx --------------------

def _okx_payload() -> dict:
    return {
        "code": "0",
        "msg": "",
        "data": [
            {
                "details": [
                    {
                        "annType": "announcements-new-listings",
                        "title": "OKX to list Pudgy Penguins (PENGU) for spot trading on 2026-01-12 10:00 UTC",
                        "url": "https://www.okx.com/help/pengu",
                        "pTime": str(_ms(datetime(2026, 1, 9, tzinfo=timezone.utc))),
                    },
                    {
                        "annType": "announcements-new-listings",
                        "title": "OKX Jumpstart: stake to mine KERNEL",
                        "url": "https://www.okx.com/help/kernel",
                        "pTime": "",
                        "businessPTime": str(_ms(datetime(2026, 1, 8, 6, 0, tzinfo=timezone.utc))),
                    },
                    {
                        "title": "Scheduled maintenance",
                        "pTime": str(_ms(datetime(2026, 1, 9, tzinfo=timezone.utc))),
                    },
                    {
                        "title": "OKX will list Undated (UND)",
                        "pTime": "not-a-number",
                    },
                ],
            },
        ],
    }


def test_okx_parse_announcements() -> None:
    events = {e.token: e for e in okx.parse_announcements(_okx_payload(), NOW)}

    assert sorted(events) == ["KERNEL", "PENGU"]
    assert events["PENGU"].id == "okx:PENGU:20260112"
    assert events["PENGU"].type == LISTING
    assert events["PENGU"].date == datetime(2026, 1, 12, 10, 0, tzinfo=timezone.utc)
    assert events["PENGU"].url == "https://www.okx.com/help/pengu"
    assert events["KERNEL"].type == LAUNCHPOOL
    assert events["KERNEL"].date == datetime(2026, 1, 8, 6, 0, tzinfo=timezone.utc)


def test_okx_parse_error_and_garbage() -> None:
    payload = _okx_payload()
    payload["code"] = "50011"
    assert okx.parse_announcements(payload, NOW) == []
    assert okx.parse_announcements({"code": "0", "data": {"details": []}}, NOW) == []
    assert okx.parse_announcements({"code": "0", "data": [{"details": None}, "x"]}, NOW) == []
    assert okx.parse_announcements([], NOW) == []


# -------------------- tokenunlocks --------------------

def test_unlock_details() -> None:
    assert unlocks.format_unlock_details(15, 120_000_000) == "unlock 15% supply ~$120M"
    assert unlocks.format_unlock_details(2.5, 0) == "unlock 2.5% supply"
    assert unlocks.format_unlock_details(0, 450_000) == "~$450K"
    assert unlocks.format_unlock_details(0, 0) == ""


def test_unlocks_parse() -> None:
    payload = [
        {"token": "arb", "name": "Arbitrum", "unlockDate": "2026-01-16", "unlockPercent": 2.5, "unlockValueUSD": 92_400_000},
        {"token": "XYZ", "unlockDate": "2026-01-12", "unlockPercent": 10, "unlockValueUSD": 500_000},
        {"token": "OLD", "unlockDate": "2026-01-10", "unlockPercent": 1},
        {"token": "FAR", "unlockDate": "2026-01-30", "unlockPercent": 1},
        {"token": "BAD", "unlockDate": "soon"},
        {"token": "NODATE"},
        "garbage",
    ]

    events = {e.token: e for e in unlocks.parse_unlocks(payload, NOW)}

    assert sorted(events) == ["ARB", "XYZ"]
    arb = events["ARB"]
    assert arb.type == UNLOCK
    assert arb.id == "tokenunlocks:ARB:20260116"
    assert arb.title == "Arbitrum (ARB) token unlock"
    assert arb.url == "https://tokenunlocks.app/token/arb"
    assert arb.details == "unlock 2.5% supply ~$92M"
    assert events["XYZ"].title == "XYZ (XYZ) token unlock"
    assert events["XYZ"].details == "unlock 10% supply ~$500K"

    # 包在 data 下的也能解析
    assert len(unlocks.parse_unlocks({"data": payload}, NOW)) == 2
    assert unlocks.parse_unlocks({"data": "x"}, NOW) == []


def test_unlocks_scan_falls_back_to_second_endpoint() -> None:
    day = (now_utc() + timedelta(days=2)).strftime("%Y-%m-%d")
    hosts = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        if request.url.host == "token.unlocks.app":
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json=[{"token": "ARB", "unlockDate": day, "unlockPercent": 3}])

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await unlocks.UnlocksScanner(client).scan()

    events = asyncio.run(run())
    assert [e.token for e in events] == ["ARB"]
    assert hosts == ["token.unlocks.app", "tokenunlocks.app"]
