# calhub/main.py
# 串起：aggregator(refresh) -> scheduler(digest / 24h / 2h) -> notifier，外加 Telegram 命令轮询
# 用法：python -m calhub.main --config ops/config.yml

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Optional, Union

import yaml

from calhub.aggregator import Aggregator
from calhub.commands import CommandHandler, run_polling
from calhub.collector import build_scanners, source_priorities
from calhub.notifier import Notifier
from calhub.scanners.helpers import close_client
from calhub.scheduler import run_checks, send_digest_now
from calhub.storage import CacheStore

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_CFG = {
    "telegram": {
        "token": "",
        "chat_id": "",
        "commands": True,
    },
    "notifier": {
        "notify_channels": ["telegram"],
        "retry": {"max_times": 3, "backoff_sec": 2},
    },
    "schedule": {
        "digest_weekday": "monday",
        "digest_time_utc": "09:00",
        "check_interval_sec": 3600,
    },
    "scanner": {
        "refresh_interval_minutes": 60,
        "timeout_sec": 30,
        "per_source_timeout_sec": 20,
    },
    "cache": {
        "path": "data/events.db",
        "retention_hours": 48,
    },
    "sources": {
        "binance": {"enabled": True, "priority": 1},
        "bybit": {"enabled": True, "priority": 2},
        "okx": {"enabled": True, "priority": 3},
        "tokenunlocks": {"enabled": True, "priority": 4},
        "airdrops": {"enabled": True, "priority": 5},
    },
}


def load_cfg(path: Optional[Union[str, Path]] = None) -> dict:
    """ops/config.yml 可选；不存在或解析失败就用默认。每个顶层段落做一层浅合并。"""
    cfg_path = Path(path) if path else ROOT / "ops" / "config.yml"
    out = {k: dict(v) for k, v in DEFAULT_CFG.items()}
    if not cfg_path.exists():
        print(f"[main] 未找到 {cfg_path}，使用默认配置")
        return out
    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"[main] 读取 {cfg_path} 失败，使用默认。err={e}")
        return out
    if not isinstance(data, dict):
        print(f"[main] {cfg_path} 顶层不是映射，使用默认")
        return out
    for key, val in data.items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = {**out[key], **val}
        else:
            out[key] = val
    return out


def build_aggregator(cfg: dict) -> Aggregator:
    cache_cfg = cfg.get("cache") or {}
    scanner_cfg = cfg.get("scanner") or {}
    sources = cfg.get("sources") or {}

    cache_path = Path(cache_cfg.get("path", "data/events.db"))
    if not cache_path.is_absolute():
        cache_path = ROOT / cache_path

    store = CacheStore(cache_path, retention_hours=int(cache_cfg.get("retention_hours", 48)))
    return Aggregator(
        store,
        build_scanners(sources),
        priority=source_priorities(sources),
        per_source_timeout=float(scanner_cfg.get("per_source_timeout_sec", 20)),
    )


async def run_refresher(agg: Aggregator, every_sec: int, timeout: float):
    """定期刷新事件缓存"""
    print("[refresher] started")
    try:
        while True:
            await asyncio.sleep(every_sec)
            try:
                print("[refresher] refreshing data…")
                events = await agg.refresh(timeout=timeout)
                print(f"[refresher] {len(events)} events in cache")
            except Exception as e:
                print(f"[refresher] refresh error: {e}")
    except asyncio.CancelledError:
        print("[refresher] cancelled")
        raise
    finally:
        print("[refresher] finished")


async def run_alert_loop(agg: Aggregator, notifier: Notifier, schedule_cfg: dict, every_sec: float):
    """
    定期检查周报 / 24h / 2h 是否该发；启动时先检查一次。
    按固定节拍运行（start, start+every, ...），检查本身的耗时不累积。
    """
    print("[scheduler] started")
    loop = asyncio.get_running_loop()
    next_at = loop.time()
    try:
        while True:
            try:
                sent = await run_checks(agg, notifier, schedule_cfg)
                if any(sent.values()):
                    print(f"[scheduler] sent {sent}")
            except Exception as e:
                print(f"[scheduler] error: {e}")
            next_at += every_sec
            await asyncio.sleep(max(0.0, next_at - loop.time()))
    except asyncio.CancelledError:
        print("[scheduler] cancelled")
        raise
    finally:
        print("[scheduler] finished")


async def main(
    run_seconds: int = 0,
    cfg_path: Optional[str] = None,
    digest_now: bool = False,
    test_push: bool = False,
):
    cfg = load_cfg(cfg_path)
    notifier = Notifier(cfg)

    if test_push:
        ok = await notifier.deliver("✅ calendar-hub notifier is online")
        print(f"[main] test push -> {ok}")
        await notifier.close()
        return

    agg = build_aggregator(cfg)
    await agg.store.open()

    scanner_cfg = cfg.get("scanner") or {}
    schedule_cfg = cfg.get("schedule") or {}
    timeout = float(scanner_cfg.get("timeout_sec", 30))

    tasks = []
    try:
        if digest_now:
            n = await send_digest_now(agg, notifier, timeout=timeout)
            print(f"[main] digest sent with {n} events")
            return

        print("[main] initial data refresh…")
        events = await agg.refresh(timeout=timeout)
        print(f"[main] loaded {len(events)} events")

        refresh_sec = int(scanner_cfg.get("refresh_interval_minutes", 60)) * 60
        check_sec = int(schedule_cfg.get("check_interval_sec", 3600))
        tasks.append(asyncio.create_task(run_refresher(agg, refresh_sec, timeout)))
        tasks.append(asyncio.create_task(run_alert_loop(agg, notifier, schedule_cfg, check_sec)))

        tg_cfg = cfg.get("telegram") or {}
        if tg_cfg.get("commands", True) and notifier.can_poll:
            await notifier.delete_webhook()
            handler = CommandHandler(agg, notifier, refresh_timeout=timeout)
            tasks.append(asyncio.create_task(run_polling(notifier, handler)))

        if run_seconds and run_seconds > 0:
            print(f"[main] running for {run_seconds}s …")
            await asyncio.sleep(run_seconds)
        else:
            # 0 或负数 => 永久运行
            await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        print("[main] cancelled")
        raise
    finally:
        # 优雅退出
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await agg.store.close()
        await notifier.close()
        await close_client()
        print("[main] finished")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default=None, help="配置文件路径，默认 ops/config.yml")
    parser.add_argument("--run-seconds", type=int, default=0)
    parser.add_argument("--digest-now", action="store_true", help="立即刷新并发送周报后退出")
    parser.add_argument("--test", action="store_true", help="发送一条测试消息后退出")
    args = parser.parse_args()

    asyncio.run(main(
        run_seconds=args.run_seconds,
        cfg_path=args.config,
        digest_now=args.digest_now,
        test_push=args.test,
    ))
