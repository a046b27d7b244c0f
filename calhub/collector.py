from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Protocol, Sequence

from calhub.models import Event
from calhub.reconciler import DEFAULT_SOURCE_PRIORITY
from calhub.scanners.airdrops import AirdropsScanner
from calhub.scanners.binance import BinanceScanner
from calhub.scanners.bybit import BybitScanner
from calhub.scanners.okx import OKXScanner
from calhub.scanners.unlocks import UnlocksScanner

DEFAULT_TIMEOUT_SEC = 30.0
PER_SOURCE_TIMEOUT_SEC = 20.0


class Scanner(Protocol):
    """
    数据源适配器只需要一个能力：scan() 返回候选事件（出错时最好返回空列表）。
    超时由 collect() 在外面控制。
    """

    name: str

    async def scan(self) -> Sequence[Event]:
        ...


def _drain(task: "asyncio.Task") -> None:
    # 超时被取消的任务稍后才结束，这里把结果/异常取走，避免 "never retrieved" 警告
    if not task.cancelled():
        task.exception()


# -------------------- 总调度：并发扫描所有来源 --------------------

async def collect(
    scanners: Sequence[Scanner],
    timeout: float = DEFAULT_TIMEOUT_SEC,
    per_source_timeout: float = PER_SOURCE_TIMEOUT_SEC,
) -> List[Event]:
    """
    并发调用所有 scanner，每个来源最多等 min(per_source_timeout, timeout) 秒。
    - 超时的来源：取消并记一行日志，不等它真正退出
    - 抛异常的来源：记一行日志，当作 0 条
    任何来源失败都不会让整轮刷新失败；结果顺序不保证。
    """
    if not scanners:
        return []

    budget = max(0.0, min(per_source_timeout, timeout))
    tasks: Dict["asyncio.Task", Any] = {}
    for s in scanners:
        task = asyncio.ensure_future(s.scan())
        task.add_done_callback(_drain)
        tasks[task] = s

    done, pending = await asyncio.wait(tasks.keys(), timeout=budget)

    for task in pending:
        print(f"[collector] {_name(tasks[task])} 超时 {budget:.0f}s，本轮跳过")
        task.cancel()

    fresh: List[Event] = []
    for task in done:
        name = _name(tasks[task])
        if task.cancelled():
            print(f"[collector] {name} 任务已取消")
            continue
        err = task.exception()
        if err is not None:
            print(f"[collector] {name} 异常: {err!r}")
            continue
        got = list(task.result() or [])
        print(f"[collector] {name} 返回 {len(got)} 条")
        fresh.extend(got)

    return fresh


def _name(scanner: Any) -> str:
    return getattr(scanner, "name", None) or type(scanner).__name__


# -------------------- 按配置构造 scanner --------------------

def build_scanners(sources_cfg: Dict[str, Any]) -> List[Scanner]:
    """
    sources_cfg 形如 {"binance": {"enabled": true, "priority": 1}, ...}
    没有对应实现的来源跳过并打印一行。
    """
    known = {
        "binance": BinanceScanner,
        "bybit": BybitScanner,
        "okx": OKXScanner,
        "tokenunlocks": UnlocksScanner,
        "airdrops": AirdropsScanner,
    }

    scanners: List[Scanner] = []
    for name, src in (sources_cfg or {}).items():
        if not (src or {}).get("enabled", True):
            continue
        cls = known.get(name)
        if cls is None:
            print(f"[collector] 未实现的来源: {name}，跳过")
            continue
        scanners.append(cls())

    print(f"[collector] 已启用 {len(scanners)} 个来源: {', '.join(s.name for s in scanners)}")
    return scanners


def source_priorities(sources_cfg: Dict[str, Any]) -> Dict[str, int]:
    """配置里的 priority 覆盖默认值"""
    out = dict(DEFAULT_SOURCE_PRIORITY)
    for name, src in (sources_cfg or {}).items():
        if isinstance(src, dict) and src.get("priority") is not None:
            out[name] = int(src["priority"])
    return out
