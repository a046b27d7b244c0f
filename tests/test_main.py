from __future__ import annotations

import asyncio

from calhub import main as calmain


def test_alert_loop_runs_at_fixed_rate_and_survives_errors(monkeypatch) -> None:
    calls = []

    async def fake_checks(agg, sink, schedule_cfg, now=None):
        calls.append(asyncio.get_running_loop().time())
        # 每轮检查本身耗时 0.08s，节拍 0.2s
        await asyncio.sleep(0.08)
        if len(calls) == 1:
            raise RuntimeError("telegram exploded")
        return {"digest": 0, "alert24h": 0, "alert2h": 0}

    monkeypatch.setattr(calmain, "run_checks", fake_checks)

    async def run():
        task = asyncio.create_task(calmain.run_alert_loop(None, None, {}, 0.2))
        await asyncio.sleep(0.75)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())

    # 第一轮抛异常后循环继续
    assert len(calls) >= 4
    # 固定节拍：第 4 次约在 0.6s；若按"检查完再睡 0.2s"会漂到 0.84s
    assert calls[3] - calls[0] < 0.7


def test_refresher_survives_errors() -> None:
    class FlakyAgg:
        def __init__(self) -> None:
            self.calls = 0

        async def refresh(self, timeout: float = 30.0):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("boom")
            return []

    agg = FlakyAgg()

    async def run():
        task = asyncio.create_task(calmain.run_refresher(agg, 0.05, 1.0))
        await asyncio.sleep(0.3)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())
    assert agg.calls >= 2
