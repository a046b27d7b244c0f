"""
calhub/notifier.py
推送模块：把调度器生成的文本发到 Telegram（或回退到 stdout）
- 只关心 deliver(text) 成功与否，消息格式由 formatter.py 负责
- 429/5xx 按 retry_after 或指数退避重试；其它 4xx 直接失败
- 失败只返回 False，不抛异常，由调度器决定是否置位推送标记
"""

from __future__ import annotations

import asyncio
import os
import random
from typing import Any, Dict, List, Optional, Tuple

import httpx


# ------------------------------------------------------------
# 渠道适配器
# ------------------------------------------------------------

class _TelegramAdapter:
    def __init__(self, token: str, chat_id: str, retry: Dict[str, Any]):
        self._token = token
        self._chat_id = chat_id
        self._retry = retry or {}
        self._client: Optional[httpx.AsyncClient] = None

    def _client_get(self) -> httpx.AsyncClient:
        # 复用连接池；trust_env 读取系统代理/证书
        if self._client is None:
            timeout = httpx.Timeout(connect=5.0, read=10.0, write=10.0, pool=30.0)
            self._client = httpx.AsyncClient(timeout=timeout, trust_env=True)
        return self._client

    def _url(self, method: str) -> str:
        return f"https://api.telegram.org/bot{self._token}/{method}"

    async def send(self, text: str, chat_id: Optional[str] = None) -> bool:
        """
        发送 Telegram；尊重 429/5xx；最终失败才简短打印。
        chat_id 为空时发到配置的 chat（命令回复会指定来源 chat）。
        """
        url = self._url("sendMessage")
        payload = {
            "chat_id": chat_id or self._chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }

        max_times = max(1, int(self._retry.get("max_times", 3)))
        backoff = float(self._retry.get("backoff_sec", 2))

        last_err = None

        for attempt in range(1, max_times + 1):
            try:
                r = await self._client_get().post(url, data=payload)
                # Telegram 常见：非 200 也会给 JSON
                try:
                    data = r.json()
                except ValueError:
                    data = None

                if r.status_code == 200 and (not isinstance(data, dict) or data.get("ok", True) is True):
                    return True

                # 429/5xx：可重试
                if r.status_code == 429 or 500 <= r.status_code < 600:
                    retry_after = 0
                    if isinstance(data, dict):
                        retry_after = int((data.get("parameters") or {}).get("retry_after", 0) or 0)
                    last_err = f"http {r.status_code}"
                    if attempt < max_times:
                        # 优先使用服务端给的 retry_after，上限 30s
                        sleep_sec = retry_after or (backoff * (2 ** (attempt - 1)))
                        await asyncio.sleep(min(sleep_sec, 30) + random.uniform(0, 0.6))
                    continue

                # 其他 4xx：直接失败，记录头 300 字符即可
                last_err = f"http {r.status_code}: {(r.text or '')[:300]}"
                break

            except httpx.HTTPError as e:
                last_err = repr(e)
                if attempt < max_times:
                    sleep_sec = backoff * (2 ** (attempt - 1)) + random.uniform(0, 0.6)
                    await asyncio.sleep(min(sleep_sec, 20))

        print(f"[notifier] telegram send failed after {attempt} attempts: {last_err}")
        return False

    async def delete_webhook(self) -> bool:
        """设置了 webhook 时 getUpdates 收不到消息，轮询前先删掉（没设置也返回 ok）"""
        try:
            r = await self._client_get().post(self._url("deleteWebhook"))
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            print(f"[notifier] deleteWebhook failed: {e!r}")
            return False
        ok = isinstance(data, dict) and data.get("ok") is True
        if not ok:
            print(f"[notifier] deleteWebhook failed: {str(data)[:300]}")
        return ok

    async def get_updates(self, offset: int, timeout: int) -> Optional[Tuple[List[Dict[str, Any]], int]]:
        """
        长轮询拉取新消息，返回 (updates, 下一个 offset)；失败返回 None，由调用方稍后重试。
        """
        payload = {"offset": offset, "timeout": timeout, "allowed_updates": ["message"]}
        try:
            r = await self._client_get().post(
                self._url("getUpdates"),
                json=payload,
                # 读超时要比长轮询时间长
                timeout=httpx.Timeout(connect=5.0, read=timeout + 10.0, write=10.0, pool=30.0),
            )
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            print(f"[notifier] getUpdates failed: {e!r}")
            return None
        if not isinstance(data, dict) or data.get("ok") is not True:
            print(f"[notifier] getUpdates error: {str(data)[:300]}")
            return None

        updates = [u for u in data.get("result") or [] if isinstance(u, dict)]
        next_offset = offset
        for u in updates:
            try:
                next_offset = max(next_offset, int(u.get("update_id")) + 1)
            except (TypeError, ValueError):
                continue
        return updates, next_offset

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class _StdoutAdapter:
    async def send(self, text: str, chat_id: Optional[str] = None) -> bool:
        print("\n" + text + "\n")
        return True

    async def close(self):
        return


# ------------------------------------------------------------
# Notifier 主体
# ------------------------------------------------------------

class Notifier:
    def __init__(self, cfg: Optional[dict] = None):
        cfg = cfg or {}
        tg = cfg.get("telegram") or {}
        self._cfg = cfg.get("notifier") or {}

        # 配置优先，其次环境变量
        token = (tg.get("token") or os.environ.get("TELEGRAM_BOT_TOKEN", "")).strip()
        chat_id = str(tg.get("chat_id") or os.environ.get("TELEGRAM_CHAT_ID", "")).strip()
        retry = self._cfg.get("retry") or {}

        channels = self._cfg.get("notify_channels") or []
        if "telegram" in channels and token and chat_id:
            self._adapter = _TelegramAdapter(token, chat_id, retry)
            self._channel = "telegram"
        else:
            self._adapter = _StdoutAdapter()
            self._channel = "stdout"
            if "telegram" in channels:
                print("[notifier] TELEGRAM_BOT_TOKEN/CHAT_ID 缺失，自动降级为 stdout")

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def can_poll(self) -> bool:
        """只有 Telegram 渠道能收命令"""
        return isinstance(self._adapter, _TelegramAdapter)

    async def deliver(self, text: str, chat_id: Optional[str] = None) -> bool:
        """发送一条消息；True 表示已送达"""
        return await self._adapter.send(text, chat_id)

    async def delete_webhook(self) -> bool:
        if not isinstance(self._adapter, _TelegramAdapter):
            return False
        return await self._adapter.delete_webhook()

    async def get_updates(self, offset: int, timeout: int = 30) -> Optional[Tuple[List[Dict[str, Any]], int]]:
        if not isinstance(self._adapter, _TelegramAdapter):
            return None
        return await self._adapter.get_updates(offset, timeout)

    async def close(self):
        await self._adapter.close()
