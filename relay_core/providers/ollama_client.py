"""Ollama 兼容推理服务适配器。

使用 Ollama 的原生接口：
- 对话: POST {base_url}/api/chat，请求体 {model, messages, stream: true}，
  响应为逐行 JSON，最后一条带 done: true。
- 卸载: POST {base_url}/api/generate，请求体 {model, keep_alive: 0}。
- 模型列表: GET {base_url}/api/tags。

本层不做重试：失败只报告一次，由调用方决定是否重新提交。
"""

import asyncio
from typing import Dict, List

import httpx

from relay_core.config.settings import settings
from relay_core.domain.exceptions import (
    EvictionActionError,
    UpstreamHTTPError,
    UpstreamTransportError,
)
from relay_core.domain.models import ChatRequest, ContextPayload
from relay_core.providers.base import StreamResult
from relay_core.providers.stream_parser import NdjsonStreamParser


class OllamaClient:
    """Ollama 推理服务客户端实现。"""

    name = "ollama"

    def __init__(self, cfg=settings):
        self._settings = cfg

    @property
    def base_url(self) -> str:
        return getattr(self._settings, "upstream_base_url", "").rstrip("/")

    # ---- 流式对话 ----

    async def send(self, model_id: str, payload: ContextPayload) -> str:
        result = await self.stream_chat(model_id, payload)
        return result.reply

    async def stream_chat(self, model_id: str, payload: ContextPayload) -> StreamResult:
        """执行流式调用。

        Raises:
            UpstreamHTTPError: 非 2xx 状态码。
            UpstreamTransportError: 连接失败、中途断开或超过 relay_timeout；已拼接的内容全部丢弃。
            UpstreamProtocolError: 流中出现非法 JSON 行。
        """

        req = ChatRequest(model=model_id, payload=payload, stream=True)
        timeout = getattr(self._settings, "relay_timeout", None)
        try:
            return await asyncio.wait_for(self._stream(req), timeout=timeout)
        except asyncio.TimeoutError:
            raise UpstreamTransportError(
                f"upstream call exceeded {timeout}s", model_id=model_id
            )

    def _stream_timeout(self) -> httpx.Timeout:
        # 流式读取不设单次读超时，整轮耗时由 relay_timeout 约束
        return httpx.Timeout(self._settings.http_timeout, read=None)

    async def _stream(self, req: ChatRequest) -> StreamResult:
        parser = NdjsonStreamParser()
        records = 0
        try:
            async with httpx.AsyncClient(timeout=self._stream_timeout(), trust_env=False) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    json=req.to_json(),
                    headers={"Content-Type": "application/json"},
                ) as resp:
                    if resp.status_code >= 300:
                        body = await resp.aread()
                        raise UpstreamHTTPError(
                            resp.status_code,
                            message=body.decode("utf-8", errors="replace")[:200],
                            model_id=req.model,
                        )
                    async for chunk in resp.aiter_bytes():
                        records += len(parser.feed(chunk))
                        if parser.done:
                            break
        except httpx.RequestError as e:
            raise UpstreamTransportError(str(e) or type(e).__name__, model_id=req.model)
        reply = parser.close()
        return StreamResult(reply=reply, done_seen=parser.done, records=records)

    # ---- 模型管理 ----

    async def unload_model(self, model_id: str) -> None:
        payload = {"model": model_id, "keep_alive": 0}
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.RequestError as e:
            raise EvictionActionError(model_id, str(e) or type(e).__name__)
        # 404: 模型本就不在内存中，视为卸载成功
        if resp.status_code in (200, 404):
            return
        raise EvictionActionError(model_id, f"HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code)

    async def list_models(self) -> List[Dict[str, str]]:
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
        except httpx.RequestError as e:
            raise UpstreamTransportError(str(e) or type(e).__name__)
        if resp.status_code >= 300:
            raise UpstreamHTTPError(resp.status_code, message=resp.text[:200])
        data = resp.json() or {}
        models: List[Dict[str, str]] = []
        for item in data.get("models", []):
            model_id = item.get("model") or item.get("name")
            if not model_id:
                continue
            models.append({"model": model_id, "name": item.get("name") or model_id})
        return models
