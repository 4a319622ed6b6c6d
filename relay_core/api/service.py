"""对外 API 服务模块。

提供简化的异步函数接口供外部 CRUD / HTTP 层调用。
进程内只构造一套 store、上游客户端、调度器与 Relay（懒加载单例）。
"""

import logging
from typing import Any, Dict, List, Optional

from relay_core.agents.relay import ChatRelay
from relay_core.config.settings import settings
from relay_core.domain.exceptions import BusinessError, RelayError
from relay_core.infrastructure.logging.logger import log_event
from relay_core.infrastructure.storage.json_store import JsonChatStore
from relay_core.providers import create_upstream_client
from relay_core.providers.base import UpstreamClient
from relay_core.scheduler.lifecycle import ModelLifecycleScheduler


_store: Optional[JsonChatStore] = None
_upstream: Optional[UpstreamClient] = None
_scheduler: Optional[ModelLifecycleScheduler] = None
_relay: Optional[ChatRelay] = None


def get_default_relay() -> ChatRelay:
    """获取默认的 ChatRelay 实例（单例）。"""
    global _store, _upstream, _scheduler, _relay
    if _store is None:
        _store = JsonChatStore(root=settings.storage_root)
    if _upstream is None:
        _upstream = create_upstream_client()
    if _scheduler is None:
        _scheduler = ModelLifecycleScheduler(_upstream.unload_model, eviction_delay=settings.eviction_delay)
    if _relay is None:
        _relay = ChatRelay(
            chat_store=_store,
            persona_store=_store,
            upstream=_upstream,
            scheduler=_scheduler,
        )
    return _relay


async def relay_chat_turn(
    user_id: str,
    chat_id: str,
    message_text: str,
    model_id: Optional[str] = None,
) -> Dict[str, Any]:
    """转发一轮对话。

    Returns:
        成功时 {"reply": 回复文本}；失败时 {"error": "AI request failed", "error_kind": ...}
    """
    relay = get_default_relay()
    try:
        result = await relay.relay_chat_turn(user_id, chat_id, message_text, model_id)
    except RelayError as e:
        return {"error": e.message, "error_kind": e.error_kind}
    return {"reply": result.reply_text}


async def acquire_model(model_id: str) -> int:
    return await get_default_relay().scheduler.acquire(model_id)


async def release_model(model_id: str) -> int:
    return await get_default_relay().scheduler.release(model_id)


async def list_models() -> List[Dict[str, str]]:
    """列出推理服务上的模型，失败时返回空列表。"""
    get_default_relay()
    try:
        return await _upstream.list_models()
    except BusinessError as e:
        log_event(logging.ERROR, "Failed to load models", {}, error_kind=e.kind, error=e.message)
        return []


async def get_chat_history(chat_id: str) -> List[Dict[str, str]]:
    """获取会话的所有消息。"""
    get_default_relay()
    msgs = await _store.list_messages(chat_id)
    return [{"role": m.role, "content": m.content} for m in msgs]


async def clear_chat(chat_id: str) -> None:
    get_default_relay()
    await _store.clear_chat(chat_id)


async def shutdown() -> None:
    """进程退出前取消所有待执行的卸载定时器。"""
    if _scheduler is not None:
        await _scheduler.aclose()
