"""对话中继核心模块。

每轮对话调用一次 ChatRelay.relay_chat_turn：

    Started -> ContextBuilt -> ModelAcquired -> Streaming -> Persisted | Failed

- 发起上游调用前先持久化用户消息，即使中途崩溃也不会丢失用户输入。
- 模型登记通过 scheduler.hold() 完成，离开 ModelAcquired 及之后的任何状态
  （成功、异常、取消）都会恰好 release 一次。
- 失败时不写入任何伪造的助手消息，对外只抛出 RelayError("AI request failed")，
  具体错误类型、模型、会话写入日志。
- 同一会话的两轮并发请求之间不做排序，消息可能交错写入；这是已知的产品限制。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import uuid4

from relay_core.agents.context import build_context
from relay_core.config.settings import settings
from relay_core.domain.conversation import ChatStore, PersonaStore
from relay_core.domain.exceptions import BusinessError, RelayError
from relay_core.domain.models import RelayResult
from relay_core.infrastructure.logging.logger import log_event
from relay_core.providers.base import UpstreamClient
from relay_core.scheduler.lifecycle import ModelLifecycleScheduler


NO_RESPONSE = "[No response]"


@dataclass
class RelayConfig:
    default_model: str = "mistral:latest"
    max_history_messages: int = 20  # 上下文携带的历史条数


class ChatRelay:
    def __init__(
        self,
        chat_store: ChatStore,
        persona_store: PersonaStore,
        upstream: UpstreamClient,
        scheduler: ModelLifecycleScheduler,
        config: Optional[RelayConfig] = None,
    ):
        self._chat_store = chat_store
        self._persona_store = persona_store
        self._upstream = upstream
        self._scheduler = scheduler
        self._config = config or RelayConfig(
            default_model=settings.default_model,
            max_history_messages=settings.max_history_messages,
        )

    @property
    def scheduler(self) -> ModelLifecycleScheduler:
        return self._scheduler

    async def relay_chat_turn(
        self,
        user_id: str,
        chat_id: str,
        message_text: str,
        model_id: Optional[str] = None,
    ) -> RelayResult:
        """转发一轮对话并持久化结果。

        Args:
            user_id: 用户ID，用于读取当前装备的人设。
            chat_id: 会话ID。
            message_text: 用户本轮输入。
            model_id: 模型标识，为空时使用默认模型。

        Returns:
            RelayResult，包含回复文本。

        Raises:
            RelayError: 任何失败都统一转换为该异常。
        """
        start_time = time.time()
        model_id = (model_id or "").strip() or self._config.default_model
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "user_id": user_id,
            "chat_id": chat_id,
            "model_id": model_id,
        }
        stage = "started"

        try:
            # 先读历史再写入本轮用户消息，避免新消息在上下文里重复出现
            history = await self._chat_store.get_recent_messages(chat_id, self._config.max_history_messages)
            personas = await self._persona_store.get_active_personas(user_id)
            await self._chat_store.append_message(chat_id, "user", message_text)
            log_event(logging.INFO, "Stored user message", log_ctx, history_len=len(history))

            payload = build_context(
                history,
                message_text,
                personas,
                max_history=self._config.max_history_messages,
            )
            stage = "context_built"

            async with self._scheduler.hold(model_id):
                log_event(logging.INFO, "Calling upstream", log_ctx, message_count=len(payload))
                stage = "streaming"
                result = await self._upstream.stream_chat(model_id, payload)

            if not result.done_seen:
                log_event(
                    logging.WARNING,
                    "Upstream closed without done marker",
                    log_ctx,
                    truncated=True,
                    reply_len=len(result.reply),
                )
            reply = result.reply or NO_RESPONSE
            await self._chat_store.append_message(chat_id, "assistant", reply)
            stage = "persisted"
        except BusinessError as e:
            log_event(
                logging.ERROR,
                "AI request failed",
                log_ctx,
                stage=stage,
                error_kind=e.kind,
                error_code=e.code,
                error=e.message,
            )
            raise RelayError(e.kind) from e
        except Exception as e:
            log_event(
                logging.ERROR,
                "AI request failed",
                log_ctx,
                stage=stage,
                error_kind=type(e).__name__,
                error=repr(e),
            )
            raise RelayError(type(e).__name__) from e

        log_event(
            logging.INFO,
            "Completed chat turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            reply_len=len(reply),
        )
        return RelayResult(
            reply_text=reply,
            model_id=model_id,
            chat_id=chat_id,
            truncated=not result.done_seen,
        )
