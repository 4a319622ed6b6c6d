"""上游推理服务客户端协议。

Relay 不直接依赖具体的 HTTP 实现，而是依赖此协议：

- send(model_id, payload): 执行一次流式对话调用，返回拼接好的完整回复。
- unload_model(model_id): 让推理服务卸载模型（供模型生命周期调度器使用）。
- list_models(): 列出推理服务上可用的模型。

这样可以在不改 Relay 代码的前提下替换推理后端。
"""

from dataclasses import dataclass
from typing import Dict, List, Protocol

from relay_core.domain.models import ContextPayload


@dataclass
class StreamResult:
    """一次流式调用的结果。

    - reply: 拼接后的回复文本。
    - done_seen: 是否收到上游的 done 记录；为 False 说明连接提前正常关闭，回复可能被截断。
    - records: 解析出的记录条数。
    """

    reply: str
    done_seen: bool
    records: int = 0


class UpstreamClient(Protocol):
    """上游客户端协议。"""

    name: str

    async def send(self, model_id: str, payload: ContextPayload) -> str:
        ...

    async def stream_chat(self, model_id: str, payload: ContextPayload) -> StreamResult:
        ...

    async def unload_model(self, model_id: str) -> None:
        """失败时抛出 EvictionActionError。"""
        ...

    async def list_models(self) -> List[Dict[str, str]]:
        ...
