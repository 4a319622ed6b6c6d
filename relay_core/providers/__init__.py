"""上游推理服务集成层。

该包下的模块负责：
- 定义上游客户端协议 (base)。
- 增量解析逐行 JSON 流 (stream_parser)。
- 提供具体后端实现 (ollama_client)。
"""

from typing import Optional

from relay_core.config.settings import settings
from relay_core.providers.base import StreamResult, UpstreamClient
from relay_core.providers.ollama_client import OllamaClient
from relay_core.providers.stream_parser import NdjsonStreamParser, StreamAccumulator


def create_upstream_client(name: Optional[str] = None) -> UpstreamClient:
    """根据名称创建上游客户端实例，目前只支持 ollama。"""

    client_name = (name or "ollama").lower()
    if client_name != "ollama":
        raise ValueError(f"Unknown upstream client: {name!r}")
    return OllamaClient(settings)


__all__ = [
    "NdjsonStreamParser",
    "OllamaClient",
    "StreamAccumulator",
    "StreamResult",
    "UpstreamClient",
    "create_upstream_client",
]
