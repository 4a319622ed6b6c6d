"""Relay Core 顶层包。

该包把用户的对话请求转发给上游大模型推理服务，增量解析逐行 JSON 流
拼出完整回复；同时按空闲时间卸载推理后端上的模型。
包括配置加载、领域模型、上游适配、模型生命周期调度、上下文构建与持久化存储。
"""

from relay_core.agents.relay import ChatRelay, RelayConfig
from relay_core.scheduler import ModelLifecycleScheduler

__all__ = ["ChatRelay", "ModelLifecycleScheduler", "RelayConfig"]
