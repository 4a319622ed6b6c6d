"""统一的对话数据模型。

本模块定义了 Relay 内部共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant）。
- PersonaDescriptor / ActivePersonas: 人设描述，渲染后作为 system 消息注入。
- ContextPayload: 一次上游调用携带的完整有序消息列表，构建后不可修改。
- ChatRequest: 发给上游推理服务的完整请求。
- RelayResult: 一轮对话成功后的结果。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple


# LLM 消息角色类型（与 Ollama chat 接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于上下文，也可用于持久化。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - meta: 附加元数据，不发给上游，主要用于日志。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class PersonaDescriptor:
    """人设描述。所有字段均可缺省，缺省字段不会出现在渲染结果里。"""

    name: Optional[str] = None
    pronouns: Optional[str] = None
    appearance: Optional[str] = None
    background: Optional[str] = None
    details: Optional[str] = None


@dataclass(frozen=True)
class ActivePersonas:
    """某个用户当前装备的人设（AI 人设 / 用户自己的人设）。"""

    assistant: Optional[PersonaDescriptor] = None
    user: Optional[PersonaDescriptor] = None


@dataclass(frozen=True)
class ContextPayload:
    """发给上游的有序消息列表。

    顺序固定：AI 人设 system 消息、用户人设 system 消息、历史消息、新的用户消息。
    """

    messages: Tuple[ChatMessage, ...]

    def to_payload(self) -> List[Dict[str, str]]:
        return [m.to_payload() for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)


@dataclass
class ChatRequest:
    """一次完整的上游请求。"""

    model: str
    payload: ContextPayload
    stream: bool = True

    def to_json(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": self.payload.to_payload(),
            "stream": self.stream,
        }


@dataclass
class RelayResult:
    """一轮对话的成功结果。"""

    reply_text: str
    model_id: str
    chat_id: str
    truncated: bool = False
