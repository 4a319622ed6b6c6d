"""对话上下文构建。

纯函数：同样的输入永远得到同样顺序的 ContextPayload，不访问网络或存储。

输出顺序：
1. AI 人设 system 消息（若有）
2. 用户人设 system 消息（若有）
3. 最近的历史消息（保持原有时间顺序，最多 max_history 条）
4. 本轮新的用户消息
"""

from typing import Iterable, List, Optional

from relay_core.domain.exceptions import ContextBuildError
from relay_core.domain.models import ActivePersonas, ChatMessage, ContextPayload, PersonaDescriptor
from relay_core.prompts import PERSONA_FIELDS, PersonaKind, render_persona_prompt


DEFAULT_MAX_HISTORY = 20

# 旧数据里 AI 回复以 "bot" 角色保存
_ROLE_ALIASES = {"bot": "assistant"}
_HISTORY_ROLES = {"user", "assistant", "system"}


def build_context(
    history: Iterable[ChatMessage],
    user_message: str,
    personas: Optional[ActivePersonas] = None,
    max_history: int = DEFAULT_MAX_HISTORY,
) -> ContextPayload:
    """根据人设、历史和新消息构建上游请求的消息列表。

    Args:
        history: 按时间顺序排列的历史消息。
        user_message: 本轮用户输入。
        personas: 当前装备的人设，可为空。
        max_history: 最多保留的历史条数，超出时保留最新的部分。

    Raises:
        ContextBuildError: 人设或历史数据格式异常。
    """

    if not isinstance(user_message, str):
        raise ContextBuildError("user message must be a string")

    messages: List[ChatMessage] = []
    personas = personas or ActivePersonas()
    for kind, persona in (("assistant", personas.assistant), ("user", personas.user)):
        if persona is None:
            continue
        _validate_persona(persona, kind)
        messages.append(ChatMessage(role="system", content=render_persona_prompt(persona, kind)))

    turns = list(history)
    if max_history > 0 and len(turns) > max_history:
        turns = turns[-max_history:]
    elif max_history <= 0:
        turns = []
    for idx, turn in enumerate(turns):
        messages.append(_normalize_turn(turn, idx))

    messages.append(ChatMessage(role="user", content=user_message))
    return ContextPayload(messages=tuple(messages))


def _validate_persona(persona: PersonaDescriptor, kind: PersonaKind) -> None:
    if not isinstance(persona, PersonaDescriptor):
        raise ContextBuildError(f"{kind} persona has unexpected type {type(persona).__name__}")
    for attr, _label in PERSONA_FIELDS:
        value = getattr(persona, attr)
        if value is not None and not isinstance(value, str):
            raise ContextBuildError(f"{kind} persona field {attr!r} must be text", persona_kind=kind)


def _normalize_turn(turn: ChatMessage, idx: int) -> ChatMessage:
    role = _ROLE_ALIASES.get(turn.role, turn.role)
    if role not in _HISTORY_ROLES:
        raise ContextBuildError(f"history turn {idx} has unknown role {turn.role!r}")
    if not isinstance(turn.content, str):
        raise ContextBuildError(f"history turn {idx} content must be text")
    return ChatMessage(role=role, content=turn.content)
