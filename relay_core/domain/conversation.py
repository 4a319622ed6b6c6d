"""Relay 依赖的外部存储协议。

聊天记录与人设的增删改查由外部 CRUD 层负责，Relay 只通过以下协议访问：

- ChatStore.get_recent_messages / append_message
- PersonaStore.get_active_personas
"""

from typing import List, Protocol

from .models import ActivePersonas, ChatMessage, Role


class ChatStore(Protocol):
    async def get_recent_messages(self, chat_id: str, limit: int) -> List[ChatMessage]:
        """按时间顺序返回最近 limit 条消息。"""
        ...

    async def append_message(self, chat_id: str, role: Role, content: str) -> None:
        ...

    async def list_messages(self, chat_id: str) -> List[ChatMessage]:
        ...

    async def clear_chat(self, chat_id: str) -> None:
        ...


class PersonaStore(Protocol):
    async def get_active_personas(self, user_id: str) -> ActivePersonas:
        ...
