import asyncio
import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from relay_core.config.settings import settings
from relay_core.domain.conversation import ChatStore, PersonaStore
from relay_core.domain.exceptions import BusinessError
from relay_core.domain.models import ActivePersonas, ChatMessage, PersonaDescriptor, Role


class JsonChatStore(ChatStore, PersonaStore):
    """基于 JSON 文件的聊天记录与人设存储。

    - {root}/chats.json: {chat_id: [{"role": ..., "content": ...}, ...]}
    - {root}/personas.json: {user_id: {"assistant": {...}, "user": {...}}}
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._chats_path = self._root / "chats.json"
        self._personas_path = self._root / "personas.json"
        self._lock = asyncio.Lock()

    # ---- ChatStore ----

    async def get_recent_messages(self, chat_id: str, limit: int) -> List[ChatMessage]:
        async with self._lock:
            chats = await asyncio.to_thread(self._read, self._chats_path)
        items = chats.get(chat_id) or []
        if limit > 0:
            items = items[-limit:]
        else:
            items = []
        return [self._to_message(m) for m in items]

    async def list_messages(self, chat_id: str) -> List[ChatMessage]:
        async with self._lock:
            chats = await asyncio.to_thread(self._read, self._chats_path)
        return [self._to_message(m) for m in chats.get(chat_id) or []]

    async def append_message(self, chat_id: str, role: Role, content: str) -> None:
        async with self._lock:
            chats = await asyncio.to_thread(self._read, self._chats_path)
            chats.setdefault(chat_id, []).append({"role": role, "content": content})
            await asyncio.to_thread(self._write, self._chats_path, chats)

    async def clear_chat(self, chat_id: str) -> None:
        async with self._lock:
            chats = await asyncio.to_thread(self._read, self._chats_path)
            chats[chat_id] = []
            await asyncio.to_thread(self._write, self._chats_path, chats)

    # ---- PersonaStore ----

    async def get_active_personas(self, user_id: str) -> ActivePersonas:
        async with self._lock:
            data = await asyncio.to_thread(self._read, self._personas_path)
        entry = data.get(user_id) or {}
        return ActivePersonas(
            assistant=self._to_persona(entry.get("assistant")),
            user=self._to_persona(entry.get("user")),
        )

    async def set_active_persona(
        self,
        user_id: str,
        kind: str,
        persona: Optional[PersonaDescriptor],
    ) -> None:
        """装备或卸下某个人设（kind 为 "assistant" 或 "user"）。"""
        if kind not in ("assistant", "user"):
            raise BusinessError(code="INVALID_PERSONA_KIND", message=kind)
        async with self._lock:
            data = await asyncio.to_thread(self._read, self._personas_path)
            entry = data.setdefault(user_id, {})
            if persona is None:
                entry.pop(kind, None)
            else:
                entry[kind] = {k: v for k, v in asdict(persona).items() if v is not None}
            await asyncio.to_thread(self._write, self._personas_path, data)

    # ---- 文件读写 ----

    def _read(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        if not isinstance(data, dict):
            raise BusinessError(code="STORE_READ_ERROR", message=f"{path.name} is not a mapping")
        return data

    def _write(self, path: Path, data: Dict[str, Any]) -> None:
        tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.json.tmp")
        try:
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> ChatMessage:
        return ChatMessage(role=data.get("role") or "user", content=data.get("content") or "")

    @staticmethod
    def _to_persona(data: Optional[Dict[str, Any]]) -> Optional[PersonaDescriptor]:
        if not data:
            return None
        return PersonaDescriptor(
            name=data.get("name"),
            pronouns=data.get("pronouns"),
            appearance=data.get("appearance"),
            background=data.get("background"),
            details=data.get("details"),
        )
