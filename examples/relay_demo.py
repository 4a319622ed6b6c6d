"""Relay 一轮对话的最小演示。"""

import asyncio
import sys

from dotenv import load_dotenv

# 加载 .env 中的 UPSTREAM_BASE_URL / DEFAULT_MODEL 等配置
load_dotenv()

from relay_core.api import service  # noqa: E402


async def main(question: str) -> None:
    result = await service.relay_chat_turn("demo-user", "demo-chat", question)
    print("User:", question)
    print("Relay:", result.get("reply") or result.get("error"))
    await service.shutdown()


if __name__ == "__main__":
    asyncio.run(main(" ".join(sys.argv[1:]) or "Hello! Who are you?"))
