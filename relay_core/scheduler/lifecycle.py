"""模型生命周期调度器。

按模型维护「进行中的请求数」与「待执行的卸载定时器」：

- acquire(model_id): 计数 +1，取消该模型的待卸载定时器。
- release(model_id): 计数 -1；归零时启动一个固定延迟的卸载定时器（替换旧定时器）。
- 定时器触发：在锁内重新检查 generation 与计数，仍空闲才调用外部卸载动作；
  卸载成功才移除条目，失败则保留条目，等下一轮 acquire/release 重新启动定时器。

每次启动或取消定时器都会递增 generation，定时器回调只在自己捕获的
generation 仍然有效时才执行，因此即使取消来得太晚也不会误卸载。

注册表的所有修改都在同一把 asyncio.Lock 内完成，但卸载动作的网络调用不持有锁。
卸载进行中到达的 acquire 会等待卸载结束后再登记。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from relay_core.config.settings import settings
from relay_core.domain.exceptions import EvictionActionError
from relay_core.infrastructure.logging.logger import log_event


UnloadAction = Callable[[str], Awaitable[None]]


@dataclass
class ModelLifecycleEntry:
    model_id: str
    active_requests: int = 0
    generation: int = 0
    eviction_task: Optional["asyncio.Task[None]"] = None
    # 卸载调用进行中时存在，结束后置空
    unloading: Optional[asyncio.Event] = None


class ModelLifecycleScheduler:
    """进程内唯一的模型生命周期调度器，由调用方显式构造并传入 Relay。"""

    def __init__(self, unload: UnloadAction, eviction_delay: Optional[float] = None):
        self._unload = unload
        self._delay = eviction_delay if eviction_delay is not None else settings.eviction_delay
        self._entries: Dict[str, ModelLifecycleEntry] = {}
        self._lock = asyncio.Lock()

    @property
    def eviction_delay(self) -> float:
        return self._delay

    async def acquire(self, model_id: str) -> int:
        """登记一个进行中的请求，返回登记后的计数。"""

        while True:
            async with self._lock:
                entry = self._entries.get(model_id)
                if entry is None:
                    entry = ModelLifecycleEntry(model_id=model_id)
                    self._entries[model_id] = entry
                if entry.unloading is None:
                    entry.active_requests += 1
                    self._disarm(entry)
                    return entry.active_requests
                waiter = entry.unloading
            log_event(logging.INFO, "Waiting for model unload to finish", {"model_id": model_id})
            await waiter.wait()

    async def release(self, model_id: str) -> int:
        """注销一个进行中的请求，返回注销后的计数。"""

        async with self._lock:
            entry = self._entries.get(model_id)
            if entry is None or entry.active_requests == 0:
                raise RuntimeError(f"release({model_id!r}) without matching acquire")
            entry.active_requests -= 1
            if entry.active_requests == 0:
                self._arm(entry)
            return entry.active_requests

    @asynccontextmanager
    async def hold(self, model_id: str) -> AsyncIterator[None]:
        """acquire/release 成对执行；任何退出路径（包括取消）都会 release 一次。"""

        await self.acquire(model_id)
        try:
            yield
        finally:
            await asyncio.shield(self.release(model_id))

    # ---- 查询 ----

    def active_count(self, model_id: str) -> int:
        entry = self._entries.get(model_id)
        return entry.active_requests if entry else 0

    def has_pending_eviction(self, model_id: str) -> bool:
        entry = self._entries.get(model_id)
        return bool(entry and entry.eviction_task is not None)

    def tracked_models(self) -> List[str]:
        return sorted(self._entries)

    async def aclose(self) -> None:
        """取消所有待执行的定时器，不触发卸载。"""

        async with self._lock:
            tasks = []
            for entry in self._entries.values():
                if entry.eviction_task is not None:
                    tasks.append(entry.eviction_task)
                self._disarm(entry)
        await asyncio.gather(*tasks, return_exceptions=True)

    # ---- 定时器 ----

    def _arm(self, entry: ModelLifecycleEntry) -> None:
        self._disarm(entry)
        generation = entry.generation
        entry.eviction_task = asyncio.create_task(self._evict_later(entry.model_id, generation))
        log_event(
            logging.INFO,
            "Scheduled model eviction",
            {"model_id": entry.model_id},
            delay_seconds=self._delay,
            generation=generation,
        )

    @staticmethod
    def _disarm(entry: ModelLifecycleEntry) -> None:
        if entry.eviction_task is not None:
            entry.eviction_task.cancel()
            entry.eviction_task = None
        entry.generation += 1

    async def _evict_later(self, model_id: str, generation: int) -> None:
        await asyncio.sleep(self._delay)
        await self._fire(model_id, generation)

    async def _fire(self, model_id: str, generation: int) -> None:
        log_ctx = {"model_id": model_id}
        async with self._lock:
            entry = self._entries.get(model_id)
            if entry is None or entry.generation != generation or entry.active_requests > 0:
                return
            entry.eviction_task = None
            finished = asyncio.Event()
            entry.unloading = finished

        unloaded = False
        try:
            await self._unload(model_id)
            unloaded = True
        except EvictionActionError as e:
            log_event(
                logging.WARNING,
                "Model eviction failed",
                log_ctx,
                error_kind=e.kind,
                error=e.message,
            )
        except Exception as e:
            log_event(
                logging.WARNING,
                "Model eviction failed",
                log_ctx,
                error_kind=EvictionActionError.__name__,
                error=repr(e),
            )
        finally:
            async with self._lock:
                entry.unloading = None
                if unloaded and entry.active_requests == 0 and self._entries.get(model_id) is entry:
                    del self._entries[model_id]
            finished.set()

        if unloaded:
            log_event(logging.INFO, "Model evicted", log_ctx)
