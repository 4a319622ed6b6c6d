"""模型生命周期调度（按空闲时间卸载推理后端上的模型）。"""

from .lifecycle import ModelLifecycleEntry, ModelLifecycleScheduler, UnloadAction

__all__ = ["ModelLifecycleEntry", "ModelLifecycleScheduler", "UnloadAction"]
