"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：构造参数 > 环境变量 > .env > config.yaml。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RELAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """Relay 配置（使用 Pydantic）。"""

    # ---- 上游推理服务 ----
    upstream_base_url: str = Field(
        default="https://ai.krishd.ch",
        description="推理服务根地址，chat 接口为 {base}/api/chat",
    )
    default_model: str = Field(
        default="mistral:latest",
        description="调用方未指定模型时使用的模型标识",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 连接/读取超时时间（秒）")
    relay_timeout: float = Field(
        default=300.0,
        ge=1.0,
        description="单次流式调用的总时长上限（秒）",
    )

    # ---- 模型生命周期 ----
    eviction_delay: float = Field(
        default=30.0,
        gt=0,
        description="模型空闲多久后卸载（秒）",
    )

    # ---- 上下文 ----
    max_history_messages: int = Field(default=20, ge=1, le=100, description="上下文最多携带的历史消息数")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("upstream_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("upstream_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("default_model")
    @classmethod
    def validate_default_model(cls, v: Optional[str]) -> str:
        if not v or not v.strip():
            raise ValueError("default_model must not be empty")
        return v.strip()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
