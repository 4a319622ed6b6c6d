"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层做统一捕获与用户提示。

错误分类：
- ChatError 及其子类：一次对话中可能出现的失败，统一在 Relay 边界
  转换为 RelayError（"AI request failed"），内部细节只写日志。
- EvictionActionError：模型卸载失败，只影响后端资源占用，从不抛给对话调用方。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 model_id、chat_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    @property
    def kind(self) -> str:
        """错误种类名，用于日志中的 error_kind 字段。"""

        return type(self).__name__


class ChatError(BusinessError):
    """单轮对话失败的基类。"""


class ContextBuildError(ChatError):
    """人设或历史数据格式异常，拒绝向上游发送不完整的上下文。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="CONTEXT_BUILD_ERROR", message=message, http_status=500, **extra)


class UpstreamHTTPError(ChatError):
    """推理服务返回非 2xx 状态码。"""

    def __init__(self, status: int, message: str = "", **extra):
        self.status = status
        super().__init__(
            code="UPSTREAM_HTTP_ERROR",
            message=message or f"upstream returned HTTP {status}",
            http_status=502,
            **extra,
        )


class UpstreamTransportError(ChatError):
    """网络层错误，例如连接失败、DNS 失败、连接被重置或超时。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="UPSTREAM_TRANSPORT_ERROR", message=message, http_status=502, **extra)


class UpstreamProtocolError(ChatError):
    """流式响应中出现无法解析为 JSON 的行。"""

    def __init__(self, message: str, line: Optional[str] = None, **extra):
        self.line = line
        super().__init__(code="UPSTREAM_PROTOCOL_ERROR", message=message, http_status=502, **extra)


class EvictionActionError(BusinessError):
    """卸载模型失败，仅记录日志。"""

    def __init__(self, model_id: str, message: str, **extra):
        self.model_id = model_id
        super().__init__(code="EVICTION_FAILED", message=message, http_status=500, **extra)


class RelayError(BusinessError):
    """对外暴露的唯一失败结果，不携带内部细节。"""

    def __init__(self, error_kind: str):
        self.error_kind = error_kind
        super().__init__(code="AI_REQUEST_FAILED", message="AI request failed", http_status=502)
