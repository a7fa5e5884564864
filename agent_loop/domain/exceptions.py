"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

错误分类与传播策略：

- CapabilityNotFound / ArgumentValidationError / CapabilityExecutionFault：
  只在 CapabilityRegistry 边界内部抛出，并在同一边界被转换成工具结果内容，
  不会中断一轮对话（模型可以据此重试或换一种做法）。
- GatewayFault / IterationBudgetExceeded / TurnCancelled：
  终止当前轮次，转换为用户可见的有界提示与 error 状态，会话仍可继续使用。
- MalformedEventFrame：仅客户端使用，坏帧被丢弃，不影响后续消费。
"""

from typing import Any, Dict


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "CAPABILITY_NOT_FOUND"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 capability、available 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        """转换为结构化错误载荷，可直接 json.dumps 后交给模型或前端。"""

        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        body.update(self.extra)
        return {"error": body}


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


# ---- 工具调用（在 Registry 边界内恢复） ----


class CapabilityNotFound(BusinessError):
    """模型请求了未注册的工具。"""

    def __init__(self, name: str, available):
        super().__init__(
            code="CAPABILITY_NOT_FOUND",
            message=f"Tool {name!r} not found",
            http_status=404,
            capability=name,
            available=list(available),
        )


class ArgumentValidationError(BusinessError):
    """工具参数无法解析或不符合声明的 schema。"""

    def __init__(self, name: str, message: str, details=None):
        super().__init__(
            code="ARGUMENT_VALIDATION_ERROR",
            message=message,
            http_status=422,
            capability=name,
            details=list(details or []),
        )


class CapabilityExecutionFault(BusinessError):
    """工具执行过程中出错（I/O、运行时错误、超时等）。"""

    def __init__(self, name: str, message: str, timed_out: bool = False):
        extra: Dict[str, Any] = {"capability": name}
        if timed_out:
            extra["timed_out"] = True
        super().__init__(
            code="CAPABILITY_EXECUTION_FAULT",
            message=message,
            http_status=500,
            **extra,
        )


# ---- 终止当前轮次 ----


class GatewayFault(BusinessError):
    """模型调用没有得到可用响应（网络、接口错误、超时或空响应）。"""

    def __init__(self, message: str, code: str = "GATEWAY_FAULT", **extra):
        super().__init__(code=code, message=message, http_status=502, **extra)


class IterationBudgetExceeded(BusinessError):
    """单轮 think 次数达到上限仍未得到最终回答。"""

    def __init__(self, iterations: int):
        super().__init__(
            code="ITERATION_BUDGET_EXCEEDED",
            message=f"Reached max iterations ({iterations}) without a final answer",
            http_status=500,
            iterations=iterations,
        )


class TurnCancelled(BusinessError):
    """当前轮次被取消（客户端断开、通道积压溢出或调用方主动取消）。"""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(code="TURN_CANCELLED", message=f"Turn cancelled: {reason}", http_status=499, reason=reason)


# ---- 客户端 ----


class MalformedEventFrame(BusinessError):
    """流式事件帧无法解析。"""

    def __init__(self, message: str, frame: str = ""):
        super().__init__(code="MALFORMED_EVENT_FRAME", message=message, frame=frame[:200])
