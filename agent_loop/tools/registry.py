"""工具注册表：name -> {schema, 参数模型, 执行函数}。

dispatch 是推理循环调用工具的唯一入口，它保证不会向外抛异常：
未注册的工具、参数校验失败、执行报错或超时都会在这里被转换成
结构化的错误载荷，作为普通工具结果交还给模型。
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union
import json
import logging

from pydantic import BaseModel, ValidationError as PydanticValidationError

from agent_loop.domain.exceptions import (
    ArgumentValidationError,
    BusinessError,
    CapabilityExecutionFault,
    CapabilityNotFound,
    ValidationError,
)
from agent_loop.infrastructure.logging.logger import log_event
from .definitions import ToolDef, ToolOutput, ToolResult


ToolFunc = Callable[[BaseModel], Union[str, ToolOutput]]
TRUNCATION_MARKER = "\n\n... [truncated]"


@dataclass(frozen=True)
class Capability:
    schema: ToolDef
    args_model: Type[BaseModel]
    executor: ToolFunc
    ui_component: Optional[str] = None

    @property
    def name(self) -> str:
        return self.schema.name


def truncate_text(text: str, limit: int) -> Tuple[str, int, bool]:
    """按字符数截断文本，返回 (内容, 原始长度, 是否截断)。"""

    size = len(text)
    if size <= limit:
        return text, size, False
    return text[:limit] + TRUNCATION_MARKER, size, True


def dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


class CapabilityRegistry:
    def __init__(self, dispatch_timeout: Optional[float] = None):
        self._capabilities: Dict[str, Capability] = {}
        self._dispatch_timeout = dispatch_timeout

    def register(
        self,
        schema: ToolDef,
        executor: ToolFunc,
        *,
        args_model: Type[BaseModel],
        ui_component: Optional[str] = None,
    ) -> Capability:
        if schema.name in self._capabilities:
            raise ValidationError(code="DUPLICATE_CAPABILITY", message=f"Tool {schema.name!r} already registered")
        cap = Capability(schema=schema, args_model=args_model, executor=executor, ui_component=ui_component)
        self._capabilities[schema.name] = cap
        return cap

    def lookup(self, name: str) -> Optional[Capability]:
        return self._capabilities.get(name)

    def names(self) -> List[str]:
        return list(self._capabilities)

    def schemas(self) -> List[ToolDef]:
        return [cap.schema for cap in self._capabilities.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    def dispatch(self, name: str, raw_arguments: Optional[str], timeout: Optional[float] = None) -> ToolResult:
        """解析参数并执行工具，所有错误都以结构化载荷返回。"""

        log_ctx = {"tool_name": name}
        try:
            cap = self._resolve(name)
            args = self._parse_arguments(cap, raw_arguments)
            output = self._execute(cap, args, timeout if timeout is not None else self._dispatch_timeout)
        except BusinessError as exc:
            log_event(logging.WARNING, "Tool dispatch failed", log_ctx, code=exc.code, error=exc.message)
            return ToolResult(content=dumps(exc.to_payload()), ok=False, error_code=exc.code)

        if isinstance(output, ToolOutput):
            return ToolResult(content=output.text, ui_action=output.ui_action)
        return ToolResult(content=str(output))

    def _resolve(self, name: str) -> Capability:
        cap = self.lookup(name)
        if cap is None:
            raise CapabilityNotFound(name, self.names())
        return cap

    @staticmethod
    def _parse_arguments(cap: Capability, raw: Optional[str]) -> BaseModel:
        text = (raw or "").strip() or "{}"
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ArgumentValidationError(cap.name, f"arguments are not valid JSON: {exc.msg}")
        if not isinstance(data, dict):
            raise ArgumentValidationError(cap.name, "arguments must be a JSON object")
        try:
            return cap.args_model.model_validate(data)
        except PydanticValidationError as exc:
            details = [
                {"field": ".".join(str(p) for p in err.get("loc", ())), "error": err.get("msg", "")}
                for err in exc.errors()
            ]
            raise ArgumentValidationError(cap.name, f"arguments do not match schema of {cap.name}", details)

    @staticmethod
    def _execute(cap: Capability, args: BaseModel, timeout: Optional[float]) -> Union[str, ToolOutput]:
        if not timeout:
            try:
                return cap.executor(args)
            except Exception as exc:
                raise CapabilityExecutionFault(cap.name, f"Error running {cap.name}: {exc}") from exc

        # 超时后工作线程无法被强制终止，这里只放弃等待它的结果
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tool-{cap.name}")
        try:
            future = pool.submit(cap.executor, args)
            try:
                return future.result(timeout=timeout)
            except FutureTimeout as exc:
                raise CapabilityExecutionFault(
                    cap.name, f"{cap.name} timed out after {timeout:g}s", timed_out=True
                ) from exc
            except Exception as exc:
                raise CapabilityExecutionFault(cap.name, f"Error running {cap.name}: {exc}") from exc
        finally:
            pool.shutdown(wait=False)
