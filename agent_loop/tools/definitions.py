"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在推理循环中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
- 在流式 UI 模式下描述需要前端渲染的组件（UIAction）。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel


UIActionKind = Literal["mount", "update", "unmount"]


@dataclass(frozen=True)
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolDef:
    """一个可供 LLM 调用的工具定义，注册后不可修改。"""

    name: str
    description: str
    params: Dict[str, ToolParam]

    @classmethod
    def from_model(cls, name: str, description: str, model: Type[BaseModel]) -> "ToolDef":
        """根据 pydantic 参数模型生成 ToolDef，保证 schema 与校验规则一致。"""

        raw = model.model_json_schema()
        required = set(raw.get("required") or [])
        params: Dict[str, ToolParam] = {}
        for pname, prop in (raw.get("properties") or {}).items():
            schema = {k: v for k, v in prop.items() if k not in ("title", "description")}
            params[pname] = ToolParam(
                name=pname,
                description=prop.get("description", ""),
                required=pname in required,
                schema=schema,
            )
        return cls(name=name, description=description, params=params)

    def parameters_schema(self) -> Dict[str, Any]:
        """渲染为发给模型的 JSON Schema（type=object）。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for pname, param in self.params.items():
            properties[pname] = dict(param.schema or {"type": "string"})
            if param.description:
                properties[pname]["description"] = param.description
            if param.required:
                required.append(pname)
        return {"type": "object", "properties": properties, "required": required}


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。

    arguments 保留模型生成的原始 JSON 文本，由 Registry 负责解析与校验，
    id 原样回传用于关联 tool 消息。
    """

    id: str
    name: str
    arguments: str


def assign_call_ids(calls: List[ToolCall]) -> List[ToolCall]:
    """补齐缺失的调用 id，并为同一条消息内重复的 id 重新编号。

    新 id 形如 call_<n>，跳过已被占用的编号。
    """

    used = {call.id for call in calls if call.id}
    seen: set = set()
    counter = 0
    for idx, call in enumerate(calls):
        if call.id and call.id not in seen:
            seen.add(call.id)
            continue
        counter = max(counter, idx)
        while f"call_{counter}" in used:
            counter += 1
        call.id = f"call_{counter}"
        used.add(call.id)
        seen.add(call.id)
    return calls


@dataclass
class UIAction:
    """一次远端组件的挂载/更新/卸载指令。"""

    kind: UIActionKind
    component_id: str
    component: Optional[str] = None
    props: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "componentId": self.component_id,
            "component": self.component,
            "props": self.props,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UIAction":
        kind = data.get("type") or data.get("kind")
        component_id = data.get("componentId") or data.get("component_id")
        if kind not in ("mount", "update", "unmount") or not component_id:
            raise ValueError(f"invalid ui action: {data!r}")
        props = data.get("props") or {}
        if not isinstance(props, dict):
            raise ValueError("ui action props must be a mapping")
        return cls(kind=kind, component_id=str(component_id), component=data.get("component"), props=props)


@dataclass
class ToolOutput:
    """UI 类工具的双返回值：给模型看的文本 + 给前端的 UIAction。"""

    text: str
    ui_action: Optional[UIAction] = None


@dataclass
class ToolResult:
    """工具执行结果的封装（文本形式）。"""

    content: str
    ok: bool = True
    error_code: Optional[str] = None
    ui_action: Optional[UIAction] = None
