"""生成式 UI 工具：执行结果同时包含给模型的文本和给前端的 UIAction。

前端收到 ui_action 事件后立即渲染组件，模型只看到文本部分，
两者作为两个独立事件发送（先 ui_action，再 tool_result）。
"""

from typing import Any, Dict, List, Literal, Optional
import random
import re
from uuid import uuid4

from pydantic import BaseModel, Field

from .builtin import CalculatorArgs, calculator
from .definitions import ToolDef, ToolOutput, UIAction
from .registry import CapabilityRegistry, dumps


class WeatherCardArgs(BaseModel):
    city: str = Field(min_length=1, description="城市名称")


class ChartArgs(BaseModel):
    title: str = Field(description="图表标题")
    chart_type: Literal["bar", "line", "pie", "area"] = Field(description="图表类型")
    labels: List[str] = Field(description="X 轴标签或分类")
    values: List[float] = Field(description="与每个标签对应的数值")


class DataTableArgs(BaseModel):
    title: str = Field(description="表格标题")
    columns: List[str] = Field(description="列名")
    rows: List[List[Any]] = Field(description="数据行，每行是单元格值的数组")


class UpdateComponentArgs(BaseModel):
    component_id: str = Field(min_length=1, description="之前挂载的组件 ID")
    props: Dict[str, Any] = Field(description="需要更新的属性，未出现的属性保持不变")
    component: Optional[str] = Field(default=None, description="组件类型（可选）")


class RemoveComponentArgs(BaseModel):
    component_id: str = Field(min_length=1, description="需要移除的组件 ID")


def _slug(text: str) -> str:
    return re.sub(r"\s+", "-", text.strip().lower())


def show_weather_card(args: WeatherCardArgs) -> ToolOutput:
    data = {
        "city": args.city,
        "temperature": random.randint(5, 35),
        "condition": random.choice(["晴", "多云", "小雨", "雷阵雨"]),
        "humidity": random.randint(30, 90),
        "wind": random.randint(5, 30),
        "forecast": [
            {"day": day, "temp": random.randint(5, 35), "icon": icon}
            for day, icon in (("明天", "sun"), ("后天", "cloud"), ("周四", "rain"))
        ],
    }
    return ToolOutput(
        text=dumps(data),
        ui_action=UIAction(
            kind="mount",
            component_id=f"weather-{_slug(args.city)}",
            component="weather_card",
            props=data,
        ),
    )


def show_chart(args: ChartArgs) -> ToolOutput:
    if len(args.labels) != len(args.values):
        raise ValueError("labels and values must have the same length")
    return ToolOutput(
        text=dumps({"title": args.title, "type": args.chart_type, "data_points": len(args.labels)}),
        ui_action=UIAction(
            kind="mount",
            component_id=f"chart-{uuid4().hex[:8]}",
            component="chart",
            props={
                "title": args.title,
                "type": args.chart_type,
                "data": {
                    "labels": args.labels,
                    "datasets": [{"label": args.title, "data": args.values}],
                },
            },
        ),
    )


def show_data_table(args: DataTableArgs) -> ToolOutput:
    return ToolOutput(
        text=dumps({"title": args.title, "column_count": len(args.columns), "row_count": len(args.rows)}),
        ui_action=UIAction(
            kind="mount",
            component_id=f"table-{uuid4().hex[:8]}",
            component="data_table",
            props=args.model_dump(),
        ),
    )


def update_component(args: UpdateComponentArgs) -> ToolOutput:
    return ToolOutput(
        text=dumps({"updated": args.component_id, "keys": sorted(args.props)}),
        ui_action=UIAction(kind="update", component_id=args.component_id, component=args.component, props=args.props),
    )


def remove_component(args: RemoveComponentArgs) -> ToolOutput:
    return ToolOutput(
        text=dumps({"removed": args.component_id}),
        ui_action=UIAction(kind="unmount", component_id=args.component_id),
    )


def register_ui_tools(registry: CapabilityRegistry) -> CapabilityRegistry:
    registry.register(
        ToolDef.from_model(
            "show_weather_card",
            "在界面上展示某个城市的天气卡片。用户询问天气时使用，会生成一个可视化组件。",
            WeatherCardArgs,
        ),
        show_weather_card,
        args_model=WeatherCardArgs,
        ui_component="weather_card",
    )
    registry.register(
        ToolDef.from_model(
            "show_chart",
            "展示交互式图表，适合数据序列、对比、趋势和统计。",
            ChartArgs,
        ),
        show_chart,
        args_model=ChartArgs,
        ui_component="chart",
    )
    registry.register(
        ToolDef.from_model(
            "show_data_table",
            "展示交互式表格，适合列表、对比结果和表格数据。",
            DataTableArgs,
        ),
        show_data_table,
        args_model=DataTableArgs,
        ui_component="data_table",
    )
    registry.register(
        ToolDef.from_model(
            "update_component",
            "更新已经展示的组件的部分属性。",
            UpdateComponentArgs,
        ),
        update_component,
        args_model=UpdateComponentArgs,
    )
    registry.register(
        ToolDef.from_model(
            "remove_component",
            "从界面上移除一个已经展示的组件。",
            RemoveComponentArgs,
        ),
        remove_component,
        args_model=RemoveComponentArgs,
    )
    registry.register(
        ToolDef.from_model(
            "calculator",
            "计算数学表达式，例如 '2 + 2'、'sqrt(144)'。",
            CalculatorArgs,
        ),
        calculator,
        args_model=CalculatorArgs,
    )
    return registry


def ui_registry(dispatch_timeout: Optional[float] = None) -> CapabilityRegistry:
    return register_ui_tools(CapabilityRegistry(dispatch_timeout=dispatch_timeout))
