"""基础模式下的内置工具：天气、计算器、文件读写与数据分析。

这些工具的业务逻辑只是演示用途，推理循环把它们当作黑盒执行器。
文件类工具默认只能访问 workspace_root 之内的路径。
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Union
import ast
import math
import operator
import random
import statistics

from pydantic import BaseModel, Field

from agent_loop.config.settings import settings
from .definitions import ToolDef
from .registry import CapabilityRegistry, dumps, truncate_text


# ---- 参数模型 ----


class WeatherArgs(BaseModel):
    city: str = Field(min_length=1, description="城市名称，例如 'Madrid'、'北京'")
    units: Literal["celsius", "fahrenheit"] = Field(default="celsius", description="温度单位")


class CalculatorArgs(BaseModel):
    expression: str = Field(min_length=1, description="数学表达式，支持 + - * / ** % 和 math 函数，如 sqrt(144)")


class ReadFileArgs(BaseModel):
    path: str = Field(min_length=1, description="相对工作目录的文件路径")


class WriteFileArgs(BaseModel):
    path: str = Field(min_length=1, description="要写入的文件路径")
    content: str = Field(description="写入的完整内容（覆盖已有内容）")


class ListDirectoryArgs(BaseModel):
    directory: str = Field(default=".", description="要列出的目录，默认是工作目录")


class AnalyzeDataArgs(BaseModel):
    values: List[float] = Field(description="需要分析的数值序列")
    description: Optional[str] = Field(default=None, description="数据的简短说明")


# ---- 天气 ----

_CONDITIONS = ["晴", "多云", "小雨", "局部多云"]


def get_weather(args: WeatherArgs) -> str:
    celsius = random.randint(5, 40)
    temperature = celsius if args.units == "celsius" else round(celsius * 9 / 5 + 32)
    return dumps(
        {
            "city": args.city,
            "temperature": temperature,
            "units": args.units,
            "condition": random.choice(_CONDITIONS),
            "humidity": random.randint(30, 90),
            "wind_speed": random.randint(5, 35),
        }
    )


# ---- 计算器 ----

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {ast.UAdd: operator.pos, ast.USub: operator.neg}
_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    name: getattr(math, name)
    for name in ("sqrt", "sin", "cos", "tan", "asin", "acos", "atan", "log", "log10", "log2", "exp", "floor", "ceil")
}
_FUNCTIONS.update({"abs": abs, "round": round, "min": min, "max": max, "pow": pow})
_CONSTANTS = {"pi": math.pi, "e": math.e, "PI": math.pi, "E": math.e}
MAX_EXPONENT = 1000


def _eval_node(node: ast.AST) -> Union[int, float]:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left, right = _eval_node(node.left), _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError("exponent too large")
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id in _FUNCTIONS:
        if node.keywords:
            raise ValueError("keyword arguments are not supported")
        return _FUNCTIONS[node.func.id](*[_eval_node(arg) for arg in node.args])
    raise ValueError(f"unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> Union[int, float]:
    """在受限的 AST 上求值，只允许数字、算术运算和 math 函数。"""

    # 兼容 JavaScript 风格的 Math.sqrt(...) 写法
    text = expression.replace("Math.", "").replace("^", "**")
    tree = ast.parse(text.strip(), mode="eval")
    return _eval_node(tree)


def calculator(args: CalculatorArgs) -> str:
    result = evaluate_expression(args.expression)
    if not isinstance(result, (int, float)) or not math.isfinite(result):
        return dumps({"error": "表达式没有得到有效的数值", "expression": args.expression, "result": str(result)})
    return dumps({"expression": args.expression, "result": result, "formatted": f"{result:,}"})


# ---- 文件系统 ----


def _coerce_root(root: Optional[Union[str, Path]]) -> Path:
    raw = root if root is not None else settings.workspace_root
    return Path(raw).expanduser().resolve()


def _is_within_root(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def _resolve_path(raw: str, root: Path, allow_absolute: bool) -> Path:
    candidate = Path(raw.strip()).expanduser()
    resolved = candidate.resolve() if candidate.is_absolute() else (root / candidate).resolve()
    if not allow_absolute and not _is_within_root(resolved, root):
        raise PermissionError(f"path outside workspace: {raw}")
    return resolved


def _make_read_file_tool(root: Path, allow_absolute: bool, limit: int):
    def _run(args: ReadFileArgs) -> str:
        path = _resolve_path(args.path, root, allow_absolute)
        content = path.read_text(encoding="utf-8")
        text, size, truncated = truncate_text(content, limit)
        return dumps({"path": str(path), "content": text, "size": size, "truncated": truncated})

    return _run


def _make_write_file_tool(root: Path, allow_absolute: bool):
    def _run(args: WriteFileArgs) -> str:
        path = _resolve_path(args.path, root, allow_absolute)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        data = args.content.encode("utf-8")
        try:
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        finally:
            tmp_path.unlink(missing_ok=True)
        return dumps({"success": True, "path": str(path), "bytes_written": len(data)})

    return _run


def _make_list_directory_tool(root: Path, allow_absolute: bool, max_entries: int):
    def _run(args: ListDirectoryArgs) -> str:
        base = _resolve_path(args.directory or ".", root, allow_absolute)
        names = sorted(p.name for p in base.iterdir())
        entries: List[Dict[str, Any]] = []
        for name in names[:max_entries]:
            entry_path = base / name
            try:
                is_dir = entry_path.is_dir()
                size = None if is_dir else entry_path.stat().st_size
                entries.append({"name": name, "type": "directory" if is_dir else "file", "size": size})
            except OSError:
                entries.append({"name": name, "type": "unknown", "size": None})
        return dumps(
            {
                "directory": str(base),
                "entries": entries,
                "total": len(names),
                "showing": len(entries),
            }
        )

    return _run


# ---- 数据分析 ----


def analyze_data(args: AnalyzeDataArgs) -> str:
    values = args.values
    if not values:
        return dumps({"count": 0, "summary": "没有提供数据"})
    return dumps(
        {
            "mean": statistics.fmean(values),
            "median": statistics.median(values),
            "min": min(values),
            "max": max(values),
            "standard_deviation": statistics.pstdev(values),
            "count": len(values),
            "summary": f"完成 {len(values)} 个数值的分析" + (f"（{args.description}）" if args.description else ""),
        }
    )


# ---- 注册 ----


def register_builtin_tools(
    registry: CapabilityRegistry,
    workspace_root: Optional[Union[str, Path]] = None,
    allow_absolute: Optional[bool] = None,
) -> CapabilityRegistry:
    root = _coerce_root(workspace_root)
    allow_abs = settings.allow_tool_absolute_path if allow_absolute is None else allow_absolute
    limit = settings.max_tool_output_chars

    registry.register(
        ToolDef.from_model(
            "get_weather",
            "查询某个城市的当前天气。用户询问天气、温度或天气预报时使用。",
            WeatherArgs,
        ),
        get_weather,
        args_model=WeatherArgs,
    )
    registry.register(
        ToolDef.from_model(
            "calculator",
            "计算数学表达式，适用于任何数值计算，例如 '2 + 2'、'sqrt(144)'、'(3.14 * 10**2)'。",
            CalculatorArgs,
        ),
        calculator,
        args_model=CalculatorArgs,
    )
    registry.register(
        ToolDef.from_model(
            "read_file",
            "读取文件内容，过长时会被截断。适合查看配置、源码、日志等。",
            ReadFileArgs,
        ),
        _make_read_file_tool(root, allow_abs, limit),
        args_model=ReadFileArgs,
    )
    registry.register(
        ToolDef.from_model(
            "write_file",
            "把内容写入文件，文件不存在时自动创建。注意：会覆盖已有内容。",
            WriteFileArgs,
        ),
        _make_write_file_tool(root, allow_abs),
        args_model=WriteFileArgs,
    )
    registry.register(
        ToolDef.from_model(
            "list_directory",
            "列出目录下的文件和子目录，返回名称、类型和大小。",
            ListDirectoryArgs,
        ),
        _make_list_directory_tool(root, allow_abs, settings.max_list_entries),
        args_model=ListDirectoryArgs,
    )
    registry.register(
        ToolDef.from_model(
            "analyze_data",
            "对一组数值做统计分析：均值、中位数、最大值、最小值和标准差。",
            AnalyzeDataArgs,
        ),
        analyze_data,
        args_model=AnalyzeDataArgs,
    )
    return registry


def default_registry(
    workspace_root: Optional[Union[str, Path]] = None,
    allow_absolute: Optional[bool] = None,
    dispatch_timeout: Optional[float] = None,
) -> CapabilityRegistry:
    registry = CapabilityRegistry(dispatch_timeout=dispatch_timeout)
    return register_builtin_tools(registry, workspace_root, allow_absolute)
