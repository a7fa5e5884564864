"""工具系统：工具定义、CapabilityRegistry 与内置/界面工具集。"""

from agent_loop.tools.builtin import default_registry
from agent_loop.tools.registry import CapabilityRegistry
from agent_loop.tools.ui_tools import ui_registry

__all__ = ["CapabilityRegistry", "default_registry", "ui_registry"]
