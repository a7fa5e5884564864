"""Agent Loop 顶层包。

一个可调用工具的推理循环：模型在“思考”和“调用工具”之间交替，
直到给出最终回答或达到迭代上限。包含配置加载、领域模型、Provider 适配、
工具注册表、LangGraph 推理循环、流式事件协议与客户端状态投影。
"""

from agent_loop.api.service import AgentService, build_service, get_default_service

__all__ = ["AgentService", "build_service", "get_default_service"]
