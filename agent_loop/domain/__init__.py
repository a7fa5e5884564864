"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 会话、消息序列与推理循环状态（LoopState）。
- exceptions: 业务异常类型定义。
"""
