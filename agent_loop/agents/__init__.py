"""Agent 组件：ModelGateway。"""
