"""对外接口：AgentService 与 HTTP 服务。"""
