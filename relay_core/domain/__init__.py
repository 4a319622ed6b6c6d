"""领域层模型与协议。

包含：
- models: ChatMessage / PersonaDescriptor / ContextPayload 等数据模型。
- conversation: 聊天记录与人设存储协议（ChatStore / PersonaStore）。
- exceptions: 业务异常类型定义。
"""
