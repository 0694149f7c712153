"""领域层模型与协议。

包含：
- models: Message / StreamSession / TurnResult 等对话轮次使用的数据结构。
- conversation: 会话模型及 ConversationStore 抽象（持久化接口）。
- exceptions: 业务异常类型定义。
"""
