"""领域层模型与协议。

包含：
- models: Message / ChatParameters / Conversation / WireRequest 数据模型。
- conversation: KeyValueStore 与 ConversationStore 存储抽象。
- exceptions: 业务异常类型定义与面向用户的错误提示。
"""
