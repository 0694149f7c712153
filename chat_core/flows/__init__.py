"""单轮对话的 LangGraph 状态机。"""
