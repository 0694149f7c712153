"""匿名用户的消息配额（每日计数 + 突发限速）。"""

from .anonymous_usage import AnonymousQuota

__all__ = ["AnonymousQuota"]
