"""Provider 错误分类。

按顺序匹配错误文本，命中的第一条规则决定错误种类和展示给用户的提示，
都不命中时落到 generic。
"""

from dataclasses import dataclass
from typing import Callable, List, Tuple


@dataclass(frozen=True)
class ErrorClass:
    kind: str
    user_message: str


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(n in text for n in needles)


ERROR_RULES: List[Tuple[Callable[[str], bool], ErrorClass]] = [
    (
        _contains("timeout", "timed out"),
        ErrorClass("timeout", "The AI service took too long to respond. Please try again."),
    ),
    (
        _contains("rate limit", "429", "limit"),
        ErrorClass("limit", "Rate limit reached. Please wait a moment and try again."),
    ),
    (
        _contains("network", "failed to fetch", "connection"),
        ErrorClass("network", "Network error. Please check your internet connection and try again."),
    ),
    (
        _contains("auth", "401", "403", "unauthorized", "access denied", "api key"),
        ErrorClass("auth", "Authentication failed. Please log in again."),
    ),
]

GENERIC_ERROR = ErrorClass("generic", "Something went wrong while generating a response. Please try again.")

QUOTA_EXCEEDED_MESSAGE = (
    "You've reached the free message limit for today. Sign in or come back after the daily reset."
)


def classify_error(error: BaseException | str) -> ErrorClass:
    text = str(error).lower()
    for predicate, error_class in ERROR_RULES:
        if predicate(text):
            return error_class
    return GENERIC_ERROR
