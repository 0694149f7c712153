from chat_core.domain.exceptions import AuthError, NetworkError, RateLimitError
from chat_core.orchestrator.error_messages import GENERIC_ERROR, classify_error


def test_classification_order():
    assert classify_error(NetworkError(code="TIMEOUT", message="Request timed out: read")).kind == "timeout"
    assert classify_error(RateLimitError(code="RATE_LIMIT", message="Rate limit exceeded")).kind == "limit"
    assert classify_error("HTTP 429 from upstream").kind == "limit"
    assert classify_error("Failed to fetch").kind == "network"
    assert classify_error(AuthError(code="UNAUTHORIZED", message="Authentication failed")).kind == "auth"
    assert classify_error("Access denied. Please check your permissions.").kind == "auth"
    # timeout wins over network when both appear
    assert classify_error("network timeout").kind == "timeout"


def test_generic_fallback():
    assert classify_error("empty response") is GENERIC_ERROR
    assert classify_error(ValueError("weird")).user_message == GENERIC_ERROR.user_message


def test_each_kind_has_distinct_message():
    messages = {
        classify_error(text).user_message
        for text in ["timeout", "rate limit", "network", "unauthorized", "???"]
    }
    assert len(messages) == 5
