import pydantic
import pytest

from chat_core.config.settings import Settings


def test_yaml_config_is_loaded(monkeypatch, tmp_path):
    config = tmp_path / "chat.yaml"
    config.write_text("default_model: Claude\nanonymous_daily_limit: 7\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(config))
    monkeypatch.delenv("DEFAULT_MODEL", raising=False)
    monkeypatch.delenv("ANONYMOUS_DAILY_LIMIT", raising=False)

    cfg = Settings()
    assert cfg.default_model == "Claude"
    assert cfg.anonymous_daily_limit == 7


def test_init_args_override_yaml(monkeypatch, tmp_path):
    config = tmp_path / "chat.yaml"
    config.write_text("max_context_messages: 5\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(config))
    assert Settings(max_context_messages=3).max_context_messages == 3


def test_short_api_key_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(edge_anon_key="short")
