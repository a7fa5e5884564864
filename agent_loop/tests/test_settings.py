import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from agent_loop.config.settings import Settings
from agent_loop.infrastructure.logging.logger import JsonFormatter


def test_yaml_config_source(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("max_iterations: 7\ndefault_provider: groq\nstream_buffer_limit: 16\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AGENT_CONFIG_FILE", str(cfg))
    monkeypatch.delenv("MAX_ITERATIONS", raising=False)
    monkeypatch.delenv("DEFAULT_PROVIDER", raising=False)
    s = Settings()
    assert s.max_iterations == 7
    assert s.default_provider == "groq"
    assert s.stream_buffer_limit == 16
    assert s.stream_max_iterations == 8


def test_env_overrides_yaml(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("max_iterations: 7\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AGENT_CONFIG_FILE", str(cfg))
    monkeypatch.setenv("MAX_ITERATIONS", "3")
    assert Settings().max_iterations == 3


def test_validation(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    assert Settings(log_level="debug").log_level == "DEBUG"
    assert Settings(openai_api_key="  ").openai_api_key is None
    with pytest.raises(PydanticValidationError):
        Settings(log_level="loud")
    with pytest.raises(PydanticValidationError):
        Settings(max_iterations=0)


def test_json_formatter_includes_extra():
    record = logging.LogRecord("agent_loop", logging.INFO, __file__, 1, "Turn started", None, None)
    record.extra = {"trace_id": "t1", "turn": 2}
    payload = json.loads(JsonFormatter().format(record))
    assert payload["msg"] == "Turn started"
    assert payload["level"] == "INFO"
    assert payload["trace_id"] == "t1"
    assert payload["turn"] == 2
