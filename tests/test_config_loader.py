import json
import sys

import pytest

from codebox.config.loader import camel_to_snake, convert_keys, load_config, save_config, snake_to_camel
from codebox.config.schema import DEFAULT_TIMEOUT_MS, SandboxConfig


def test_defaults():
    config = SandboxConfig()
    assert config.timeout_ms == DEFAULT_TIMEOUT_MS == 30_000
    assert config.memory_limit_mb is None
    assert config.permission_flags == []
    assert config.python_executable == sys.executable


def test_launch_command_places_flags_before_module():
    config = SandboxConfig(permission_flags=["-I", "-X", "utf8"], memory_limit_mb=256, handler_timeout_ms=500)
    assert config.launch_command() == [
        sys.executable,
        "-I",
        "-X",
        "utf8",
        "-m",
        "codebox.worker",
        "--memory-limit-mb",
        "256",
        "--handler-timeout-ms",
        "500",
    ]


def test_handler_deadline_defaults_to_call_timeout():
    config = SandboxConfig(timeout_ms=1200)
    assert config.handler_deadline_ms() == 1200
    assert config.worker_args() == ["--handler-timeout-ms", "1200"]
    assert SandboxConfig(timeout_ms=1200, handler_timeout_ms=50).handler_deadline_ms() == 50


def test_empty_permission_flag_rejected():
    with pytest.raises(ValueError):
        SandboxConfig(permission_flags=["-I", "  "])


def test_non_positive_timeout_rejected():
    with pytest.raises(ValueError):
        SandboxConfig(timeout_ms=0)


def test_env_vars_override_defaults(monkeypatch):
    monkeypatch.setenv("CODEBOX_TIMEOUT_MS", "1500")
    monkeypatch.setenv("CODEBOX_MEMORY_LIMIT_MB", "128")
    config = SandboxConfig()
    assert config.timeout_ms == 1500
    assert config.memory_limit_mb == 128


def test_load_missing_file_returns_defaults(tmp_path):
    config = load_config(tmp_path / "missing.json")
    assert config.timeout_ms == DEFAULT_TIMEOUT_MS


def test_load_camel_case_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "timeoutMs": 5000,
                "memoryLimitMb": 64,
                "permissionFlags": ["-I"],
                "env": {"MY_VAR": "1"},
            }
        ),
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.timeout_ms == 5000
    assert config.memory_limit_mb == 64
    assert config.permission_flags == ["-I"]
    assert config.env == {"MY_VAR": "1"}


def test_load_invalid_file_raises_value_error(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError, match="Failed to load config"):
        load_config(path)

    path.write_text(json.dumps({"timeoutMs": -1}), encoding="utf-8")
    with pytest.raises(ValueError, match="Failed to load config"):
        load_config(path)


def test_save_writes_camel_case(tmp_path):
    path = tmp_path / "nested" / "config.json"
    save_config(SandboxConfig(timeout_ms=1234, env={"SOME_VAR": "x"}), path)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["timeoutMs"] == 1234
    assert data["env"] == {"SOME_VAR": "x"}
    assert "memoryLimitMb" not in data
    assert load_config(path).timeout_ms == 1234


def test_key_conversion_helpers():
    assert camel_to_snake("stopGraceMs") == "stop_grace_ms"
    assert snake_to_camel("stop_grace_ms") == "stopGraceMs"
    assert convert_keys({"env": {"fooBar": "1"}, "timeoutMs": 1}) == {"env": {"fooBar": "1"}, "timeout_ms": 1}
