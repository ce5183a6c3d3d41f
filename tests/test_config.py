"""Tests for YAML configuration loading, environment overrides and thread-safe configuration."""

import concurrent.futures
import threading

import pytest
import yaml

from ralph_runner.errors import SetupError
from ralph_runner.main import (
    DEFAULT_COMPLETE_TOKEN,
    ConfigValidator,
    RalphConfig,
)


def write_yaml(tmp_path, data, name="ralph.yml"):
    path = tmp_path / name
    path.write_text(yaml.dump(data))
    return str(path)


def test_defaults():
    config = RalphConfig()
    assert config.max_iterations == 0
    assert config.max_calls_per_hour == 100
    assert config.timeout_minutes == 20
    assert config.timeout_seconds == 1200
    assert config.max_timeout_retries == 2
    assert config.complete_token == DEFAULT_COMPLETE_TOKEN
    assert config.agent_command == "opencode run"
    assert config.no_progress_threshold == 3
    assert config.same_error_threshold == 5
    assert config.output_decline_threshold == 70


def test_yaml_config_loading(tmp_path):
    path = write_yaml(tmp_path, {
        "max_iterations": 50,
        "max_calls_per_hour": 20,
        "timeout_minutes": 5,
        "agent_command": "claude -p",
        "verbose": True,
    })

    config = RalphConfig.from_yaml(path)

    assert config.max_iterations == 50
    assert config.max_calls_per_hour == 20
    assert config.timeout_seconds == 300
    assert config.agent_command == "claude -p"
    assert config.verbose is True


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("")
    assert RalphConfig.from_yaml(str(path)).max_calls_per_hour == 100


def test_missing_yaml_file():
    with pytest.raises(FileNotFoundError):
        RalphConfig.from_yaml("/nonexistent/ralph.yml")


def test_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("max_iterations: [unclosed")
    with pytest.raises(SetupError, match="Invalid YAML"):
        RalphConfig.from_yaml(str(path))


def test_yaml_must_be_mapping(tmp_path):
    path = tmp_path / "list.yml"
    path.write_text("- one\n- two\n")
    with pytest.raises(SetupError, match="mapping"):
        RalphConfig.from_yaml(str(path))


def test_unknown_keys_rejected(tmp_path):
    path = write_yaml(tmp_path, {"max_iterations": 3, "agent": "claude"})
    with pytest.raises(SetupError, match="Unknown configuration option"):
        RalphConfig.from_yaml(path)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"max_iterations": -1}, "max_iterations must be >= 0"),
        ({"max_calls_per_hour": 0}, "max_calls_per_hour must be >= 1"),
        ({"timeout_minutes": 0}, "timeout_minutes must be > 0"),
        ({"no_progress_threshold": 0}, "no_progress_threshold must be >= 1"),
        ({"output_decline_threshold": 150}, "between 1 and 100"),
        ({"complete_token": ""}, "complete_token must not be empty"),
        ({"agent_command": "  "}, "agent_command must not be empty"),
        ({"max_iterations": "many"}, "Invalid configuration value type"),
    ],
)
def test_validation(overrides, message):
    with pytest.raises(SetupError, match=message):
        RalphConfig.from_dict(overrides)


def test_environment_overrides_yaml(tmp_path):
    path = write_yaml(tmp_path, {"max_calls_per_hour": 20, "timeout_minutes": 5})
    config = RalphConfig.from_yaml(path)

    config.apply_env({
        "RALPH_MAX_CALLS_PER_HOUR": "40",
        "RALPH_COMPLETE_TOKEN": "DONE!",
        "RALPH_CB_NO_PROGRESS_THRESHOLD": "4",
        "RALPH_MAX_ITERATIONS": "",
    })

    assert config.max_calls_per_hour == 40
    assert config.timeout_minutes == 5
    assert config.complete_token == "DONE!"
    assert config.no_progress_threshold == 4
    assert config.max_iterations == 0


def test_bad_environment_value():
    with pytest.raises(SetupError, match="RALPH_MAX_ITERATIONS"):
        RalphConfig().apply_env({"RALPH_MAX_ITERATIONS": "lots"})


def test_flags_override_everything():
    config = RalphConfig().apply_env({"RALPH_MAX_ITERATIONS": "10"})
    config.update(max_iterations=2, timeout_minutes=None)

    assert config.max_iterations == 2
    assert config.timeout_minutes == 20


def test_update_rejects_unknown_option():
    with pytest.raises(SetupError):
        RalphConfig().update(agent="claude")


def test_to_dict_hides_lock():
    data = RalphConfig().to_dict()
    assert "_lock" not in data
    assert set(data) == set(RalphConfig.option_names())


def test_check_keys_accepts_known():
    ConfigValidator.check_keys({"max_iterations": 1, "verbose": False})


class TestThreadSafeConfig:
    """Getters and update() guarded by the config lock."""

    def test_concurrent_max_iterations_access(self):
        config = RalphConfig()
        errors = []

        def writer(value):
            try:
                for _ in range(100):
                    config.update(max_iterations=value)
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(100):
                    assert config.get_max_iterations() in (0, 1, 2, 3)
            except Exception as e:
                errors.append(e)

        with concurrent.futures.ThreadPoolExecutor(max_workers=6) as executor:
            futures = [executor.submit(writer, v) for v in (1, 2, 3)]
            futures += [executor.submit(reader) for _ in range(3)]
            concurrent.futures.wait(futures)

        assert errors == []
        assert config.get_max_iterations() in (1, 2, 3)

    def test_getters_see_updates(self):
        config = RalphConfig()
        config.update(max_calls_per_hour=7, timeout_minutes=2.5)
        assert config.get_max_calls_per_hour() == 7
        assert config.timeout_seconds == 150

    def test_lock_is_reentrant(self):
        config = RalphConfig()
        assert isinstance(config._lock, type(threading.RLock()))
        with config._lock:
            config.update(max_iterations=5)
        assert config.get_max_iterations() == 5
