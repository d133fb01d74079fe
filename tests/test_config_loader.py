from pathlib import Path

import pytest

from job_harvest.config_loader import ConfigLoader, ConfigValidationError, load_config, read_api_key

PROJECT_SETTINGS = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"


def test_shipped_settings_load():
    config = load_config(str(PROJECT_SETTINGS))

    assert config.get_platform() == "boss"
    assert config.get_navigation_timeout() == 45000
    assert config.get_script_timeout() == 10.0
    assert config.get_pacing_range_ms("settle", 0, 0) == (500.0, 1500.0)
    assert config.get_scroll_distance_range() == (300, 700)
    assert config.get_status_marker() == "开放中"
    assert config.get_ai_timeout("ai_vision") == 60.0


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(str(tmp_path / "nope.yaml"))


def test_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("", encoding="utf-8")
    config = ConfigLoader(str(path))

    assert config.get_readiness_timeout_ms() == 20000
    assert config.get_interception_timeout_ms() == 15000
    assert config.is_ai_enabled("ai_text") is False
    assert config.get_ai_provider("ai_text") == "zhipu"
    assert config.get_ai_timeout("ai_text") == 30.0
    assert config.get_vision_debug_dir() is None
    assert config.get("missing.deeply.nested", "fallback") == "fallback"


@pytest.mark.parametrize("overrides, field", [
    ({"pacing": {"settle_min_ms": 2000, "settle_max_ms": 1000}}, "pacing.settle_min_ms"),
    ({"pacing": {"scroll_distance_min": -5}}, "pacing.scroll_distance_min"),
    ({"readiness": {"timeout_ms": 0}}, "readiness.timeout_ms"),
    ({"browser": {"script_timeout": 0}}, "browser.script_timeout"),
    ({"ai_text": {"timeout_seconds": -1}}, "ai_text.timeout_seconds"),
    ({"dom": {"segment_max_chars": 0}}, "dom.segment_max_chars"),
    ({"pacing": {"hesitation_chance": 1.5}}, "pacing.hesitation_chance"),
    ({"readiness": {"poll_interval_ms": "fast"}}, "readiness.poll_interval_ms"),
])
def test_invalid_values_are_rejected(make_config, overrides, field):
    with pytest.raises(ConfigValidationError, match=field):
        make_config(overrides)


def test_profile_dir_and_output_templates(make_config):
    config = make_config({
        "browser": {"profile_dir": "profiles/{account}"},
        "output": {"json_file": "out/jobs{timestamp}.json", "use_timestamp": False},
    })

    assert config.get_profile_dir("hr-7") == Path("profiles/hr-7")
    assert config.get_output_path() == Path("out/jobs.json")


def test_read_api_key(monkeypatch):
    monkeypatch.setenv("JOB_HARVEST_TEST_KEY", "  sk-abc \n")
    assert read_api_key("JOB_HARVEST_TEST_KEY") == "sk-abc"
    assert read_api_key("") == ""
