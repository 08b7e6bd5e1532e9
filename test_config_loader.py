"""
Config loader.

Tests verify:
1. Explicit path / $TIMEKEEPER_CONFIG resolution and friendly RuntimeErrors
2. Accessors fall back to defaults when sections are absent
3. default_event and upload settings are normalized
"""

import pytest

from timekeeper import config_loader as cl


def write(tmp_path, text, name="config.yaml"):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def test_load_explicit_path(tmp_path):
    p = write(tmp_path, "app:\n  server:\n    host: 0.0.0.0\n    port: 9001\n")
    cfg = cl.load_config(p)
    assert cl.get_server_bind(cfg) == ("0.0.0.0", 9001)


def test_env_var_wins_over_default(tmp_path, monkeypatch):
    p = write(tmp_path, "log:\n  level: debug\n")
    monkeypatch.setenv(cl.ENV_VAR, str(p))
    cfg = cl.load_config()
    assert cl.get_log_level(cfg=cfg) == "DEBUG"


def test_missing_file_is_friendly(tmp_path):
    with pytest.raises(RuntimeError, match="Missing configuration file"):
        cl.load_config(tmp_path / "nope.yaml")


def test_broken_yaml_and_non_mapping_root(tmp_path):
    with pytest.raises(RuntimeError, match="Failed to parse YAML"):
        cl.load_config(write(tmp_path, "app: [unclosed\n", "broken.yaml"))
    with pytest.raises(RuntimeError, match="must be a mapping"):
        cl.load_config(write(tmp_path, "- just\n- a list\n", "list.yaml"))


def test_empty_config_defaults():
    cfg = {}
    assert cl.get_server_bind(cfg) == ("127.0.0.1", 8000)
    assert cl.get_remote_cfg(cfg) == {}
    assert cl.get_log_level(cfg=cfg) == "INFO"
    assert cl.get_upload_cfg(cfg) == {
        "interval_ms": 1000, "max_polls": None, "max_consecutive_errors": 1}
    ev = cl.get_default_event(cfg)
    assert ev.event_name == "Practice" and ev.race_time_in_sec == 180


def test_bad_port_falls_back():
    cfg = {"app": {"server": {"host": "10.0.0.2", "port": "http"}}}
    assert cl.get_server_bind(cfg) == ("10.0.0.2", 8000)


def test_default_event_and_upload_block():
    cfg = {"app": {
        "timekeeper": {"default_event": {"event_name": "Heats", "race_time_in_sec": 90,
                                         "number_of_resets": 4}},
        "upload": {"interval_ms": 500, "max_polls": 120, "max_consecutive_errors": 3},
    }}
    ev = cl.get_default_event(cfg)
    assert (ev.event_name, ev.race_time_in_sec, ev.number_of_resets) == ("Heats", 90, 4)
    assert cl.get_upload_cfg(cfg) == {
        "interval_ms": 500, "max_polls": 120, "max_consecutive_errors": 3}


def test_invalid_default_event():
    cfg = {"app": {"timekeeper": {"default_event": {"race_time_in_sec": -5}}}}
    with pytest.raises(RuntimeError, match="default_event"):
        cl.get_default_event(cfg)


def test_shipped_config_loads():
    cfg = cl.load_config(cl.DEFAULT_CFG)
    assert cl.get_server_bind(cfg) == ("127.0.0.1", 8000)
    assert cl.get_upload_cfg(cfg)["max_polls"] is None
    assert cl.get_default_event(cfg).number_of_resets == 3


def test_upload_max_polls_zero_or_garbage_is_rejected():
    for bad in (0, -2, "lots"):
        cfg = {"app": {"upload": {"max_polls": bad}}}
        with pytest.raises(RuntimeError, match="max_polls"):
            cl.get_upload_cfg(cfg)
    assert cl.get_upload_cfg({"app": {"upload": {"max_polls": None}}})["max_polls"] is None
