from __future__ import annotations

import json
import signal
import socket
from pathlib import Path

import pytest

import heliospectra_agent
from heliospectra.cli import build_parser, resolve_config
from heliospectra.cli.common import env_flag
from heliospectra.config import AgentConfig, load_config
from heliospectra.errors import ConfigError

AGENT_ENV = (
    "ADDRESS",
    "TRANSPORT",
    "TELNET_PORT",
    "NO_METRICS",
    "DUMMY",
    "LOOP",
    "HOST_TAG",
    "GROUP_TAG",
    "DID_TAG",
    "CONDITIONS_FILE",
    "INTERVAL",
    "MULTIPLIER",
    "CONFIG_FILE",
    "TELEGRAF_HOST",
    "NAME",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in AGENT_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(signal, "signal", lambda *_args: None)
    return monkeypatch


def _resolve(argv, environ=None) -> AgentConfig:
    return resolve_config(build_parser().parse_args(argv), environ or {})


def test_defaults_select_metrics_mode() -> None:
    config = _resolve(["192.168.1.3"])

    assert config.device.address == "192.168.1.3"
    assert config.device.transport == "http"
    assert config.metrics.enabled is True
    assert config.metrics.group_tag == "nonspc"
    assert config.metrics.telegraf_host == "telegraf:8092"
    assert config.schedule.interval_s == 600.0
    assert config.schedule.multiplier == 10.0
    assert config.mode == "metrics"
    assert config.measurement_name == "heliospectra2"


def test_environment_fills_unset_flags() -> None:
    config = _resolve(
        [],
        {
            "ADDRESS": "10.0.0.9",
            "HOST_TAG": "gc05",
            "DID_TAG": "d42",
            "INTERVAL": "5m",
            "LOOP": "1",
            "CONDITIONS_FILE": "GC05-conditions.csv",
            "MULTIPLIER": "2.5",
            "TELEGRAF_HOST": "collector:9000",
        },
    )

    assert config.device.address == "10.0.0.9"
    assert config.metrics.host_tag == "gc05"
    assert config.metrics.did_tag == "d42"
    assert config.metrics.telegraf_host == "collector:9000"
    assert config.schedule.interval_s == 300.0
    assert config.schedule.loop_first_day is True
    assert config.schedule.conditions_path == Path("GC05-conditions.csv")
    assert config.schedule.multiplier == 2.5
    assert config.mode == "schedule"


def test_flags_take_precedence_over_environment() -> None:
    config = _resolve(
        ["-host-tag", "gc07", "--interval", "1m", "-dummy", "-conditions", "c.csv", "10.0.0.1"],
        {"ADDRESS": "10.0.0.9", "HOST_TAG": "gc05", "INTERVAL": "5m", "DUMMY": "false"},
    )

    assert config.device.address == "10.0.0.1"
    assert config.metrics.host_tag == "gc07"
    assert config.schedule.interval_s == 60.0
    assert config.schedule.dummy is True
    assert config.mode == "metrics"


def test_host_tag_falls_back_to_name() -> None:
    assert _resolve(["10.0.0.1"], {"NAME": "chamber-3"}).metrics.host_tag == "chamber-3"
    assert _resolve(["10.0.0.1"], {"NAME": "chamber-3", "HOST_TAG": "gc01"}).metrics.host_tag == "gc01"


def test_env_flag_values() -> None:
    assert env_flag({"DUMMY": "TRUE"}, "DUMMY") is True
    assert env_flag({"DUMMY": "1"}, "DUMMY") is True
    assert env_flag({"DUMMY": "yes"}, "DUMMY") is False
    assert env_flag({}, "DUMMY") is None


def test_no_metrics_without_conditions_is_idle() -> None:
    config = _resolve(["10.0.0.1"], {"NO_METRICS": "true"})
    assert config.metrics.enabled is False
    assert config.mode == "idle"


@pytest.mark.parametrize(
    "argv, environ",
    [
        (["-no-metrics", "-dummy", "10.0.0.1"], {}),
        (["10.0.0.1"], {"NO_METRICS": "1", "DUMMY": "true"}),
        (["-interval", "ten minutes", "10.0.0.1"], {}),
        (["-interval=-1s", "10.0.0.1"], {}),
        (["-multiplier", "lots", "10.0.0.1"], {}),
        (["-multiplier", "0", "10.0.0.1"], {}),
        (["10.0.0.1"], {"TELEGRAF_HOST": "telegraf:abc"}),
        (["10.0.0.1"], {"TELEGRAF_HOST": ":8092"}),
        ([], {}),
    ],
)
def test_invalid_settings_raise_config_error(argv, environ) -> None:
    with pytest.raises(ConfigError):
        _resolve(argv, environ)


def test_yaml_config_file_is_overridden_by_environment(tmp_path) -> None:
    path = tmp_path / "agent.yaml"
    path.write_text(
        "device:\n"
        "  address: 10.0.0.20\n"
        "  transport: telnet\n"
        "  port: 2323\n"
        "metrics:\n"
        "  group_tag: spc\n"
        "  host_tag: gc09\n"
        "schedule:\n"
        "  strict_channel_count: false\n",
        encoding="utf-8",
    )

    config = _resolve(["-config", str(path)], {"GROUP_TAG": "override"})

    assert config.device.address == "10.0.0.20"
    assert config.device.transport == "telnet"
    assert config.device.port == 2323
    assert config.metrics.group_tag == "override"
    assert config.metrics.host_tag == "gc09"
    assert config.schedule.strict_channel_count is False
    assert config.measurement_name == "heliospectra-light"


def test_load_config_json_and_toml(tmp_path) -> None:
    json_path = tmp_path / "agent.json"
    json_path.write_text(json.dumps({"metrics": {"max_attempts": "3"}}), encoding="utf-8")
    assert load_config(json_path).metrics.max_attempts == 3

    toml_path = tmp_path / "agent.toml"
    toml_path.write_text('[schedule]\nconditions_path = "GC03.csv"\ninterval_s = 60\n', encoding="utf-8")
    schedule = load_config(toml_path).schedule
    assert schedule.conditions_path == Path("GC03.csv")
    assert schedule.interval_s == 60


def test_load_config_rejects_bad_files(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")

    ini_path = tmp_path / "agent.ini"
    ini_path.write_text("[device]\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(ini_path)

    unknown = tmp_path / "agent.json"
    unknown.write_text(json.dumps({"device": {"baudrate": 9600}}), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(unknown)


def test_config_to_dict_is_loadable(tmp_path) -> None:
    config = _resolve(["-conditions", "c.csv", "-transport", "telnet", "10.0.0.1"])
    path = tmp_path / "dump.json"
    path.write_text(json.dumps(config.to_dict()), encoding="utf-8")
    assert load_config(path) == config


def test_main_exits_nonzero_when_nothing_to_do(clean_env) -> None:
    assert heliospectra_agent.main(["-no-metrics", "-dummy", "10.0.0.1"]) == 1


def test_main_exits_nonzero_on_malformed_metrics_target(clean_env) -> None:
    clean_env.setenv("TELEGRAF_HOST", "telegraf:abc")
    assert heliospectra_agent.main(["-transport", "sim", "-interval", "0s"]) == 1


def test_main_one_shot_publishes_single_metric(clean_env) -> None:
    collector = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    collector.bind(("127.0.0.1", 0))
    collector.settimeout(2.0)
    try:
        clean_env.setenv("TELEGRAF_HOST", f"127.0.0.1:{collector.getsockname()[1]}")

        assert heliospectra_agent.main(["-transport", "sim", "-interval", "0s", "-host-tag", "gc03"]) == 0

        payload, _ = collector.recvfrom(65535)
        assert payload.startswith(b"heliospectra2,group=nonspc,host=gc03 ")
        collector.settimeout(0.2)
        with pytest.raises(socket.timeout):
            collector.recvfrom(65535)
    finally:
        collector.close()
