import textwrap

import pytest

from collector.core.config import (
    DEFAULT_EVENT_CHANNELS,
    DEFAULT_POLICY_KEYS,
    ConfigFileError,
    clear_config_cache,
    load_collector_config,
)

_ENV = (
    "COLLECTOR_PRODUCT_NAME",
    "COLLECTOR_TOOL_TIMEOUT_SECONDS",
    "COLLECTOR_MDM_TIMEOUT_SECONDS",
    "COLLECTOR_OUTPUT_PATH",
    "COLLECTOR_CONFIG_FILE",
    "COLLECTOR_SKIP_ELEVATION_CHECK",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


def test_defaults() -> None:
    cfg = load_collector_config()
    assert cfg.product_name == "BitLockerDiag"
    assert cfg.tool_timeout_seconds == 300
    assert cfg.mdm_timeout_seconds == 900
    assert cfg.output_path is None
    assert cfg.skip_elevation_check is False
    assert cfg.event_channels == DEFAULT_EVENT_CHANNELS
    assert cfg.policy_keys == DEFAULT_POLICY_KEYS


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("COLLECTOR_PRODUCT_NAME", "ContosoDiag")
    monkeypatch.setenv("COLLECTOR_TOOL_TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("COLLECTOR_OUTPUT_PATH", "  D:\\support  ")
    monkeypatch.setenv("COLLECTOR_SKIP_ELEVATION_CHECK", "yes")

    cfg = load_collector_config()

    assert cfg.product_name == "ContosoDiag"
    assert cfg.tool_timeout_seconds == 45
    assert cfg.output_path == "D:\\support"
    assert cfg.skip_elevation_check is True


@pytest.mark.parametrize("raw", ["0", "-5", "soon"])
def test_bad_timeouts_fall_back_to_default(monkeypatch, raw) -> None:
    monkeypatch.setenv("COLLECTOR_MDM_TIMEOUT_SECONDS", raw)
    assert load_collector_config().mdm_timeout_seconds == 900


def test_env_config_is_cached_until_cleared(monkeypatch) -> None:
    first = load_collector_config()
    monkeypatch.setenv("COLLECTOR_PRODUCT_NAME", "Changed")
    assert load_collector_config() is first
    clear_config_cache()
    assert load_collector_config().product_name == "Changed"


def test_yaml_file_overrides_fields_and_replaces_lists(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("COLLECTOR_PRODUCT_NAME", "FromEnv")
    path = tmp_path / "collector.yaml"
    path.write_text(
        textwrap.dedent(
            """
            tool_timeout_seconds: 60
            event_channels:
              - step_id: events_app
                label: Application log
                channels: [Application]
                filename: application.evtx-export
                mandatory: true
            """
        ),
        encoding="utf-8",
    )

    cfg = load_collector_config(str(path))

    assert cfg.product_name == "FromEnv"
    assert cfg.tool_timeout_seconds == 60
    assert [c.step_id for c in cfg.event_channels] == ["events_app"]
    assert cfg.event_channels[0].channels == ("Application",)
    assert cfg.event_channels[0].mandatory
    assert cfg.policy_keys == DEFAULT_POLICY_KEYS


def test_config_file_from_env(tmp_path, monkeypatch) -> None:
    path = tmp_path / "c.yaml"
    path.write_text("product_name: EnvFileDiag\n", encoding="utf-8")
    monkeypatch.setenv("COLLECTOR_CONFIG_FILE", str(path))
    assert load_collector_config().product_name == "EnvFileDiag"


def test_empty_yaml_file_keeps_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_collector_config(str(path)).tool_timeout_seconds == 300


@pytest.mark.parametrize(
    "body",
    [
        "- just\n- a list\n",
        "unknown_key: 1\n",
        "tool_timeout_seconds: 0\n",
        "event_channels:\n  - step_id: x\n    label: X\n    channels: []\n    filename: x\n",
        "key: [unclosed\n",
    ],
)
def test_invalid_config_file_raises(tmp_path, body) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigFileError):
        load_collector_config(str(path))


def test_missing_config_file_raises(tmp_path) -> None:
    with pytest.raises(ConfigFileError, match="cannot read"):
        load_collector_config(str(tmp_path / "nope.yaml"))


def test_policy_key_reusing_a_built_in_step_id_is_rejected(tmp_path) -> None:
    path = tmp_path / "c.yaml"
    path.write_text(
        textwrap.dedent(
            r"""
            policy_keys:
              - step_id: system_info
                label: Clash
                registry_path: HKLM\SOFTWARE\Contoso
                filename: contoso.export
            """
        ),
        encoding="utf-8",
    )

    with pytest.raises(ConfigFileError, match="duplicate step_id 'system_info'"):
        load_collector_config(str(path))


def test_step_id_shared_between_channels_and_policy_keys_is_rejected(tmp_path) -> None:
    path = tmp_path / "c.yaml"
    path.write_text(
        textwrap.dedent(
            r"""
            event_channels:
              - step_id: events_system
                label: System
                channels: [System]
                filename: system.evtx-export
            policy_keys:
              - step_id: events_system
                label: Clash
                registry_path: HKLM\SOFTWARE\Contoso
                filename: contoso.export
            """
        ),
        encoding="utf-8",
    )

    with pytest.raises(ConfigFileError, match="duplicate step_id 'events_system'"):
        load_collector_config(str(path))


def test_duplicate_event_filenames_are_rejected(tmp_path) -> None:
    path = tmp_path / "c.yaml"
    path.write_text(
        textwrap.dedent(
            """
            event_channels:
              - step_id: events_app
                label: Application
                channels: [Application]
                filename: export.evtx-export
              - step_id: events_setup
                label: Setup
                channels: [Setup]
                filename: Export.evtx-export
            """
        ),
        encoding="utf-8",
    )

    with pytest.raises(ConfigFileError, match="duplicate filename"):
        load_collector_config(str(path))


def test_duplicate_ids_exit_2_from_the_cli(tmp_path, capsys) -> None:
    import main

    path = tmp_path / "c.yaml"
    path.write_text(
        "event_channels:\n"
        "  - {step_id: volume_status, label: X, channels: [System], filename: x.evtx-export}\n",
        encoding="utf-8",
    )

    assert main.main(["--config", str(path), "--output-path", str(tmp_path / "out")]) == 2
    assert "duplicate step_id" in capsys.readouterr().err
    assert not (tmp_path / "out").exists()
