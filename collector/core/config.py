from __future__ import annotations

import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_PRODUCT_NAME = "BitLockerDiag"
DEFAULT_TOOL_TIMEOUT_SECONDS = 300
DEFAULT_MDM_TIMEOUT_SECONDS = 900

# Step ids owned by the built-in catalog; configurable event and registry steps may not reuse them.
RESERVED_STEP_IDS = frozenset(
    {"volume_status", "tpm_status", "recovery_environment", "system_info", "group_policy_result", "mdm_diagnostics"}
)


class ChannelSpec(BaseModel):
    """An event log export step: the first channel is preferred, the rest are tried in order."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    step_id: str
    label: str
    channels: Tuple[str, ...]
    filename: str
    mandatory: bool = False

    @field_validator("channels")
    @classmethod
    def _at_least_one(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        cleaned = tuple(c.strip() for c in v if c and c.strip())
        if not cleaned:
            raise ValueError("channels must name at least one event log channel")
        return cleaned


class PolicyKeySpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    step_id: str
    label: str
    registry_path: str
    filename: str
    mandatory: bool = False


DEFAULT_EVENT_CHANNELS: Tuple[ChannelSpec, ...] = (
    ChannelSpec(
        step_id="events_bitlocker_management",
        label="BitLocker management event log",
        channels=(
            "Microsoft-Windows-BitLocker/BitLocker Management",
            # Older builds only ship the API channel.
            "Microsoft-Windows-BitLocker-API/Management",
        ),
        filename="bitlocker_management.evtx-export",
        mandatory=True,
    ),
    ChannelSpec(
        step_id="events_bitlocker_operational",
        label="BitLocker operational event log",
        channels=("Microsoft-Windows-BitLocker/BitLocker Operational",),
        filename="bitlocker_operational.evtx-export",
    ),
    ChannelSpec(
        step_id="events_drive_preparation",
        label="BitLocker drive preparation event log",
        channels=(
            "Microsoft-Windows-BitLocker-DrivePreparationTool/Operational",
            "Microsoft-Windows-BitLocker-DrivePreparationTool/Admin",
        ),
        filename="drive_preparation.evtx-export",
    ),
    ChannelSpec(
        step_id="events_system",
        label="System event log",
        channels=("System",),
        filename="system.evtx-export",
    ),
)

DEFAULT_POLICY_KEYS: Tuple[PolicyKeySpec, ...] = (
    PolicyKeySpec(
        step_id="registry_fve_policy",
        label="BitLocker group policy (FVE)",
        registry_path=r"HKLM\SOFTWARE\Policies\Microsoft\FVE",
        filename="fve_policy.export",
    ),
    PolicyKeySpec(
        step_id="registry_bitlocker_status",
        label="BitLocker status registry key",
        registry_path=r"HKLM\SYSTEM\CurrentControlSet\Control\BitLockerStatus",
        filename="bitlocker_status.export",
    ),
    PolicyKeySpec(
        step_id="registry_secureboot_state",
        label="Secure Boot state registry key",
        registry_path=r"HKLM\SYSTEM\CurrentControlSet\Control\SecureBoot\State",
        filename="secureboot_state.export",
    ),
)


@dataclass(frozen=True)
class CollectorConfig:
    product_name: str
    tool_timeout_seconds: int
    mdm_timeout_seconds: int

    # Default output base when --output-path is not given (None = current directory)
    output_path: Optional[str]

    event_channels: Tuple[ChannelSpec, ...]
    policy_keys: Tuple[PolicyKeySpec, ...]

    # Dev-only: lets the collector run unelevated (everything privileged will fail per-step)
    skip_elevation_check: bool = False


class ConfigFileError(ValueError):
    """The YAML config file could not be read or does not match the expected shape."""


class _ConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_name: Optional[str] = None
    tool_timeout_seconds: Optional[int] = Field(default=None, gt=0)
    mdm_timeout_seconds: Optional[int] = Field(default=None, gt=0)
    output_path: Optional[str] = None
    event_channels: Optional[List[ChannelSpec]] = None
    policy_keys: Optional[List[PolicyKeySpec]] = None


def _check_catalog_entries(
    path: str, event_channels: Tuple[ChannelSpec, ...], policy_keys: Tuple[PolicyKeySpec, ...]
) -> None:
    seen_ids = set(RESERVED_STEP_IDS)
    for spec in (*policy_keys, *event_channels):
        if spec.step_id in seen_ids:
            raise ConfigFileError(f"invalid config file {path}: duplicate step_id '{spec.step_id}'")
        seen_ids.add(spec.step_id)

    # Event exports and registry exports land in separate folders.
    for kind, specs in (("event_channels", event_channels), ("policy_keys", policy_keys)):
        names: Set[str] = set()
        for spec in specs:
            name = spec.filename.lower()
            if name in names:
                raise ConfigFileError(f"invalid config file {path}: duplicate filename '{spec.filename}' in {kind}")
            names.add(name)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        v = int(float(raw))
    except ValueError:
        return default
    return v if v > 0 else default


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _config_from_env() -> CollectorConfig:
    return CollectorConfig(
        product_name=_env_str("COLLECTOR_PRODUCT_NAME") or DEFAULT_PRODUCT_NAME,
        tool_timeout_seconds=_env_int("COLLECTOR_TOOL_TIMEOUT_SECONDS", DEFAULT_TOOL_TIMEOUT_SECONDS),
        mdm_timeout_seconds=_env_int("COLLECTOR_MDM_TIMEOUT_SECONDS", DEFAULT_MDM_TIMEOUT_SECONDS),
        output_path=_env_str("COLLECTOR_OUTPUT_PATH"),
        event_channels=DEFAULT_EVENT_CHANNELS,
        policy_keys=DEFAULT_POLICY_KEYS,
        skip_elevation_check=_env_bool("COLLECTOR_SKIP_ELEVATION_CHECK", False),
    )


def _read_config_file(path: Path) -> _ConfigFile:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw: Any = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigFileError(f"cannot read config file {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigFileError(f"config file {path} must contain a mapping at the top level")
    try:
        return _ConfigFile.model_validate(raw)
    except ValidationError as e:
        raise ConfigFileError(f"invalid config file {path}: {e}") from e


@lru_cache(maxsize=1)
def _cached_env_config() -> CollectorConfig:
    return _config_from_env()


def load_collector_config(config_file: Optional[str] = None) -> CollectorConfig:
    """
    Load collector configuration from environment variables, then apply an optional YAML file.

    The YAML file (explicit argument, else COLLECTOR_CONFIG_FILE) overrides individual fields;
    lists (event_channels, policy_keys) replace the defaults wholesale.
    """
    path = config_file or _env_str("COLLECTOR_CONFIG_FILE")
    if not path:
        return _cached_env_config()

    cfg = _config_from_env()
    file_cfg = _read_config_file(Path(path))

    overrides: Dict[str, Any] = {}
    for name in ("product_name", "tool_timeout_seconds", "mdm_timeout_seconds", "output_path"):
        value = getattr(file_cfg, name)
        if value is not None:
            overrides[name] = value
    if file_cfg.event_channels is not None:
        overrides["event_channels"] = tuple(file_cfg.event_channels)
    if file_cfg.policy_keys is not None:
        overrides["policy_keys"] = tuple(file_cfg.policy_keys)

    merged = replace(cfg, **overrides)
    _check_catalog_entries(path, merged.event_channels, merged.policy_keys)
    return merged


def clear_config_cache() -> None:
    _cached_env_config.cache_clear()
