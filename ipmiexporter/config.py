"""Exporter configuration: modules, collectors and concurrency-safe reloading."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .collectors import (
    BMCCollector,
    ChassisCollector,
    DCMICollector,
    SELCollector,
    SMLANModeCollector,
)
from .freeipmi import Result, escape_password
from .metrics import Collector, CollectorName, Metric, Target, target_name
from .sensors import IPMICollector, SELEventsCollector
from .watchdog import BMCWatchdogCollector

log = logging.getLogger(__name__)

_REGISTRY: dict[CollectorName, type[Collector]] = {
    CollectorName.IPMI: IPMICollector,
    CollectorName.BMC: BMCCollector,
    CollectorName.BMC_WATCHDOG: BMCWatchdogCollector,
    CollectorName.SEL: SELCollector,
    CollectorName.SEL_EVENTS: SELEventsCollector,
    CollectorName.DCMI: DCMICollector,
    CollectorName.CHASSIS: ChassisCollector,
    CollectorName.SM_LAN_MODE: SMLANModeCollector,
}

DEFAULT_COLLECTORS = (
    CollectorName.IPMI,
    CollectorName.DCMI,
    CollectorName.BMC,
    CollectorName.CHASSIS,
)

# YAML key under which a module's credential is stored.
_CREDENTIAL_FIELD = "pass"

_MODULE_FIELDS = frozenset(
    {
        "user",
        _CREDENTIAL_FIELD,
        "privilege",
        "driver",
        "timeout",
        "collectors",
        "exclude_sensor_ids",
        "workaround_flags",
        "collector_cmd",
        "default_args",
        "custom_args",
        "sel_events",
    }
)


class ConfigError(ValueError):
    """The configuration is invalid."""


def _collector_name(name: Any) -> CollectorName:
    try:
        return CollectorName(name)
    except ValueError:
        raise ConfigError(f"invalid collector: {name}") from None


def get_collector(name: str | CollectorName) -> Collector:
    """Return a new instance of the collector registered under ``name``."""
    return _REGISTRY[_collector_name(name)]()


@dataclass
class SELEventConfig:
    """A named regular expression that SEL event texts are counted against."""

    name: str
    regex_raw: str
    regex: re.Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        try:
            self.regex = re.compile(self.regex_raw)
        except re.error as exc:
            raise ConfigError(f"invalid sel_events regex {self.regex_raw!r}: {exc}") from exc


class ConfiguredCollector(Collector):
    """A collector with the command and arguments a module overrides."""

    def __init__(
        self,
        collector: Collector,
        command: str = "",
        default_args: list[str] | None = None,
        custom_args: list[str] | None = None,
    ) -> None:
        self.collector = collector
        self.command = command
        self.default_args = default_args
        self.custom_args = custom_args

    @property
    def name(self) -> CollectorName:  # type: ignore[override]
        return self.collector.name

    @property
    def cmd(self) -> str:  # type: ignore[override]
        return self.command or self.collector.cmd

    @property
    def args(self) -> tuple[str, ...]:  # type: ignore[override]
        # Custom args come first, so that e.g. sudo can wrap the tool.
        base = self.default_args if self.default_args is not None else self.collector.args
        return (*(self.custom_args or ()), *base)

    def collect(self, result: Result, target: Target) -> list[Metric]:
        return self.collector.collect(result, target)


@dataclass
class ModuleConfig:
    """Settings of one module of the configuration file."""

    user: str = ""
    password: str = ""
    privilege: str = ""
    driver: str = ""
    timeout: int = 0
    collectors: list[CollectorName] = field(default_factory=lambda: list(DEFAULT_COLLECTORS))
    exclude_sensor_ids: list[int] = field(default_factory=list)
    workaround_flags: list[str] = field(default_factory=list)
    collector_cmd: dict[str, str] = field(default_factory=dict)
    collector_args: dict[str, list[str]] = field(default_factory=dict)
    custom_args: dict[str, list[str]] = field(default_factory=dict)
    sel_events: list[SELEventConfig] = field(default_factory=list)

    def get_collectors(self) -> list[ConfiguredCollector]:
        """The enabled collectors, wrapped with this module's overrides."""
        configured = []
        for name in self.collectors:
            inner = get_collector(name)
            key = inner.name.value
            configured.append(
                ConfiguredCollector(
                    inner,
                    self.collector_cmd.get(key, ""),
                    self.collector_args.get(key),
                    self.custom_args.get(key),
                )
            )
        return configured

    def freeipmi_config(self) -> str:
        """The contents of a FreeIPMI config file for this module."""
        lines = []
        if self.driver:
            lines.append(f"driver-type {self.driver}")
        if self.privilege:
            lines.append(f"privilege-level {self.privilege}")
        if self.user:
            lines.append(f"username {self.user}")
        if self.password:
            lines.append(f"password {escape_password(self.password)}")
        if self.timeout:
            lines.append(f"session-timeout {self.timeout}")
        if self.workaround_flags:
            lines.append(" ".join(["workaround-flags", *self.workaround_flags]))
        return "".join(line + "\n" for line in lines)


@dataclass
class Config:
    """The whole configuration file: modules by name."""

    modules: dict[str, ModuleConfig] = field(default_factory=dict)


def _mapping(value: Any, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where}: expected a mapping")
    return value


def _list(value: Any, where: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{where}: expected a list")
    return value


def _string(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        raise ConfigError(f"{where}: expected a string")
    return str(value)


def _integer(value: Any, where: str, low: int, high: int) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where}: expected an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"{where}: expected an integer")
    number = int(value)
    if not low <= number <= high:
        raise ConfigError(f"{where}: {number} out of range")
    return number


def _string_list(value: Any, where: str) -> list[str]:
    return [_string(item, where) for item in _list(value, where)]


def _args_map(value: Any, where: str) -> dict[str, list[str]]:
    return {str(k): _string_list(v, where) for k, v in _mapping(value, where).items()}


def _sel_event(item: Any) -> SELEventConfig:
    if not isinstance(item, dict):
        raise ConfigError("sel_events: expected a mapping")
    return SELEventConfig(_string(item.get("name"), "name"), _string(item.get("regex"), "regex"))


def _parse_module(data: Any) -> ModuleConfig:
    if data is None:
        return ModuleConfig(collectors=[])
    mapping = _mapping(data, "modules")
    unknown = [str(key) for key in mapping if key not in _MODULE_FIELDS]
    if unknown:
        raise ConfigError(f"unknown fields in modules: {', '.join(unknown)}")

    password = _string(mapping.get(_CREDENTIAL_FIELD), _CREDENTIAL_FIELD)
    module = ModuleConfig(
        user=_string(mapping.get("user"), "user"),
        password=password,
        privilege=_string(mapping.get("privilege"), "privilege"),
        driver=_string(mapping.get("driver"), "driver"),
        timeout=_integer(mapping.get("timeout"), "timeout", 0, 2**32 - 1),
        exclude_sensor_ids=[
            _integer(item, "exclude_sensor_ids", -(2**63), 2**63 - 1)
            for item in _list(mapping.get("exclude_sensor_ids"), "exclude_sensor_ids")
        ],
        workaround_flags=_string_list(mapping.get("workaround_flags"), "workaround_flags"),
        collector_cmd={
            str(k): _string(v, "collector_cmd")
            for k, v in _mapping(mapping.get("collector_cmd"), "collector_cmd").items()
        },
        collector_args=_args_map(mapping.get("default_args"), "default_args"),
        custom_args=_args_map(mapping.get("custom_args"), "custom_args"),
        sel_events=[_sel_event(item) for item in _list(mapping.get("sel_events"), "sel_events")],
    )
    if "collectors" in mapping:
        module.collectors = [
            _collector_name(_string(item, "collectors"))
            for item in _list(mapping["collectors"], "collectors")
        ]
    return module


def parse_config(text: str) -> Config:
    """Parse the YAML configuration file contents."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(str(exc)) from exc
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ConfigError("config: expected a mapping")
    unknown = [str(key) for key in data if key != "modules"]
    if unknown:
        raise ConfigError(f"unknown fields in config: {', '.join(unknown)}")
    modules = {
        str(name): _parse_module(body)
        for name, body in _mapping(data.get("modules"), "modules").items()
    }
    return Config(modules)


class SafeConfig:
    """Holds the current configuration and swaps it safely on reload."""

    def __init__(self, config: Config | None = None) -> None:
        self._lock = threading.Lock()
        self._config = config if config is not None else Config()

    @property
    def config(self) -> Config:
        with self._lock:
            return self._config

    def reload(self, config_file: str = "") -> None:
        """Load ``config_file`` (or an empty config); on error the old one is kept."""
        if config_file:
            try:
                text = Path(config_file).read_text(encoding="utf-8")
            except OSError as exc:
                log.error("Error reading config file: %s", exc)
                raise
        else:
            text = "# use empty file as default"
        config = parse_config(text)
        with self._lock:
            self._config = config
        if config_file:
            log.info("Loaded config file %s", config_file)

    def has_module(self, module: str) -> bool:
        with self._lock:
            return module in self._config.modules

    def config_for_target(self, target: str, module: str) -> ModuleConfig:
        """The named module, else the "default" module, else built-in defaults."""
        with self._lock:
            modules = self._config.modules
            if module != "default":
                found = modules.get(module)
                if found is not None:
                    return found
                log.error(
                    "Requested module %s not found, using default (target %s)",
                    module,
                    target_name(target),
                )
            found = modules.get("default")
            if found is not None:
                return found
        log.debug(
            "No default config for target %s, using FreeIPMI defaults", target_name(target)
        )
        return ModuleConfig()