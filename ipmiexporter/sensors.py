"""Collectors for sensor readings and system event log entries."""

from __future__ import annotations

import calendar
import logging
import math
import re
import time
from typing import Any, Iterable

from . import freeipmi
from .freeipmi import FreeIPMIError, Result, SensorData
from .metrics import (
    NAMESPACE,
    Collector,
    CollectorName,
    Desc,
    Metric,
    Target,
    build_fq_name,
    gauge,
    target_name,
)

log = logging.getLogger(__name__)

SEL_DATETIME_FORMAT = "%b-%d-%Y %H:%M:%S"

SENSOR_STATE = Desc(
    build_fq_name(NAMESPACE, "sensor", "state"),
    "Indicates the severity of the state reported by an IPMI sensor (0=nominal, 1=warning, 2=critical).",
    ("id", "name", "type"),
)
SENSOR_VALUE = Desc(
    build_fq_name(NAMESPACE, "sensor", "value"),
    "Generic data read from an IPMI sensor of unknown type, relying on labels for context.",
    ("id", "name", "type"),
)
FAN_SPEED_RPM = Desc(
    build_fq_name(NAMESPACE, "fan_speed", "rpm"),
    "Fan speed in rotations per minute.",
    ("id", "name"),
)
FAN_SPEED_RATIO = Desc(
    build_fq_name(NAMESPACE, "fan_speed", "ratio"),
    "Fan speed as a proportion of the maximum speed.",
    ("id", "name"),
)
FAN_SPEED_STATE = Desc(
    build_fq_name(NAMESPACE, "fan_speed", "state"),
    "Reported state of a fan speed sensor (0=nominal, 1=warning, 2=critical).",
    ("id", "name"),
)
TEMPERATURE = Desc(
    build_fq_name(NAMESPACE, "temperature", "celsius"),
    "Temperature reading in degree Celsius.",
    ("id", "name"),
)
TEMPERATURE_STATE = Desc(
    build_fq_name(NAMESPACE, "temperature", "state"),
    "Reported state of a temperature sensor (0=nominal, 1=warning, 2=critical).",
    ("id", "name"),
)
VOLTAGE = Desc(
    build_fq_name(NAMESPACE, "voltage", "volts"),
    "Voltage reading in Volts.",
    ("id", "name"),
)
VOLTAGE_STATE = Desc(
    build_fq_name(NAMESPACE, "voltage", "state"),
    "Reported state of a voltage sensor (0=nominal, 1=warning, 2=critical).",
    ("id", "name"),
)
CURRENT = Desc(
    build_fq_name(NAMESPACE, "current", "amperes"),
    "Current reading in Amperes.",
    ("id", "name"),
)
CURRENT_STATE = Desc(
    build_fq_name(NAMESPACE, "current", "state"),
    "Reported state of a current sensor (0=nominal, 1=warning, 2=critical).",
    ("id", "name"),
)
POWER = Desc(
    build_fq_name(NAMESPACE, "power", "watts"),
    "Power reading in Watts.",
    ("id", "name"),
)
POWER_STATE = Desc(
    build_fq_name(NAMESPACE, "power", "state"),
    "Reported state of a power sensor (0=nominal, 1=warning, 2=critical).",
    ("id", "name"),
)

SEL_EVENTS_COUNT_BY_STATE = Desc(
    build_fq_name(NAMESPACE, "sel_events", "count_by_state"),
    "Current number of log entries in the SEL by state.",
    ("state",),
)
SEL_EVENTS_COUNT_BY_NAME = Desc(
    build_fq_name(NAMESPACE, "sel_events", "count_by_name"),
    "Current number of custom log entries in the SEL by name.",
    ("name",),
)
SEL_EVENTS_LATEST_TIMESTAMP = Desc(
    build_fq_name(NAMESPACE, "sel_events", "latest_timestamp"),
    "Latest timestamp of custom log entries in the SEL by name.",
    ("name",),
)

_STATE_VALUES = {"Nominal": 0.0, "Warning": 1.0, "Critical": 2.0}

# unit -> (value description, state description, scale)
_TYPED_UNITS = {
    "RPM": (FAN_SPEED_RPM, FAN_SPEED_STATE, 1.0),
    "C": (TEMPERATURE, TEMPERATURE_STATE, 1.0),
    "A": (CURRENT, CURRENT_STATE, 1.0),
    "V": (VOLTAGE, VOLTAGE_STATE, 1.0),
    "W": (POWER, POWER_STATE, 1.0),
}


def _sensor_state(state: str, host: str) -> float:
    if state in _STATE_VALUES:
        return _STATE_VALUES[state]
    if state != "N/A":
        log.error("Unknown sensor state (target %s): %s", host, state)
    return math.nan


def _typed_metrics(
    desc: Desc, state_desc: Desc, state: float, data: SensorData, scale: float
) -> list[Metric]:
    sensor_id = str(data.id)
    return [
        gauge(desc, data.value * scale, sensor_id, data.name),
        gauge(state_desc, state, sensor_id, data.name),
    ]


def _generic_metrics(state: float, data: SensorData) -> list[Metric]:
    sensor_id = str(data.id)
    return [
        gauge(SENSOR_VALUE, data.value, sensor_id, data.name, data.type),
        gauge(SENSOR_STATE, state, sensor_id, data.name, data.type),
    ]


class IPMICollector(Collector):
    """Sensor readings from ``ipmimonitoring``."""

    name = CollectorName.IPMI
    cmd = "ipmimonitoring"
    args = (
        "--quiet-cache",
        "--ignore-unrecognized-events",
        "--comma-separated-output",
        "--no-header-output",
        "--sdr-cache-recreate",
        "--output-event-bitmask",
        "--output-sensor-state",
    )

    def collect(self, result: Result, target: Target) -> list[Metric]:
        host = target_name(target.host)
        excluded: Iterable[int] = getattr(target.config, "exclude_sensor_ids", None) or ()
        try:
            sensors = freeipmi.get_sensor_data(result, excluded)
        except FreeIPMIError as exc:
            log.error("Failed to collect sensor data (target %s): %s", host, exc)
            raise

        metrics: list[Metric] = []
        for data in sensors:
            state = _sensor_state(data.state, host)
            log.debug("Got values (target %s): %s", host, data)
            typed = _TYPED_UNITS.get(data.unit)
            if typed is not None:
                desc, state_desc, scale = typed
                metrics += _typed_metrics(desc, state_desc, state, data, scale)
            elif data.unit == "%" and data.type == "Fan":
                metrics += _typed_metrics(FAN_SPEED_RATIO, FAN_SPEED_STATE, state, data, 0.01)
            else:
                metrics += _generic_metrics(state, data)
        return metrics

    def describe(self) -> list[Desc]:
        """All metric descriptions this collector can produce."""
        return [
            SENSOR_STATE,
            SENSOR_VALUE,
            FAN_SPEED_RPM,
            FAN_SPEED_RATIO,
            FAN_SPEED_STATE,
            TEMPERATURE,
            TEMPERATURE_STATE,
            VOLTAGE,
            VOLTAGE_STATE,
            CURRENT,
            CURRENT_STATE,
            POWER,
            POWER_STATE,
        ]


def _event_timestamp(date: str, time_of_day: str, host: str) -> float:
    # ipmi-sel may print e.g. "PostInit" instead of a date; such entries get 0.
    try:
        parsed = time.strptime(f"{date} {time_of_day}", SEL_DATETIME_FORMAT)
    except ValueError as exc:
        log.debug("Failed to parse time (target %s): %s", host, exc)
        return 0.0
    return float(calendar.timegm(parsed))


class SELEventsCollector(Collector):
    """Counts of system event log entries by state and by configured name."""

    name = CollectorName.SEL_EVENTS
    cmd = "ipmi-sel"
    args = (
        "--quiet-cache",
        "--comma-separated-output",
        "--no-header-output",
        "--sdr-cache-recreate",
        "--output-event-state",
        "--interpret-oem-data",
        "--entity-sensor-names",
    )

    def collect(self, result: Result, target: Target) -> list[Metric]:
        host = target_name(target.host)
        event_configs: list[Any] = list(getattr(target.config, "sel_events", None) or ())
        try:
            events = freeipmi.get_sel_events(result)
        except FreeIPMIError as exc:
            log.error("Failed to collect SEL events (target %s): %s", host, exc)
            raise

        count_by_state: dict[str, float] = {}
        count_by_name = {cfg.name: 0.0 for cfg in event_configs}
        latest_by_name = {cfg.name: 0.0 for cfg in event_configs}

        for event in events:
            for cfg in event_configs:
                if re.search(cfg.regex, event.event) is None:
                    continue
                timestamp = _event_timestamp(event.date, event.time, host)
                if timestamp > latest_by_name[cfg.name]:
                    latest_by_name[cfg.name] = timestamp
                count_by_name[cfg.name] += 1
            count_by_state[event.state] = count_by_state.get(event.state, 0.0) + 1

        metrics = [
            gauge(SEL_EVENTS_COUNT_BY_STATE, count, state) for state, count in count_by_state.items()
        ]
        for name, count in count_by_name.items():
            metrics.append(gauge(SEL_EVENTS_COUNT_BY_NAME, count, name))
            metrics.append(gauge(SEL_EVENTS_LATEST_TIMESTAMP, latest_by_name[name], name))
        return metrics