"""Running FreeIPMI tools and extracting data from their output."""

from __future__ import annotations

import csv
import io
import logging
import math
import os
import re
import secrets
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from typing import Iterable, Sequence

log = logging.getLogger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_DCMI_POWER_MEASUREMENT = re.compile(r"^Power Measurement\s*:\s*(?P<value>Active|Not\sAvailable).*")
_DCMI_CURRENT_POWER = re.compile(r"^Current Power\s*:\s*(?P<value>[0-9.]*)\s*Watts.*")
_CHASSIS_POWER = re.compile(r"^System Power\s*:\s(?P<value>.*)")
_CHASSIS_DRIVE_FAULT = re.compile(r"^Drive Fault\s*:\s(?P<value>.*)")
_CHASSIS_COOLING_FAULT = re.compile(r"^Cooling/fan fault\s*:\s(?P<value>.*)")
_SEL_ENTRIES = re.compile(r"^Number of log entries\s*:\s(?P<value>[0-9.]*)")
_SEL_FREE_SPACE = re.compile(r"^Free space remaining\s*:\s(?P<value>[0-9.]*)\s*bytes.*")
_SEL_EVENT = re.compile(
    r"^(?P<id>[0-9]+),\s*(?P<date>[^,]*),(?P<time>[^,]*),(?P<name>[^,]*),"
    r"(?P<type>[^,]*),(?P<state>[^,]*),(?P<event>[^,]*)\Z"
)
_BMC_FIRMWARE_REVISION = re.compile(r"^Firmware Revision\s*:\s*(?P<value>[0-9.]*).*")
_BMC_SYSTEM_FIRMWARE_VERSION = re.compile(r"^System Firmware Version\s*:\s*(?P<value>[0-9.]*).*")
_BMC_MANUFACTURER_ID = re.compile(r"^Manufacturer ID\s*:\s*(?P<value>.*)")
_BMC_URL = re.compile(r"^BMC URL\s*:\s*(?P<value>.*)")
_WATCHDOG_TIMER_STATE = re.compile(r"^Timer:\s*(?P<value>Running|Stopped)")
_WATCHDOG_TIMER_USE = re.compile(r"^Timer Use:\s*(?P<value>.*)")
_WATCHDOG_LOGGING = re.compile(r"^Logging:\s*(?P<value>Enabled|Disabled)")
_WATCHDOG_TIMEOUT_ACTION = re.compile(r"^Timeout Action:\s*(?P<value>.*)")
_WATCHDOG_PRETIMEOUT_INTERRUPT = re.compile(r"^Pre-Timeout Interrupt:\s*(?P<value>.*)")
_WATCHDOG_PRETIMEOUT_INTERVAL = re.compile(r"^Pre-Timeout Interval:\s*(?P<value>[0-9.]*)\s*seconds.*")
_WATCHDOG_INITIAL_COUNTDOWN = re.compile(r"^Initial Countdown:\s*(?P<value>[0-9.]*)\s*seconds.*")
_WATCHDOG_CURRENT_COUNTDOWN = re.compile(r"^Current Countdown:\s*(?P<value>[0-9.]*)\s*seconds.*")

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


class FreeIPMIError(Exception):
    """A FreeIPMI tool failed or its output could not be understood."""


@dataclass(frozen=True)
class Result:
    """Outcome of running one FreeIPMI tool: its combined output and any error."""

    output: bytes = b""
    error: Exception | None = None

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")


@dataclass
class SensorData:
    """Reading of a single sensor."""

    id: int
    name: str
    type: str
    state: str
    value: float
    unit: str
    event: str


@dataclass
class SELEventData:
    """One line of the system event log."""

    id: int
    date: str
    time: str
    name: str
    type: str
    state: str
    event: str


def escape_password(password: str) -> str:
    """Escape a password for use in a FreeIPMI config file."""
    return password.replace("#", "\\#")


def _pipe_name() -> str:
    return os.path.join(tempfile.gettempdir(), "ipmi_exporter-" + secrets.token_hex(16))


def _write_pipe(path: str, data: bytes) -> None:
    try:
        with open(path, "ab") as pipe:
            pipe.write(data)
    except OSError as exc:
        log.error("Error writing config to pipe: %s", exc)


def _release_writer(path: str, writer: threading.Thread) -> None:
    """Unblock a writer still waiting for a reader on the pipe."""
    for _ in range(20):
        if not writer.is_alive():
            return
        try:
            fd = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError:
            return
        os.close(fd)
        writer.join(0.05)


def execute(cmd: str, args: Sequence[str], config: str, target: str) -> Result:
    """Run a FreeIPMI tool, handing it ``config`` through a named pipe.

    An empty ``target`` means the local BMC; otherwise it is passed with ``-h``.
    """
    pipe = _pipe_name()
    try:
        os.mkfifo(pipe, 0o600)
    except (OSError, AttributeError) as exc:
        return Result(b"", exc)

    writer = threading.Thread(target=_write_pipe, args=(pipe, config.encode()), daemon=True)
    writer.start()
    try:
        full_args = [*args, "--config-file", pipe]
        if target:
            full_args += ["-h", target]
        log.debug("Executing %s %s", cmd, full_args)
        try:
            proc = subprocess.run(
                [cmd, *full_args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as exc:
            return Result(b"", FreeIPMIError(f"error running {cmd}: {exc}"))
        error = None
        if proc.returncode != 0:
            error = FreeIPMIError(f"error running {cmd}: exit status {proc.returncode}")
        return Result(proc.stdout, error)
    finally:
        _release_writer(pipe, writer)
        try:
            os.remove(pipe)
        except OSError as exc:
            log.error("Error deleting named pipe: %s", exc)


def _raise_if_failed(result: Result) -> None:
    if result.error is not None:
        raise FreeIPMIError(f"{result.error}: {result.text}") from result.error


def _get_value(text: str, regex: re.Pattern[str]) -> str:
    for line in text.split("\n"):
        match = regex.search(line)
        if match:
            return match.group("value") or ""
    raise FreeIPMIError(f"could not find value in output: {text}")


def _parse_float(value: str) -> float:
    if "_" in value or value != value.strip():
        raise FreeIPMIError(f"invalid number: {value!r}")
    try:
        return float(value)
    except ValueError:
        raise FreeIPMIError(f"invalid number: {value!r}") from None


def _parse_int(value: str) -> int:
    if not _INT_PATTERN.fullmatch(value):
        raise FreeIPMIError(f"invalid integer: {value!r}")
    number = int(value)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise FreeIPMIError(f"integer out of range: {value!r}")
    return number


def _csv_records(text: str) -> list[list[str]]:
    try:
        records = [row for row in csv.reader(io.StringIO(text, newline=""), strict=True) if row]
    except csv.Error as exc:
        raise FreeIPMIError(str(exc)) from exc
    if records:
        expected = len(records[0])
        for number, row in enumerate(records, start=1):
            if len(row) != expected:
                raise FreeIPMIError(f"record {number}: wrong number of fields")
    return records


def get_sensor_data(result: Result, exclude_sensor_ids: Iterable[int]) -> list[SensorData]:
    """Parse comma-separated ipmimonitoring output, skipping excluded sensor ids."""
    _raise_if_failed(result)
    excluded = set(exclude_sensor_ids)
    sensors = []
    for row in _csv_records(result.text):
        if len(row) < 7:
            raise FreeIPMIError(f"too few fields in sensor record: {row}")
        sensor_id = _parse_int(row[0])
        if sensor_id in excluded:
            continue
        raw_value = row[4]
        value = math.nan if raw_value == "N/A" else _parse_float(raw_value)
        sensors.append(
            SensorData(
                id=sensor_id,
                name=row[1],
                type=row[2],
                state=row[3],
                value=value,
                unit=row[5],
                event=row[6].strip("'"),
            )
        )
    return sensors


def get_current_power_consumption(result: Result) -> float:
    """Current power in watts, or -1 when power measurement is not active."""
    _raise_if_failed(result)
    text = result.text
    if _get_value(text, _DCMI_POWER_MEASUREMENT) == "Active":
        return _parse_float(_get_value(text, _DCMI_CURRENT_POWER))
    return -1.0


def _flag(result: Result, regex: re.Pattern[str], truthy: str) -> float:
    _raise_if_failed(result)
    return 1.0 if _get_value(result.text, regex) == truthy else 0.0


def _number(result: Result, regex: re.Pattern[str]) -> float:
    _raise_if_failed(result)
    return _parse_float(_get_value(result.text, regex))


def _string(result: Result, regex: re.Pattern[str]) -> str:
    _raise_if_failed(result)
    return _get_value(result.text, regex)


def _lenient_string(result: Result, regex: re.Pattern[str]) -> str:
    # The tool may fail yet still print usable output; report its error only
    # when parsing fails as well.
    try:
        return _get_value(result.text, regex)
    except FreeIPMIError:
        _raise_if_failed(result)
        raise


def get_chassis_power_state(result: Result) -> float:
    """1 if the system power is on, else 0."""
    return _flag(result, _CHASSIS_POWER, "on")


def get_chassis_drive_fault(result: Result) -> float:
    """1 if there is no drive fault, else 0."""
    return _flag(result, _CHASSIS_DRIVE_FAULT, "false")


def get_chassis_cooling_fault(result: Result) -> float:
    """1 if there is no cooling/fan fault, else 0."""
    return _flag(result, _CHASSIS_COOLING_FAULT, "false")


def get_bmc_info_firmware_revision(result: Result) -> str:
    return _lenient_string(result, _BMC_FIRMWARE_REVISION)


def get_bmc_info_manufacturer_id(result: Result) -> str:
    return _lenient_string(result, _BMC_MANUFACTURER_ID)


def get_bmc_info_system_firmware_version(result: Result) -> str:
    return _string(result, _BMC_SYSTEM_FIRMWARE_VERSION)


def get_bmc_info_bmc_url(result: Result) -> str:
    return _string(result, _BMC_URL)


def get_sel_info_entries_count(result: Result) -> float:
    return _number(result, _SEL_ENTRIES)


def get_sel_info_free_space(result: Result) -> float:
    return _number(result, _SEL_FREE_SPACE)


def get_raw_octets(result: Result) -> list[str]:
    """Octets of an ipmi-raw response line of the form ``rcvd: XX XX ...``."""
    _raise_if_failed(result)
    text = result.text.strip(" \r\n")
    if not text.startswith("rcvd: "):
        raise FreeIPMIError(f"unexpected raw response: {text}")
    return text[6:].split(" ")


def get_bmc_watchdog_timer_state(result: Result) -> float:
    """1 if the watchdog timer is running, else 0."""
    return _flag(result, _WATCHDOG_TIMER_STATE, "Running")


def get_bmc_watchdog_timer_use(result: Result) -> str:
    return _string(result, _WATCHDOG_TIMER_USE)


def get_bmc_watchdog_logging_state(result: Result) -> float:
    """1 if watchdog logging is enabled, else 0."""
    return _flag(result, _WATCHDOG_LOGGING, "Enabled")


def get_bmc_watchdog_timeout_action(result: Result) -> str:
    return _string(result, _WATCHDOG_TIMEOUT_ACTION)


def get_bmc_watchdog_pretimeout_interrupt(result: Result) -> str:
    return _string(result, _WATCHDOG_PRETIMEOUT_INTERRUPT)


def get_bmc_watchdog_pretimeout_interval(result: Result) -> float:
    return _number(result, _WATCHDOG_PRETIMEOUT_INTERVAL)


def get_bmc_watchdog_initial_countdown(result: Result) -> float:
    return _number(result, _WATCHDOG_INITIAL_COUNTDOWN)


def get_bmc_watchdog_current_countdown(result: Result) -> float:
    return _number(result, _WATCHDOG_CURRENT_COUNTDOWN)


def get_sel_events(result: Result) -> list[SELEventData]:
    """Parse comma-separated ipmi-sel output; lines that do not fit are skipped."""
    _raise_if_failed(result)
    lines = result.text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    events = []
    for line in lines:
        match = _SEL_EVENT.match(line.removesuffix("\r"))
        if match is None:
            continue
        event_id = int(match["id"])
        if event_id > _INT64_MAX:
            continue
        events.append(
            SELEventData(
                id=event_id,
                date=match["date"],
                time=match["time"],
                name=match["name"],
                type=match["type"],
                state=match["state"],
                event=match["event"],
            )
        )
    return events