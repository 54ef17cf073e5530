"""Collectors for BMC info, chassis status, DCMI power, SEL info and LAN mode."""

from __future__ import annotations

import logging

from . import freeipmi
from .freeipmi import FreeIPMIError, Result
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

BMC_INFO = Desc(
    build_fq_name(NAMESPACE, "bmc", "info"),
    "Constant metric with value '1' providing details about the BMC.",
    ("firmware_revision", "manufacturer_id", "system_firmware_version", "bmc_url"),
)

CHASSIS_POWER_STATE = Desc(
    build_fq_name(NAMESPACE, "chassis", "power_state"),
    "Current power state (1=on, 0=off).",
)
CHASSIS_DRIVE_FAULT = Desc(
    build_fq_name(NAMESPACE, "chassis", "drive_fault_state"),
    "Current drive fault state (1=false, 0=true).",
)
CHASSIS_COOLING_FAULT = Desc(
    build_fq_name(NAMESPACE, "chassis", "cooling_fault_state"),
    "Current Cooling/fan fault state (1=false, 0=true).",
)

POWER_CONSUMPTION = Desc(
    build_fq_name(NAMESPACE, "dcmi", "power_consumption_watts"),
    "Current power consumption in Watts.",
)

SEL_ENTRIES_COUNT = Desc(
    build_fq_name(NAMESPACE, "sel", "logs_count"),
    "Current number of log entries in the SEL.",
)
SEL_FREE_SPACE = Desc(
    build_fq_name(NAMESPACE, "sel", "free_space_bytes"),
    "Current free space remaining for new SEL entries.",
)

LAN_MODE = Desc(
    build_fq_name(NAMESPACE, "config", "lan_mode"),
    "Returns configured LAN mode (0=dedicated, 1=shared, 2=failover).",
)


def _failed(message: str, target: Target, exc: Exception) -> None:
    log.error("%s (target %s): %s", message, target_name(target.host), exc)


class BMCCollector(Collector):
    """BMC firmware and manufacturer details from ``bmc-info``."""

    name = CollectorName.BMC
    cmd = "bmc-info"
    args = ()

    def collect(self, result: Result, target: Target) -> list[Metric]:
        try:
            firmware_revision = freeipmi.get_bmc_info_firmware_revision(result)
            manufacturer_id = freeipmi.get_bmc_info_manufacturer_id(result)
        except FreeIPMIError as exc:
            _failed("Failed to collect BMC data", target, exc)
            raise
        # These two are not always available.
        try:
            system_firmware_version = freeipmi.get_bmc_info_system_firmware_version(result)
        except FreeIPMIError as exc:
            log.debug("Failed to parse bmc-info data (target %s): %s", target_name(target.host), exc)
            system_firmware_version = "N/A"
        try:
            bmc_url = freeipmi.get_bmc_info_bmc_url(result)
        except FreeIPMIError as exc:
            log.debug("Failed to parse bmc-info data (target %s): %s", target_name(target.host), exc)
            bmc_url = "N/A"
        return [
            gauge(BMC_INFO, 1, firmware_revision, manufacturer_id, system_firmware_version, bmc_url)
        ]


class ChassisCollector(Collector):
    """Power and fault state from ``ipmi-chassis``."""

    name = CollectorName.CHASSIS
    cmd = "ipmi-chassis"
    args = ("--get-chassis-status",)

    def collect(self, result: Result, target: Target) -> list[Metric]:
        try:
            power_state = freeipmi.get_chassis_power_state(result)
            drive_fault = freeipmi.get_chassis_drive_fault(result)
            cooling_fault = freeipmi.get_chassis_cooling_fault(result)
        except FreeIPMIError as exc:
            _failed("Failed to collect chassis data", target, exc)
            raise
        return [
            gauge(CHASSIS_POWER_STATE, power_state),
            gauge(CHASSIS_DRIVE_FAULT, drive_fault),
            gauge(CHASSIS_COOLING_FAULT, cooling_fault),
        ]


class DCMICollector(Collector):
    """Current power consumption from ``ipmi-dcmi``."""

    name = CollectorName.DCMI
    cmd = "ipmi-dcmi"
    args = ("--get-system-power-statistics",)

    def collect(self, result: Result, target: Target) -> list[Metric]:
        try:
            consumption = freeipmi.get_current_power_consumption(result)
        except FreeIPMIError as exc:
            _failed("Failed to collect DCMI data", target, exc)
            raise
        # A negative value means power measurement is not available.
        if consumption > -1:
            return [gauge(POWER_CONSUMPTION, consumption)]
        return []


class SELCollector(Collector):
    """System event log size and free space from ``ipmi-sel --info``."""

    name = CollectorName.SEL
    cmd = "ipmi-sel"
    args = ("--info",)

    def collect(self, result: Result, target: Target) -> list[Metric]:
        try:
            entries = freeipmi.get_sel_info_entries_count(result)
            free_space = freeipmi.get_sel_info_free_space(result)
        except FreeIPMIError as exc:
            _failed("Failed to collect SEL data", target, exc)
            raise
        return [gauge(SEL_ENTRIES_COUNT, entries), gauge(SEL_FREE_SPACE, free_space)]


class SMLANModeCollector(Collector):
    """Supermicro LAN mode read with a raw OEM command."""

    name = CollectorName.SM_LAN_MODE
    cmd = "ipmi-raw"
    args = ("0x0", "0x30", "0x70", "0x0c", "0")

    def collect(self, result: Result, target: Target) -> list[Metric]:
        try:
            octets = freeipmi.get_raw_octets(result)
        except FreeIPMIError as exc:
            _failed("Failed to collect LAN mode data", target, exc)
            raise
        if len(octets) != 3:
            log.error("Unexpected number of octets (target %s): %s", target_name(target.host), octets)
            raise FreeIPMIError(f"unexpected number of octets in raw response: {len(octets)}")
        status = octets[2]
        if status not in ("00", "01", "02"):
            log.error("Unexpected lan mode status (target %s): %s", target_name(target.host), status)
            raise FreeIPMIError(f"unexpected lan mode status: {status}")
        return [gauge(LAN_MODE, int(status))]