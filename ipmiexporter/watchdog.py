"""Collector for the BMC watchdog timer."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

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

_T = TypeVar("_T")

TIMER_USES = ("BIOS FRB2", "BIOS POST", "OS LOAD", "SMS/OS", "OEM")
TIMEOUT_ACTIONS = ("None", "Hard Reset", "Power Down", "Power Cycle")
PRETIMEOUT_INTERRUPTS = ("None", "SMI", "NMI / Diagnostic Interrupt", "Messaging Interrupt")

WATCHDOG_TIMER = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "timer_state"),
    "Watchdog timer running (1: running, 0: stopped)",
)
WATCHDOG_TIMER_USE = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "timer_use_state"),
    "Watchdog timer use (1: active, 0: inactive)",
    ("name",),
)
WATCHDOG_LOGGING = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "logging_state"),
    "Watchdog log flag (1: Enabled, 0: Disabled / note: reverse of freeipmi)",
)
WATCHDOG_TIMEOUT_ACTION = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "timeout_action_state"),
    "Watchdog timeout action (1: active, 0: inactive)",
    ("action",),
)
WATCHDOG_PRETIMEOUT_INTERRUPT = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "pretimeout_interrupt_state"),
    "Watchdog pre-timeout interrupt (1: active, 0: inactive)",
    ("interrupt",),
)
WATCHDOG_PRETIMEOUT_INTERVAL = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "pretimeout_interval_seconds"),
    "Watchdog pre-timeout interval in seconds",
)
WATCHDOG_INITIAL_COUNTDOWN = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "initial_countdown_seconds"),
    "Watchdog initial countdown in seconds",
)
WATCHDOG_CURRENT_COUNTDOWN = Desc(
    build_fq_name(NAMESPACE, "bmc_watchdog", "current_countdown_seconds"),
    "Watchdog initial countdown in seconds",
)


def _read(getter: Callable[[Result], _T], result: Result, what: str, target: Target) -> _T:
    try:
        return getter(result)
    except FreeIPMIError as exc:
        log.error(
            "Failed to collect BMC watchdog %s (target %s): %s", what, target_name(target.host), exc
        )
        raise


def _one_hot(desc: Desc, choices: tuple[str, ...], current: str) -> list[Metric]:
    return [gauge(desc, 1 if choice == current else 0, choice) for choice in choices]


class BMCWatchdogCollector(Collector):
    """Watchdog timer settings and countdowns from ``bmc-watchdog --get``."""

    name = CollectorName.BMC_WATCHDOG
    cmd = "bmc-watchdog"
    args = ("--get",)

    def collect(self, result: Result, target: Target) -> list[Metric]:
        timer_state = _read(freeipmi.get_bmc_watchdog_timer_state, result, "timer", target)
        timer_use = _read(freeipmi.get_bmc_watchdog_timer_use, result, "timer use", target)
        logging_state = _read(freeipmi.get_bmc_watchdog_logging_state, result, "logging", target)
        timeout_action = _read(
            freeipmi.get_bmc_watchdog_timeout_action, result, "timeout action", target
        )
        pretimeout_interrupt = _read(
            freeipmi.get_bmc_watchdog_pretimeout_interrupt, result, "pretimeout interrupt", target
        )
        pretimeout_interval = _read(
            freeipmi.get_bmc_watchdog_pretimeout_interval, result, "pretimeout interval", target
        )
        initial_countdown = _read(
            freeipmi.get_bmc_watchdog_initial_countdown, result, "initial countdown", target
        )
        current_countdown = _read(
            freeipmi.get_bmc_watchdog_current_countdown, result, "current countdown", target
        )

        metrics = [gauge(WATCHDOG_TIMER, timer_state)]
        metrics += _one_hot(WATCHDOG_TIMER_USE, TIMER_USES, timer_use)
        metrics.append(gauge(WATCHDOG_LOGGING, logging_state))
        metrics += _one_hot(WATCHDOG_TIMEOUT_ACTION, TIMEOUT_ACTIONS, timeout_action)
        metrics += _one_hot(WATCHDOG_PRETIMEOUT_INTERRUPT, PRETIMEOUT_INTERRUPTS, pretimeout_interrupt)
        metrics.append(gauge(WATCHDOG_PRETIMEOUT_INTERVAL, pretimeout_interval))
        metrics.append(gauge(WATCHDOG_INITIAL_COUNTDOWN, initial_countdown))
        metrics.append(gauge(WATCHDOG_CURRENT_COUNTDOWN, current_countdown))
        return metrics