"""Metric descriptions, gauge samples and the text exposition format."""

from __future__ import annotations

import abc
import enum
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from .freeipmi import Result

NAMESPACE = "ipmi"
TARGET_LOCAL = ""


class CollectorName(str, enum.Enum):
    """Names of the collectors that can be enabled in a module."""

    IPMI = "ipmi"
    BMC = "bmc"
    BMC_WATCHDOG = "bmc-watchdog"
    SEL = "sel"
    SEL_EVENTS = "sel-events"
    DCMI = "dcmi"
    CHASSIS = "chassis"
    SM_LAN_MODE = "sm-lan-mode"

    def __str__(self) -> str:
        return self.value


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores; an empty name gives ''."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class Desc:
    """Description of a metric family: name, help text and label names."""

    fq_name: str
    help: str
    label_names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "label_names", tuple(self.label_names))


@dataclass(frozen=True)
class Metric:
    """A single gauge sample."""

    desc: Desc
    value: float
    label_values: tuple[str, ...] = ()

    @property
    def labels(self) -> dict[str, str]:
        return dict(zip(self.desc.label_names, self.label_values))


def gauge(desc: Desc, value: float, *args: str) -> Metric:
    """Build a gauge sample; the label values must match the description."""
    if len(args) != len(desc.label_names):
        raise ValueError(
            f"{desc.fq_name}: expected {len(desc.label_names)} label values, got {len(args)}"
        )
    return Metric(desc, float(value), tuple(str(arg) for arg in args))


@dataclass(frozen=True)
class Target:
    """A host to scrape (empty for the local BMC) and its module configuration."""

    host: str
    config: Any = None


def target_name(target: str) -> str:
    """Human readable name of a target for log messages."""
    return "[local]" if target == TARGET_LOCAL else target


class Collector(abc.ABC):
    """Turns the output of one FreeIPMI tool into metrics.

    ``cmd`` is the tool to run and ``args`` its arguments; ``collect`` raises
    when the output cannot be used.
    """

    name: CollectorName
    cmd: str
    args: tuple[str, ...] = ()

    @abc.abstractmethod
    def collect(self, result: Result, target: Target) -> list[Metric]:
        """Return the metrics found in ``result`` for ``target``."""


UP_DESC = Desc(
    build_fq_name(NAMESPACE, "", "up"),
    "'1' if a scrape of the IPMI device was successful, '0' otherwise.",
    ("collector",),
)

DURATION_DESC = Desc(
    build_fq_name(NAMESPACE, "scrape_duration", "seconds"),
    "Returns how long the scrape took to complete in seconds.",
)


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _sorted_pairs(metric: Metric) -> list[tuple[str, str]]:
    return sorted(zip(metric.desc.label_names, metric.label_values))


def render(metrics: Iterable[Metric]) -> str:
    """Render samples in the Prometheus text format, families sorted by name."""
    families: dict[str, tuple[Desc, list[Metric]]] = {}
    for metric in metrics:
        families.setdefault(metric.desc.fq_name, (metric.desc, []))[1].append(metric)

    lines = []
    for name in sorted(families):
        desc, samples = families[name]
        lines.append(f"# HELP {name} {_escape_help(desc.help)}")
        lines.append(f"# TYPE {name} gauge")
        for sample in sorted(samples, key=lambda m: [v for _, v in _sorted_pairs(m)]):
            pairs = _sorted_pairs(sample)
            label_text = ""
            if pairs:
                label_text = "{" + ",".join(f'{k}="{_escape_label(v)}"' for k, v in pairs) + "}"
            lines.append(f"{name}{label_text} {_format_value(sample.value)}")
    return "".join(line + "\n" for line in lines)