"""Prometheus exporter for IPMI devices, driven by the FreeIPMI tools."""

__version__ = "1.0.0"