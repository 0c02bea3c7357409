"""Telemetry point model, rollup pipeline and latest-value cache."""

__version__ = "0.1.0"
