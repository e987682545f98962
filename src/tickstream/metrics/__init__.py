"""Metrics module."""

from tickstream.metrics.stats import MetricsCalculator, calculate, empty_metrics

__all__ = ["MetricsCalculator", "calculate", "empty_metrics"]
