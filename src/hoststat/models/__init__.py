"""Pydantic data models for hoststat.

- MetricKind: Closed set of metric kinds
- Sample / Reading: Raw readings produced by source adapters
- Metric / MetricEntry: Derived values consumed by storage and encoders
"""

from hoststat.models.base import (
    Metric,
    MetricData,
    MetricEntry,
    MetricKind,
    Reading,
    Sample,
)

__all__ = [
    "Metric",
    "MetricData",
    "MetricEntry",
    "MetricKind",
    "Reading",
    "Sample",
]
