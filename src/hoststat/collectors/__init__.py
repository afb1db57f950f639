"""Collectors and the polling scheduler."""

from hoststat.collectors.base import (
    Collector,
    CollectorState,
    InstantCollector,
    PerMinuteCollector,
    RateCollector,
    Source,
)
from hoststat.collectors.scheduler import PollingScheduler, SchedulerStats

__all__ = [
    "Collector",
    "CollectorState",
    "InstantCollector",
    "PerMinuteCollector",
    "PollingScheduler",
    "RateCollector",
    "SchedulerStats",
    "Source",
]
