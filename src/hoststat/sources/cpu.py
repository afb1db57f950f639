"""Per-CPU time counters.

Every CPU state is reported as seconds spent in that state per second of
wall time, so a fully busy core reports user + system close to 1.0.
"""

import asyncio

import psutil

from hoststat.collectors.base import RateCollector, Source
from hoststat.models.base import MetricKind, Reading, Sample

# Order of the metric_cpu columns; states psutil doesn't report on this
# platform are simply absent from the reading
CPU_STATES = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)


class CpuSource(Source):
    """Cumulative CPU times from psutil.cpu_times(percpu=True)."""

    kind = MetricKind.CPU

    async def acquire(self) -> Sample:
        per_cpu = await asyncio.to_thread(psutil.cpu_times, percpu=True)
        readings = []
        for index, times in enumerate(per_cpu):
            values = times._asdict()
            readings.append(
                Reading(
                    key=str(index),
                    counters={state: values[state] for state in CPU_STATES if state in values},
                )
            )
        return Sample(source=self.name, readings=tuple(readings))


class CpuCollector(RateCollector):
    """Per-CPU seconds of each state per second."""

    def __init__(self, source: CpuSource | None = None) -> None:
        super().__init__(source or CpuSource())
