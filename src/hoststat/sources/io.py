"""Per-device disk throughput."""

import asyncio

import psutil

from hoststat.collectors.base import RateCollector, Source
from hoststat.models.base import MetricKind, Reading, Sample


class IoSource(Source):
    """Cumulative bytes read/written per block device."""

    kind = MetricKind.IO

    async def acquire(self) -> Sample:
        counters = await asyncio.to_thread(psutil.disk_io_counters, perdisk=True) or {}
        readings = tuple(
            Reading(key=device, counters={"read": stat.read_bytes, "write": stat.write_bytes})
            for device, stat in counters.items()
        )
        return Sample(source=self.name, readings=readings)


class IoCollector(RateCollector):
    """Bytes read and written per second, per device."""

    def __init__(self, source: IoSource | None = None) -> None:
        super().__init__(source or IoSource())
