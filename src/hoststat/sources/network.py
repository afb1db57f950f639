"""Per-interface network throughput."""

import asyncio

import psutil

from hoststat.collectors.base import RateCollector, Source
from hoststat.models.base import MetricKind, Reading, Sample


class NetworkSource(Source):
    """Cumulative bytes received/transmitted per interface.

    psutil reads ``<PROCFS_PATH>/net/dev`` on Linux, so pointing
    procfs_path at the host's /proc reports host interfaces from inside a
    container.
    """

    kind = MetricKind.NETWORK

    async def acquire(self) -> Sample:
        counters = await asyncio.to_thread(psutil.net_io_counters, pernic=True)
        readings = tuple(
            Reading(key=nic, counters={"rx": stat.bytes_recv, "tx": stat.bytes_sent})
            for nic, stat in counters.items()
        )
        return Sample(source=self.name, readings=readings)


class NetworkCollector(RateCollector):
    """Bytes received and transmitted per second, per interface."""

    def __init__(self, source: NetworkSource | None = None) -> None:
        super().__init__(source or NetworkSource())
