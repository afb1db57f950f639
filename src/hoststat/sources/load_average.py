"""1, 5 and 15 minute load averages."""

import asyncio

import psutil

from hoststat.collectors.base import InstantCollector, Source
from hoststat.models.base import MetricKind, Reading, Sample


class LoadAverageSource(Source):
    kind = MetricKind.LOAD_AVERAGE

    async def acquire(self) -> Sample:
        one, five, fifteen = await asyncio.to_thread(psutil.getloadavg)
        reading = Reading(key=self.name, gauges={"one": one, "five": five, "fifteen": fifteen})
        return Sample(source=self.name, readings=(reading,))


class LoadAverageCollector(InstantCollector):
    def __init__(self, source: LoadAverageSource | None = None) -> None:
        super().__init__(source or LoadAverageSource())
