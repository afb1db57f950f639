"""Physical memory and swap usage."""

import asyncio

import psutil

from hoststat.collectors.base import InstantCollector, Source
from hoststat.models.base import MetricKind, Number, Reading, Sample


class MemorySource(Source):
    """Memory usage in bytes from psutil.virtual_memory() and psutil.swap_memory()."""

    kind = MetricKind.MEMORY

    async def acquire(self) -> Sample:
        vm = await asyncio.to_thread(psutil.virtual_memory)
        sm = await asyncio.to_thread(psutil.swap_memory)

        gauges: dict[str, Number] = {
            "total": vm.total,
            "free": vm.free,
            "available": vm.available,
        }
        # buffers and cached only exist on some platforms
        for name in ("buffers", "cached"):
            value = getattr(vm, name, None)
            if value is not None:
                gauges[name] = value
        gauges["swap_total"] = sm.total
        gauges["swap_free"] = sm.free

        return Sample(source=self.name, readings=(Reading(key=self.name, gauges=gauges),))


class MemoryCollector(InstantCollector):
    def __init__(self, source: MemorySource | None = None) -> None:
        super().__init__(source or MemorySource())
