"""Filesystem usage per mounted device."""

import asyncio
from collections.abc import Iterable
import logging
from typing import Any

import psutil

from hoststat.collectors.base import InstantCollector, Source
from hoststat.models.base import MetricKind, Reading, Sample

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_FSTYPES = ("squashfs", "devtmpfs", "tmpfs", "fuse")


class FilesystemSource(Source):
    """Total and used bytes of every real mounted filesystem.

    Pseudo filesystems (and any fuse.* type when "fuse" is excluded) are
    skipped; a device mounted more than once is reported once, from its
    first mount point.
    """

    kind = MetricKind.FILESYSTEM

    def __init__(
        self,
        exclude_fstypes: Iterable[str] = DEFAULT_EXCLUDED_FSTYPES,
        timeout: float | None = None,
    ) -> None:
        super().__init__(timeout)
        self.exclude_fstypes = frozenset(fstype.lower() for fstype in exclude_fstypes)

    def is_excluded(self, fstype: str) -> bool:
        fstype = fstype.lower()
        if fstype in self.exclude_fstypes:
            return True
        # fuse.sshfs, fuse.gvfsd-fuse, ...
        return "fuse" in self.exclude_fstypes and fstype.startswith("fuse.")

    def _usage(self, partition: Any) -> Reading | None:
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except OSError as e:
            # Mountpoint not accessible or device removed
            logger.debug("Skipping %s: %s", partition.mountpoint, e)
            return None
        return Reading(
            key=partition.device,
            labels={"mountpoint": partition.mountpoint, "fstype": partition.fstype},
            gauges={"total": usage.total, "used": usage.used},
        )

    def _read_partitions(self) -> tuple[Reading, ...]:
        readings: list[Reading] = []
        seen: set[str] = set()

        for partition in psutil.disk_partitions(all=False):
            if self.is_excluded(partition.fstype) or partition.device in seen:
                continue
            reading = self._usage(partition)
            if reading is not None:
                seen.add(partition.device)
                readings.append(reading)
        return tuple(readings)

    async def acquire(self) -> Sample:
        # disk_usage can hang on a stale network mount
        readings = await asyncio.to_thread(self._read_partitions)
        return Sample(source=self.name, readings=readings)


class FilesystemCollector(InstantCollector):
    def __init__(self, source: FilesystemSource | None = None) -> None:
        super().__init__(source or FilesystemSource())
