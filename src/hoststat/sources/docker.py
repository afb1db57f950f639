"""Docker container resource usage over the Engine API.

The Engine API is reached over its UNIX socket with httpx. Container stats
are fetched concurrently; a container whose stats cannot be read (it may
have stopped in between) is logged and left out of the Sample.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

import httpx

from hoststat.collectors.base import RateCollector, Source
from hoststat.collectors.rates import counter_deltas, elapsed_seconds
from hoststat.errors import NotConfiguredError, ParseError, TransportError
from hoststat.models.base import Metric, MetricEntry, MetricKind, Number, Reading, Sample

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"

# Counters divided by elapsed time
PER_SECOND_COUNTERS = ("network_tx", "network_rx")


def reading_from_stats(container: dict[str, Any], stats: dict[str, Any]) -> Reading:
    """Build a Reading from a /containers/json item and its stats document.

    CPU counters are scaled the way the agent has always stored them:
    container CPU in microseconds, system CPU in milliseconds.

    Raises:
        KeyError: If a required field is missing
    """
    cpu_stats = stats["cpu_stats"]
    memory_stats = stats["memory_stats"]
    networks = stats.get("networks") or {}

    return Reading(
        key=stats["name"].lstrip("/"),
        labels={"state": container.get("State", "")},
        counters={
            "cpu_usage": cpu_stats["cpu_usage"]["total_usage"] // 1000,
            "system_cpu_usage": cpu_stats["system_cpu_usage"] // 1_000_000,
            "network_tx": sum(net["tx_bytes"] for net in networks.values()),
            "network_rx": sum(net["rx_bytes"] for net in networks.values()),
        },
        gauges={
            "memory_usage": memory_stats["usage"],
            # cgroup v2 hosts report no page cache figure
            "memory_cache": memory_stats.get("stats", {}).get("cache", 0),
        },
    )


class DockerSource(Source):
    """Per-container counters from the Docker Engine API.

    Args:
        socket_path: Docker Engine UNIX socket
        timeout: Acquisition timeout in seconds
        transport: httpx transport to use instead of the UNIX socket
    """

    kind = MetricKind.DOCKER
    timeout = 10.0

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET_PATH,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(timeout)
        self.socket_path = socket_path
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if self._transport is None and not Path(self.socket_path).exists():
                raise NotConfiguredError(
                    f"Docker socket {self.socket_path} not found", collector=self.name
                )
            transport = self._transport or httpx.AsyncHTTPTransport(uds=self.socket_path)
            self._client = httpx.AsyncClient(
                transport=transport,
                base_url="http://docker",
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        return self._client

    async def _get_json(self, path: str, **params: Any) -> Any:
        client = self._get_client()
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {path} failed", collector=self.name, cause=e) from e
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {path}", collector=self.name, cause=e) from e

    async def _container_reading(self, container: dict[str, Any]) -> Reading:
        stats = await self._get_json(f"/containers/{container['Id']}/stats", stream="false")
        try:
            return reading_from_stats(container, stats)
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(
                f"Unexpected stats for container {container['Id'][:12]}",
                collector=self.name,
                cause=e,
            ) from e

    async def acquire(self) -> Sample:
        containers = await self._get_json("/containers/json")
        if not isinstance(containers, list):
            raise ParseError("Expected a list of containers", collector=self.name)

        results = await asyncio.gather(
            *(self._container_reading(container) for container in containers),
            return_exceptions=True,
        )

        readings: list[Reading] = []
        seen: set[str] = set()
        for container, result in zip(containers, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Failed to get container stats (%s): %s", container.get("Id", "?")[:12], result
                )
            elif isinstance(result, BaseException):
                raise result
            elif result.key not in seen:
                seen.add(result.key)
                readings.append(result)

        return Sample(source=self.name, readings=tuple(readings))

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()


class DockerCollector(RateCollector):
    """Container CPU share, memory and network throughput.

    cpu_usage is the container's share of system CPU time per second;
    memory figures are absolute; network figures are bytes per second.
    """

    def __init__(self, source: DockerSource | None = None) -> None:
        super().__init__(source or DockerSource())

    def compute(self, previous: Sample | None, sample: Sample) -> Metric | None:
        if previous is None:
            return None

        elapsed = elapsed_seconds(previous, sample)
        entries: list[MetricEntry] = []
        for reading, deltas in counter_deltas(previous, sample):
            values: dict[str, Number] = dict(reading.gauges)

            system = deltas.get("system_cpu_usage")
            if "cpu_usage" in deltas and system:
                values["cpu_usage"] = deltas["cpu_usage"] / system / elapsed

            for name in PER_SECOND_COUNTERS:
                if name in deltas:
                    values[name] = deltas[name] / elapsed

            entries.append(MetricEntry(key=reading.key, labels=reading.labels, values=values))

        return Metric(timestamp=sample.timestamp, source=sample.source, entries=tuple(entries))
