"""Nginx request throughput from the stub_status page.

A stub_status page looks like::

    Active connections: 291
    server accepts handled requests
     16630948 16630948 31070465
    Reading: 6 Writing: 179 Waiting: 106
"""

import httpx

from hoststat.collectors.base import PerMinuteCollector, Source
from hoststat.errors import NotConfiguredError, ParseError, TransportError
from hoststat.models.base import MetricKind, Reading, Sample


def parse_handled_requests(text: str) -> int:
    """Extract the request counter from a stub_status page.

    Raises:
        ParseError: If the page does not have the stub_status layout
    """
    try:
        return int(text.splitlines()[2].split()[2])
    except (IndexError, ValueError) as e:
        raise ParseError("Unexpected stub_status layout", collector="nginx", cause=e) from e


class NginxSource(Source):
    """Cumulative request count from an nginx stub_status URL.

    Args:
        status_url: stub_status URL (the source is not configured if None)
        timeout: Acquisition timeout in seconds
        transport: httpx transport override
    """

    kind = MetricKind.NGINX

    def __init__(
        self,
        status_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(timeout)
        self.status_url = status_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport, timeout=self.timeout)
        return self._client

    async def acquire(self) -> Sample:
        if not self.status_url:
            raise NotConfiguredError("Nginx status endpoint is not set", collector=self.name)

        try:
            response = await self._get_client().get(self.status_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(
                "Failed to request nginx status", collector=self.name, cause=e
            ) from e

        handled = parse_handled_requests(response.text)
        reading = Reading(key=self.name, counters={"handled_requests": handled})
        return Sample(source=self.name, readings=(reading,))

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()


class NginxCollector(PerMinuteCollector):
    """Handled requests per whole minute."""

    def __init__(self, source: NginxSource | None = None) -> None:
        super().__init__(source or NginxSource())
