"""Tests for the polling scheduler."""

from datetime import UTC, datetime, timedelta
import logging

import pytest

from hoststat.collectors import PollingScheduler, RateCollector, SchedulerStats, Source
from hoststat.config import Config
from hoststat.errors import (
    HostStatError,
    NotConfiguredError,
    StorageUnavailableError,
    StorageWriteError,
    TransportError,
)
from hoststat.models import Metric, MetricEntry, MetricKind, Reading, Sample
from hoststat.storage import MemoryStore

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


# Test fixtures and mock implementations


class TickingSource(Source):
    """Source whose counter grows by 100 and clock by 10 seconds per Sample."""

    timeout = 1.0

    def __init__(self, kind: MetricKind, fail_on: set[int] | None = None) -> None:
        super().__init__()
        self.kind = kind
        self.fail_on = fail_on or set()
        self.calls = 0
        self.closed = False

    async def acquire(self) -> Sample:
        call = self.calls
        self.calls += 1
        if call in self.fail_on:
            raise TransportError("unreachable")
        return Sample(
            source=self.kind.value,
            timestamp=T0 + timedelta(seconds=10 * call),
            readings=(Reading(key="k", counters={"n": 100 * call}),),
        )

    async def close(self) -> None:
        self.closed = True


class UnconfiguredSource(Source):
    """Source that is never configured."""

    kind = MetricKind.NGINX

    async def acquire(self) -> Sample:
        raise NotConfiguredError("No status URL configured")


class BrokenSource(Source):
    """Source raising an exception outside the hoststat taxonomy."""

    kind = MetricKind.MEMORY

    async def acquire(self) -> Sample:
        raise RuntimeError("bug")


class ScriptedStore(MemoryStore):
    """MemoryStore with scripted ping results and reconnect behavior."""

    def __init__(
        self,
        pings: list[bool] | None = None,
        reconnect_fails: bool = False,
        reject: set[str] | None = None,
    ) -> None:
        super().__init__()
        self.pings = pings or []
        self.reconnect_fails = reconnect_fails
        self.reject = reject or set()
        self.reconnect_calls = 0
        self.purge_cutoffs: list[datetime] = []

    async def ping(self) -> bool:
        if self.pings:
            return self.pings.pop(0)
        return await super().ping()

    async def reconnect(self) -> None:
        self.reconnect_calls += 1
        if self.reconnect_fails:
            raise StorageUnavailableError("connection refused")
        await super().reconnect()

    async def write_entry(self, hostname: str, metric: Metric, entry: MetricEntry) -> None:
        if metric.source in self.reject:
            raise StorageWriteError("disk full", collector=metric.source)
        await super().write_entry(hostname, metric, entry)

    async def purge_older_than(
        self, source: str, cutoff: datetime, hostname: str | None = None
    ) -> int:
        self.purge_cutoffs.append(cutoff)
        return await super().purge_older_than(source, cutoff, hostname)


class FakeSleep:
    """Records requested sleeps without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_scheduler(
    store: MemoryStore,
    config: Config | None = None,
    clock: datetime = T0,
) -> tuple[PollingScheduler, FakeSleep]:
    config = config or Config(report_interval=5, cleanup_every=3)
    sleep = FakeSleep()
    scheduler = PollingScheduler(
        store, "host-1", lambda: config, sleep=sleep, clock=lambda: clock
    )
    return scheduler, sleep


# ============================================================================
# Registration
# ============================================================================


class TestRegistration:
    """Tests for collector registration."""

    def test_registration_order(self) -> None:
        """Test that collectors are listed in registration order."""
        scheduler, _ = make_scheduler(MemoryStore())
        for kind in (MetricKind.NETWORK, MetricKind.CPU, MetricKind.IO):
            scheduler.register(RateCollector(TickingSource(kind)))

        assert scheduler.list_collectors() == ["network", "cpu", "io"]
        assert scheduler.get_collector("cpu") is not None
        assert scheduler.get_collector("docker") is None

    def test_duplicate_rejected(self) -> None:
        """Test that a name can only be registered once."""
        scheduler, _ = make_scheduler(MemoryStore())
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))
        with pytest.raises(ValueError, match="already registered"):
            scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

    def test_initial_stats(self) -> None:
        """Test that stats start at zero."""
        scheduler, _ = make_scheduler(MemoryStore())
        assert scheduler.stats == SchedulerStats()


# ============================================================================
# Polling
# ============================================================================


class TestPolling:
    """Tests for prime() and poll_once()."""

    @pytest.mark.asyncio
    async def test_prime_arms_without_saving(self) -> None:
        """Test that priming gives every collector a baseline only."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        collector = RateCollector(TickingSource(MetricKind.IO))
        scheduler.register(collector)

        await scheduler.prime()

        assert collector.previous_sample is not None
        assert collector.current_metric is None
        assert store.rows("io") == []

    @pytest.mark.asyncio
    async def test_poll_once_saves(self) -> None:
        """Test that a primed collector saves on the first poll."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.prime()
        await scheduler.poll_once()

        [row] = store.rows("io")
        assert row.hostname == "host-1"
        assert row.values == {"n": 10.0}

    @pytest.mark.asyncio
    async def test_failing_collector_is_isolated(self) -> None:
        """Test that one collector's failure never blocks the others."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        failing = RateCollector(TickingSource(MetricKind.CPU, fail_on={1}))
        scheduler.register(failing)
        scheduler.register(RateCollector(BrokenSource()))
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.prime()
        await scheduler.poll_once()

        assert store.rows("cpu") == []
        assert len(store.rows("io")) == 1
        assert scheduler.stats.collect_failures == 3  # broken twice, cpu once
        assert failing.previous_sample.timestamp == T0  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_permanent_failure_never_blocks_others(self) -> None:
        """Test that healthy collectors save on every cycle next to a dead one."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store, Config(report_interval=5, cleanup_every=10))
        scheduler.register(RateCollector(TickingSource(MetricKind.CPU)))
        scheduler.register(RateCollector(TickingSource(MetricKind.DOCKER, fail_on={0, 1, 2, 3})))
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.run(max_cycles=3)

        assert len(store.rows("cpu")) == 3
        assert len(store.rows("io")) == 3
        assert store.rows("docker") == []
        assert scheduler.stats.cycles == 3
        assert scheduler.stats.collect_failures == 4

    @pytest.mark.asyncio
    async def test_save_failure_is_isolated(self) -> None:
        """Test that a write failure is logged and the next collector still saves."""
        store = ScriptedStore(reject={"cpu"})
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.CPU)))
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.prime()
        await scheduler.poll_once()

        assert scheduler.stats.save_failures == 1
        assert len(store.rows("io")) == 1

    @pytest.mark.asyncio
    async def test_not_configured_not_counted(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that unconfigured sources are skipped quietly."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(UnconfiguredSource()))
        reported: list[str] = []
        scheduler.add_error_callback(lambda name, error: reported.append(name))

        with caplog.at_level(logging.WARNING):
            await scheduler.prime()
            await scheduler.poll_once()

        assert scheduler.stats.collect_failures == 0
        assert reported == []
        assert "nginx" not in caplog.text

    @pytest.mark.asyncio
    async def test_error_callbacks(self) -> None:
        """Test that failures are reported to callbacks with the collector name."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.DOCKER, fail_on={0})))
        reported: list[tuple[str, HostStatError]] = []
        scheduler.add_error_callback(lambda name, error: reported.append((name, error)))

        await scheduler.prime()

        [(name, error)] = reported
        assert name == "docker"
        assert isinstance(error, TransportError)

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(self) -> None:
        """Test that an exploding callback does not break polling."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.IO, fail_on={0})))

        def explode(name: str, error: HostStatError) -> None:
            raise RuntimeError("callback bug")

        scheduler.add_error_callback(explode)
        await scheduler.prime()
        await scheduler.poll_once()

        assert scheduler.stats.collect_failures == 1


# ============================================================================
# Storage liveness
# ============================================================================


class TestCheckStorage:
    """Tests for check_storage()."""

    @pytest.mark.asyncio
    async def test_live_connection(self) -> None:
        """Test that a live connection is left alone."""
        store = ScriptedStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)

        await scheduler.check_storage()

        assert store.reconnect_calls == 0

    @pytest.mark.asyncio
    async def test_reconnect_then_resume(self) -> None:
        """Test that a dead connection is replaced once and polling resumes."""
        store = ScriptedStore(pings=[False])
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.run(max_cycles=1)

        assert store.reconnect_calls == 1
        assert scheduler.stats.reconnects == 1
        assert len(store.rows("io")) == 1

    @pytest.mark.asyncio
    async def test_reconnect_failure_is_fatal(self) -> None:
        """Test that a failed reconnect stops the scheduler."""
        store = ScriptedStore(pings=[False], reconnect_fails=True)
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        with pytest.raises(StorageUnavailableError, match="Reconnect to storage failed"):
            await scheduler.run(max_cycles=5)

        assert store.reconnect_calls == 1
        assert scheduler.stats.cycles == 0

    @pytest.mark.asyncio
    async def test_still_dead_after_reconnect(self) -> None:
        """Test that a reconnect yielding a dead connection is fatal too."""
        store = ScriptedStore(pings=[False, False])
        await store.connect()
        scheduler, _ = make_scheduler(store)

        with pytest.raises(StorageUnavailableError, match="not live after reconnect"):
            await scheduler.check_storage()


# ============================================================================
# Cleanup
# ============================================================================


class TestCleanup:
    """Tests for retention cleanup."""

    @pytest.mark.asyncio
    async def test_shared_cutoff(self) -> None:
        """Test that one cutoff is computed for every collector."""
        store = ScriptedStore()
        await store.connect()
        config = Config(max_metric_age=timedelta(hours=1))
        scheduler, _ = make_scheduler(store, config, clock=T0 + timedelta(hours=2))
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))
        scheduler.register(RateCollector(TickingSource(MetricKind.CPU)))

        await scheduler.cleanup_all()

        assert store.purge_cutoffs == [T0 + timedelta(hours=1)] * 2
        assert scheduler.stats.cleanups == 1

    @pytest.mark.asyncio
    async def test_deletes_only_expired_rows(self) -> None:
        """Test that only rows older than the horizon are removed."""
        store = MemoryStore()
        await store.connect()
        config = Config(max_metric_age=timedelta(seconds=15))
        scheduler, _ = make_scheduler(store, config, clock=T0 + timedelta(seconds=35))
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.prime()
        for _ in range(3):
            await scheduler.poll_once()
        # rows at +10s, +20s, +30s; cutoff is +20s
        deleted = await scheduler.cleanup_all()

        assert deleted == 1
        assert [row.timestamp for row in store.rows("io")] == [
            T0 + timedelta(seconds=20),
            T0 + timedelta(seconds=30),
        ]

    @pytest.mark.asyncio
    async def test_scoped_to_hostname(self) -> None:
        """Test that rows written by other hosts are left alone."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store, clock=T0 + timedelta(days=30))
        collector = RateCollector(TickingSource(MetricKind.IO))
        scheduler.register(collector)
        await collector.collect()
        await collector.collect()
        await collector.save(store, "other-host")

        assert await scheduler.cleanup_all() == 0
        assert len(store.rows("io")) == 1

    @pytest.mark.asyncio
    async def test_runs_every_k_cycles(self) -> None:
        """Test that cleanup runs on every K-th cycle only."""
        store = ScriptedStore()
        await store.connect()
        scheduler, sleep = make_scheduler(store, Config(report_interval=5, cleanup_every=3))
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.run(max_cycles=7)

        assert scheduler.stats.cycles == 7
        assert scheduler.stats.cleanups == 2
        assert sleep.calls == [5] * 7

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_isolated(self) -> None:
        """Test that a failing purge does not stop the other collectors' purges."""

        class PurgeFailingStore(ScriptedStore):
            async def purge_older_than(
                self, source: str, cutoff: datetime, hostname: str | None = None
            ) -> int:
                if source == "cpu":
                    raise StorageUnavailableError("lost", collector=source)
                return await super().purge_older_than(source, cutoff, hostname)

        store = PurgeFailingStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.CPU)))
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.cleanup_all()

        assert scheduler.stats.cleanup_failures == 1
        assert len(store.purge_cutoffs) == 1


# ============================================================================
# Run loop
# ============================================================================


class TestRun:
    """Tests for run() and close()."""

    @pytest.mark.asyncio
    async def test_config_read_every_cycle(self) -> None:
        """Test that the configuration provider is consulted each cycle."""
        store = MemoryStore()
        await store.connect()
        intervals = iter([Config(report_interval=1), Config(report_interval=2)])
        current: list[Config] = []

        def provider() -> Config:
            config = next(intervals, current[-1] if current else Config())
            current.append(config)
            return config

        sleep = FakeSleep()
        scheduler = PollingScheduler(store, "host-1", provider, sleep=sleep)

        await scheduler.run(max_cycles=3)

        assert sleep.calls == [1, 2, 2]

    @pytest.mark.asyncio
    async def test_first_cycle_already_saves(self) -> None:
        """Test that priming lets the first cycle write a rate."""
        store = MemoryStore()
        await store.connect()
        scheduler, _ = make_scheduler(store)
        scheduler.register(RateCollector(TickingSource(MetricKind.IO)))

        await scheduler.run(max_cycles=1)

        assert len(store.rows("io")) == 1

    @pytest.mark.asyncio
    async def test_close_releases_sources(self) -> None:
        """Test that close() closes every source."""
        scheduler, _ = make_scheduler(MemoryStore())
        sources = [TickingSource(MetricKind.IO), TickingSource(MetricKind.CPU)]
        for source in sources:
            scheduler.register(RateCollector(source))

        await scheduler.close()

        assert all(source.closed for source in sources)
