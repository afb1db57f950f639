"""Conversion of Samples into Metrics.

Every counter-based source shares the same pairing rules:

- Only readings with the same key, and only counters with the same name,
  are ever paired. Anything present in just one Sample is dropped.
- A counter that went backwards (restart or reset) is dropped for that
  interval rather than reported as a negative rate.
- The elapsed time between the two Samples must be positive; anything
  else raises InvalidIntervalError.
- Gauges of paired readings are carried through from the newer Sample.

All functions here are pure and synchronous.
"""

from datetime import timedelta
import logging

from hoststat.errors import ComputationError, InvalidIntervalError
from hoststat.models.base import Metric, MetricEntry, Number, Reading, Sample

logger = logging.getLogger(__name__)

_MINUTE = timedelta(minutes=1)


def elapsed_seconds(first: Sample, second: Sample) -> float:
    """Return the time between two Samples of the same source in seconds.

    Args:
        first: The older Sample
        second: The newer Sample

    Returns:
        Elapsed time in seconds (always positive)

    Raises:
        ComputationError: If the Samples come from different sources
        InvalidIntervalError: If the elapsed time is zero or negative
    """
    if first.source != second.source:
        raise ComputationError(
            f"Cannot pair samples from '{first.source}' and '{second.source}'",
            collector=second.source,
        )

    elapsed = (second.timestamp - first.timestamp).total_seconds()
    if elapsed <= 0:
        raise InvalidIntervalError(
            f"Non-positive interval between samples ({elapsed:.3f}s)",
            collector=second.source,
        )
    return elapsed


def counter_deltas(first: Sample, second: Sample) -> list[tuple[Reading, dict[str, Number]]]:
    """Pair readings by key and compute per-counter deltas.

    Args:
        first: The older Sample
        second: The newer Sample

    Returns:
        (reading from the newer Sample, counter deltas) for every key present
        in both Samples, in the newer Sample's order
    """
    previous = {reading.key: reading for reading in first.readings}
    paired: list[tuple[Reading, dict[str, Number]]] = []

    for reading in second.readings:
        before = previous.get(reading.key)
        if before is None:
            continue

        deltas: dict[str, Number] = {}
        for name, value in reading.counters.items():
            if name not in before.counters:
                continue
            delta = value - before.counters[name]
            if delta < 0:
                logger.debug(
                    "Counter '%s' of %s/%s went backwards (%s -> %s), dropping it",
                    name,
                    second.source,
                    reading.key,
                    before.counters[name],
                    value,
                )
                continue
            deltas[name] = delta

        paired.append((reading, deltas))

    return paired


def _build_metric(sample: Sample, entries: list[MetricEntry]) -> Metric:
    return Metric(timestamp=sample.timestamp, source=sample.source, entries=tuple(entries))


def rate_from_pair(first: Sample, second: Sample) -> Metric:
    """Convert two Samples into per-second rates.

    Example:
        {read: 1000} at T0 and {read: 5000} at T0+10s yields read = 400.0

    Args:
        first: The older Sample
        second: The newer Sample

    Returns:
        Metric timestamped with the newer Sample

    Raises:
        InvalidIntervalError: If the elapsed time is not positive
    """
    elapsed = elapsed_seconds(first, second)

    entries: list[MetricEntry] = []
    for reading, deltas in counter_deltas(first, second):
        values: dict[str, Number] = dict(reading.gauges)
        for name, delta in deltas.items():
            values[name] = delta / elapsed
        if values:
            entries.append(MetricEntry(key=reading.key, labels=reading.labels, values=values))

    return _build_metric(second, entries)


def delta_from_pair(first: Sample, second: Sample) -> Metric:
    """Convert two Samples into per-interval counter deltas.

    Same pairing rules as rate_from_pair, without dividing by time.

    Raises:
        InvalidIntervalError: If the elapsed time is not positive
    """
    elapsed_seconds(first, second)

    entries: list[MetricEntry] = []
    for reading, deltas in counter_deltas(first, second):
        values: dict[str, Number] = {**reading.gauges, **deltas}
        if values:
            entries.append(MetricEntry(key=reading.key, labels=reading.labels, values=values))

    return _build_metric(second, entries)


def per_minute_from_pair(first: Sample, second: Sample) -> Metric:
    """Convert two Samples into whole events per minute.

    The integer counter delta is floor-divided by the number of whole
    minutes between the Samples.

    Raises:
        InvalidIntervalError: If less than one whole minute elapsed
    """
    elapsed_seconds(first, second)

    minutes = (second.timestamp - first.timestamp) // _MINUTE
    if minutes < 1:
        raise InvalidIntervalError(
            "Less than one whole minute between samples, cannot compute a per-minute value",
            collector=second.source,
        )

    entries: list[MetricEntry] = []
    for reading, deltas in counter_deltas(first, second):
        values: dict[str, Number] = dict(reading.gauges)
        for name, delta in deltas.items():
            values[name] = int(delta) // minutes
        if values:
            entries.append(MetricEntry(key=reading.key, labels=reading.labels, values=values))

    return _build_metric(second, entries)


def metric_from_sample(sample: Sample) -> Metric:
    """Turn a single Sample into a Metric of absolute values.

    Used by sources whose readings are already reporting-ready (load
    average, memory usage, filesystem usage).
    """
    entries = [
        MetricEntry(
            key=reading.key,
            labels=reading.labels,
            values={**reading.counters, **reading.gauges},
        )
        for reading in sample.readings
        if reading.counters or reading.gauges
    ]
    return _build_metric(sample, entries)
