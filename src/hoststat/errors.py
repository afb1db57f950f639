"""Exception hierarchy shared by every collector, source and store.

All errors raised by hoststat derive from HostStatError so the scheduler can
isolate a failing collector with a single except clause. Adapters convert
library exceptions (OSError, httpx, asyncpg, parsing errors) into this
taxonomy at their boundary:

- AcquisitionError: a source could not produce a Sample
- ComputationError: two Samples could not be turned into a Metric
- PersistenceError: storage rejected a write or is unreachable
- EncodingError: the current Metric could not be serialized
"""


class HostStatError(Exception):
    """Base exception for hoststat errors.

    Attributes:
        message: Human-readable description of the failure
        collector: Name of the collector or source involved (if known)
        cause: The underlying exception (if any)
    """

    def __init__(
        self,
        message: str,
        *,
        collector: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.collector = collector
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.collector:
            parts.insert(0, f"[{self.collector}]")
        if self.cause is not None:
            parts.append(f"(caused by: {self.cause})")
        return " ".join(parts)


class AcquisitionError(HostStatError):
    """A source adapter failed to produce a Sample."""


class TransportError(AcquisitionError):
    """I/O or transport failure while reading a source."""


class ParseError(AcquisitionError):
    """The source answered, but its payload could not be parsed."""


class NotConfiguredError(AcquisitionError):
    """The source is optional and has not been configured.

    This is an expected condition, not a fault: it is logged at debug level
    and never counted as a collection failure.
    """


class ComputationError(HostStatError):
    """Two Samples could not be combined into a Metric."""


class InvalidIntervalError(ComputationError):
    """The elapsed time between two paired Samples is not positive."""


class PersistenceError(HostStatError):
    """Base class for storage failures."""


class StorageWriteError(PersistenceError):
    """One or more rows of a Metric could not be written."""


class StorageUnavailableError(PersistenceError):
    """Storage cannot be reached."""


class EncodingError(HostStatError):
    """Base class for failures to encode the current Metric."""


class NoRecordError(EncodingError):
    """No Metric has been computed yet."""


class SerializationError(EncodingError):
    """The Metric could not be serialized."""
