"""Tests for the hoststat exception hierarchy."""

import pytest

from hoststat.errors import (
    AcquisitionError,
    ComputationError,
    EncodingError,
    HostStatError,
    InvalidIntervalError,
    NoRecordError,
    NotConfiguredError,
    ParseError,
    PersistenceError,
    SerializationError,
    StorageUnavailableError,
    StorageWriteError,
    TransportError,
)


class TestHierarchy:
    """Tests for the error taxonomy."""

    @pytest.mark.parametrize(
        "error,family",
        [
            (TransportError, AcquisitionError),
            (ParseError, AcquisitionError),
            (NotConfiguredError, AcquisitionError),
            (InvalidIntervalError, ComputationError),
            (StorageWriteError, PersistenceError),
            (StorageUnavailableError, PersistenceError),
            (NoRecordError, EncodingError),
            (SerializationError, EncodingError),
        ],
    )
    def test_families(self, error: type[HostStatError], family: type[HostStatError]) -> None:
        """Test that every error belongs to its family and to HostStatError."""
        assert issubclass(error, family)
        assert issubclass(family, HostStatError)


class TestMessage:
    """Tests for error formatting."""

    def test_plain(self) -> None:
        """Test a message without context."""
        assert str(HostStatError("boom")) == "boom"

    def test_with_collector_and_cause(self) -> None:
        """Test that the collector and the cause are included."""
        error = TransportError("Failed to read source", collector="io", cause=OSError("gone"))
        assert str(error) == "[io] Failed to read source (caused by: gone)"
        assert error.message == "Failed to read source"
