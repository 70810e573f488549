"""
Sample/Event Buffer Interface
=============================

Client-side view of the external buffered data source the online
classifier reads from and publishes to. The source holds one growing
sample stream (samples x channels) and one growing event stream, both
addressed by absolute index from the start of the recording.

Operations:
    connect(host, port)            open the connection
    get_header()                   channel count, rate, labels, current counts
    wait_for_samples(target, ms)   block until target samples or new events
    get_sample_block(first, last)  samples [first, last], inclusive
    get_events(first, last)        events [first, last], inclusive
    put_event(event)               publish an event (fire-and-forget)
    disconnect()

    Every operation raises TransportError when the source cannot be
    reached or the request cannot be served.

Restart:
    A source may reset its counters (e.g. a new recording). Clients
    detect this when the reported sample count drops below what they
    have already consumed.

SimulatedBuffer is an in-memory, thread-safe implementation used for
testing and demos.

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class TransportError(IOError):
    """Raised when the buffer cannot be reached or a request fails."""
    pass


# =============================================================================
# Records
# =============================================================================

@dataclass
class Header:
    """
    Stream description reported by the buffer.

    Attributes:
        channel_count: Number of channels per sample
        sample_rate: Sampling rate (Hz)
        channel_labels: One label per channel
        sample_count: Samples currently held
        event_count: Events currently held
    """
    channel_count: int
    sample_rate: float
    channel_labels: List[str] = field(default_factory=list)
    sample_count: int = 0
    event_count: int = 0

    def __post_init__(self) -> None:
        if self.channel_count < 1:
            raise ValueError(f"channel_count must be >= 1, got {self.channel_count}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be > 0, got {self.sample_rate}")
        if not self.channel_labels:
            self.channel_labels = [f"CH{i+1}" for i in range(self.channel_count)]
        elif len(self.channel_labels) != self.channel_count:
            raise ValueError(
                f"channel_labels length ({len(self.channel_labels)}) must match "
                f"channel_count ({self.channel_count})"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_count": self.channel_count,
            "sample_rate": float(self.sample_rate),
            "channel_labels": list(self.channel_labels),
            "sample_count": self.sample_count,
            "event_count": self.event_count,
        }


@dataclass
class BufferEvent:
    """
    One event in the buffer's event stream.

    Attributes:
        type: Event type, e.g. "stimulus.test"
        value: Event payload (string, number or list of numbers)
        sample: Sample index the event refers to
    """
    type: str
    value: Any
    sample: int = 0


@dataclass(frozen=True)
class SamplesEventsCount:
    """Sample and event counts returned by a wait."""
    sample_count: int
    event_count: int


# =============================================================================
# Client Interface
# =============================================================================

class BufferClient(ABC):
    """
    Abstract client of a sample/event buffer.

    Implementations are used by a single worker thread; they need not be
    safe for concurrent use of one client instance.
    """

    @abstractmethod
    def connect(self, host: str, port: int) -> None:
        """
        Open the connection.

        Raises:
            TransportError: If the buffer cannot be reached
        """
        pass

    @abstractmethod
    def get_header(self) -> Header:
        """Current stream header."""
        pass

    @abstractmethod
    def wait_for_samples(self, target_sample_count: int, timeout_ms: int) -> SamplesEventsCount:
        """
        Block until at least target_sample_count samples exist, new events
        arrive or timeout_ms elapses, whichever comes first.

        Returns:
            The counts at the time the wait ended
        """
        pass

    @abstractmethod
    def get_sample_block(self, first: int, last: int) -> NDArray[np.float64]:
        """Samples first..last inclusive, shape (last - first + 1, channels)."""
        pass

    @abstractmethod
    def get_events(self, first: int, last: int) -> List[BufferEvent]:
        """Events first..last inclusive, in stream order."""
        pass

    @abstractmethod
    def put_event(self, event: BufferEvent) -> None:
        """Append an event to the event stream."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection. Safe to call when not connected."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass


# =============================================================================
# In-Memory Buffer
# =============================================================================

class SimulatedBuffer(BufferClient):
    """
    In-memory buffer acting as both the data source and the client.

    Producers (tests, the demo's generator thread) call append_samples(),
    put_event() and restart(); the classifier talks to it through the
    BufferClient interface. A condition variable wakes waiting readers
    whenever samples or events are added.

    Failure Injection:
        connect_failures: number of initial connect() calls that fail
        fail_next(operation, count): make the next `count` calls of a
            client operation (e.g. "get_sample_block") raise TransportError

    Example:
        >>> buf = SimulatedBuffer(n_channels=4, sample_rate=100)
        >>> buf.append_samples(np.random.randn(50, 4))
        >>> buf.connect("localhost", 1972)
        >>> buf.get_sample_block(0, 9).shape
        (10, 4)
    """

    def __init__(
        self,
        n_channels: int,
        sample_rate: float,
        channel_labels: Optional[List[str]] = None,
        connect_failures: int = 0
    ) -> None:
        """
        Args:
            n_channels: Number of channels
            sample_rate: Sampling rate (Hz)
            channel_labels: Optional channel labels
            connect_failures: Number of connect() calls that fail before
                the first success
        """
        self._template = Header(n_channels, sample_rate, list(channel_labels or []))
        self._condition = threading.Condition()
        self._samples = np.zeros((0, n_channels))
        self._events: List[BufferEvent] = []
        self._connected = False
        self._connect_failures = connect_failures
        self._failures: Dict[str, int] = {}

        logger.debug(f"SimulatedBuffer: {n_channels} channels @ {sample_rate} Hz")

    # =========================================================================
    # Producer Side
    # =========================================================================

    def append_samples(self, block: ArrayLike) -> int:
        """
        Append samples (samples x channels).

        Returns:
            Total sample count after the append
        """
        block = np.atleast_2d(np.asarray(block, dtype=np.float64))
        if block.shape[1] != self._template.channel_count:
            raise ValueError(
                f"Expected {self._template.channel_count} channels, got {block.shape[1]}"
            )
        with self._condition:
            self._samples = np.concatenate([self._samples, block], axis=0)
            self._condition.notify_all()
            return self._samples.shape[0]

    def restart(self) -> None:
        """Drop all samples and events, as when a new recording starts."""
        with self._condition:
            self._samples = np.zeros((0, self._template.channel_count))
            self._events = []
            self._condition.notify_all()
        logger.info("SimulatedBuffer restarted")

    def fail_next(self, operation: str, count: int = 1) -> None:
        """Make the next `count` calls of a client operation fail."""
        if not hasattr(BufferClient, operation):
            raise ValueError(f"Unknown buffer operation: {operation}")
        with self._condition:
            self._failures[operation] = self._failures.get(operation, 0) + count

    @property
    def sample_count(self) -> int:
        with self._condition:
            return self._samples.shape[0]

    @property
    def events(self) -> List[BufferEvent]:
        """Snapshot of the event stream."""
        with self._condition:
            return list(self._events)

    # =========================================================================
    # Client Side
    # =========================================================================

    def connect(self, host: str, port: int) -> None:
        with self._condition:
            if self._connect_failures > 0:
                self._connect_failures -= 1
                raise TransportError(f"Connection to {host}:{port} refused")
            self._maybe_fail("connect")
            self._connected = True

    def get_header(self) -> Header:
        with self._condition:
            self._check("get_header")
            return Header(
                channel_count=self._template.channel_count,
                sample_rate=self._template.sample_rate,
                channel_labels=list(self._template.channel_labels),
                sample_count=self._samples.shape[0],
                event_count=len(self._events),
            )

    def wait_for_samples(self, target_sample_count: int, timeout_ms: int) -> SamplesEventsCount:
        with self._condition:
            self._check("wait_for_samples")
            known_events = len(self._events)
            known_samples = self._samples.shape[0]
            self._condition.wait_for(
                lambda: (
                    self._samples.shape[0] >= target_sample_count
                    or self._samples.shape[0] < known_samples
                    or len(self._events) != known_events
                    or not self._connected
                ),
                timeout=timeout_ms / 1000.0,
            )
            self._check("wait_for_samples")
            return SamplesEventsCount(self._samples.shape[0], len(self._events))

    def get_sample_block(self, first: int, last: int) -> NDArray[np.float64]:
        with self._condition:
            self._check("get_sample_block")
            if not 0 <= first <= last < self._samples.shape[0]:
                raise TransportError(
                    f"Sample range [{first}, {last}] outside [0, {self._samples.shape[0] - 1}]"
                )
            return self._samples[first:last + 1].copy()

    def get_events(self, first: int, last: int) -> List[BufferEvent]:
        with self._condition:
            self._check("get_events")
            if not 0 <= first <= last < len(self._events):
                raise TransportError(
                    f"Event range [{first}, {last}] outside [0, {len(self._events) - 1}]"
                )
            return list(self._events[first:last + 1])

    def put_event(self, event: BufferEvent) -> None:
        with self._condition:
            self._maybe_fail("put_event")
            self._events.append(event)
            self._condition.notify_all()

    def disconnect(self) -> None:
        with self._condition:
            self._connected = False
            self._condition.notify_all()

    @property
    def is_connected(self) -> bool:
        with self._condition:
            return self._connected

    # =========================================================================
    # Internal
    # =========================================================================

    def _check(self, operation: str) -> None:
        """Raise for an injected failure or a closed connection (lock held)."""
        self._maybe_fail(operation)
        if not self._connected:
            raise TransportError(f"{operation}: not connected")

    def _maybe_fail(self, operation: str) -> None:
        remaining = self._failures.get(operation, 0)
        if remaining > 0:
            self._failures[operation] = remaining - 1
            raise TransportError(f"{operation}: injected failure")
