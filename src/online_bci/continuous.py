"""
Continuous Classifier Module
============================

Online control loop that turns a live sample stream into a stream of
smoothed classifier predictions.

Loop Flow:

    Buffer ──wait──▶ epochs [start, start+L) ──▶ Classifier(s) ──▶ smoothing
      ▲                                                               │
      └──────────────── prediction event (type, dv, start) ◀──────────┘

State Machine:

    CONNECTING ──header ok──▶ STREAMING ──end event──▶ TERMINATED
        │  ▲                     │  ▲
        └──┘ retry after         └──┘ restart / transport error:
             reconnect delay          iteration abandoned, loop continues

Epoch Scheduling:
    step   = round(trial_length · overlap)
    starts = cursor, cursor + step, ... while start + trial_length <= available
    cursor = last start + step

    With a monotonically growing stream of N samples this yields
    floor((N - trial_length) / step) + 1 epochs in total.

Smoothing (per non-rejected raw classifier decision f):
    dv = dv · prediction_filter + f · (1 - prediction_filter)

    The decision vector and the sample cursor only change after the
    prediction event for that epoch has been published.

Termination:
    The loop ends when an event equal to (end_type, end_value) is seen.
    The buffer connection is always closed on exit.

Example:
    >>> config = ContinuousClassifierConfig.from_yaml("online.yaml")
    >>> loop = ContinuousClassifier(config, classifiers, client)
    >>> loop.start()
    >>> loop.join()

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import yaml
from numpy.typing import NDArray

from .buffer import BufferClient, BufferEvent, Header, TransportError
from .classifier import Classifier, ClassifierConfig
from .matrix import ConfigurationError, index_range

logger = logging.getLogger(__name__)


# =============================================================================
# States
# =============================================================================

class ClassifierState(Enum):
    """Continuous classifier state machine states."""
    IDLE = auto()         # Not started
    CONNECTING = auto()   # Connecting / fetching header
    STREAMING = auto()    # Processing epochs
    TERMINATED = auto()   # End event seen, connection closed


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class ContinuousClassifierConfig:
    """
    Configuration of the online loop.

    Attributes:
        host: Buffer host name
        port: Buffer port
        header: Pre-supplied stream header; fetched from the buffer when None
        end_type: Type of the event that terminates the loop
        end_value: Value of the event that terminates the loop
        prediction_event_type: Type of the published prediction events
        trial_length: Epoch length in samples
        overlap: Step between epochs as a fraction of trial_length, in (0, 1]
        timeout_ms: Maximum wait for new samples per iteration
        prediction_filter: Smoothing coefficient in [0, 1]; 0 disables smoothing
        reconnect_delay_seconds: Delay between connection attempts
        status_interval_s: Interval between status log lines
        classifiers: Classifier parameter sets, applied in order

    Validation:
        - trial_length must be > 0 and round(trial_length · overlap) >= 1
        - timeout_ms must be > 0
        - prediction_filter must lie in [0, 1]
    """
    host: str = "localhost"
    port: int = 1972
    header: Optional[Header] = None
    end_type: str = "stimulus.test"
    end_value: Any = "end"
    prediction_event_type: str = "classifier.prediction"
    trial_length: int = 25
    overlap: float = 0.5
    timeout_ms: int = 1000
    prediction_filter: float = 0.0
    reconnect_delay_seconds: float = 1.0
    status_interval_s: float = 5.0
    classifiers: List[ClassifierConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate configuration parameters after initialization."""
        if self.trial_length <= 0:
            raise ConfigurationError(f"trial_length must be > 0, got {self.trial_length}")
        if not (0.0 < self.overlap <= 1.0):
            raise ConfigurationError(f"overlap must be in (0, 1], got {self.overlap}")
        if self.step < 1:
            raise ConfigurationError(
                f"trial_length * overlap must round to at least one sample, "
                f"got {self.trial_length} * {self.overlap}"
            )
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if not (0.0 <= self.prediction_filter <= 1.0):
            raise ConfigurationError(
                f"prediction_filter must be in [0, 1], got {self.prediction_filter}"
            )
        if self.reconnect_delay_seconds < 0:
            raise ConfigurationError(
                f"reconnect_delay_seconds must be >= 0, got {self.reconnect_delay_seconds}"
            )
        if self.status_interval_s <= 0:
            raise ConfigurationError(
                f"status_interval_s must be > 0, got {self.status_interval_s}"
            )

    @property
    def step(self) -> int:
        """Samples between consecutive epoch starts."""
        return int(round(self.trial_length * self.overlap))

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ContinuousClassifierConfig":
        """
        Load configuration from a YAML file.

        Classifier entries are either inline parameter mappings or
        ``{path: model.npz}`` references to saved classifiers.

        Args:
            path: Path to YAML configuration file

        Returns:
            ContinuousClassifierConfig instance
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        header = data.pop("header", None)
        classifiers = [ClassifierConfig.from_dict(c) for c in data.pop("classifiers", [])]
        return cls(
            header=Header(**header) if header is not None else None,
            classifiers=classifiers,
            **data
        )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """
        Save configuration to a YAML file.

        Args:
            path: Path to save configuration
        """
        data = {
            "host": self.host,
            "port": self.port,
            "end_type": self.end_type,
            "end_value": self.end_value,
            "prediction_event_type": self.prediction_event_type,
            "trial_length": self.trial_length,
            "overlap": self.overlap,
            "timeout_ms": self.timeout_ms,
            "prediction_filter": self.prediction_filter,
            "reconnect_delay_seconds": self.reconnect_delay_seconds,
            "status_interval_s": self.status_interval_s,
            "classifiers": [c.to_dict() for c in self.classifiers],
        }
        if self.header is not None:
            data["header"] = self.header.to_dict()

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


# =============================================================================
# Metrics
# =============================================================================

@dataclass
class ContinuousMetrics:
    """
    Counters for monitoring the online loop.

    All counters cover the lifetime of one run().
    """
    connect_attempts: int = 0
    epochs_processed: int = 0
    predictions_published: int = 0
    rejected_trials: int = 0
    restarts: int = 0
    transport_errors: int = 0
    events_seen: int = 0
    uptime_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "connect_attempts": self.connect_attempts,
            "epochs_processed": self.epochs_processed,
            "predictions_published": self.predictions_published,
            "rejected_trials": self.rejected_trials,
            "restarts": self.restarts,
            "transport_errors": self.transport_errors,
            "events_seen": self.events_seen,
            "uptime_seconds": self.uptime_seconds,
        }


# =============================================================================
# Continuous Classifier
# =============================================================================

class ContinuousClassifier:
    """
    Online loop applying one or more classifiers to a live buffer.

    The instance owns the buffer connection, the sample and event
    cursors and the smoothed decision vector. All of them are touched
    only by the thread executing run(); the public properties return
    snapshots.

    Thread Model:
        - run() executes the loop in the calling thread
        - start() executes run() in a dedicated daemon thread
        - The only cancellation trigger is the configured end event

    Example:
        >>> loop = ContinuousClassifier(config, [Classifier(c) for c in config.classifiers], client)
        >>> loop.start()
        >>> client.put_event(BufferEvent("stimulus.test", "end"))
        >>> loop.join()
        >>> loop.state
        <ClassifierState.TERMINATED: 4>
    """

    def __init__(
        self,
        config: ContinuousClassifierConfig,
        classifiers: Sequence[Classifier],
        client: BufferClient,
        logger: Optional[logging.Logger] = None
    ) -> None:
        """
        Initialize the loop.

        Args:
            config: Loop configuration
            classifiers: Classifiers applied to every epoch, in order
            client: Buffer client; connected and closed by the loop
            logger: Logger for progress messages (module logger if None)

        Raises:
            ConfigurationError: If no classifier is given or their class
                counts differ
        """
        if not classifiers:
            raise ConfigurationError("At least one classifier is required")
        n_classes = {c.config.n_classes for c in classifiers}
        if len(n_classes) != 1:
            raise ConfigurationError(f"Classifiers disagree on the number of classes: {sorted(n_classes)}")

        self.config = config
        self.classifiers = list(classifiers)
        self.client = client
        self.log = logger if logger is not None else logging.getLogger(__name__)

        self._n_classes = n_classes.pop()
        self._state = ClassifierState.IDLE
        self._state_lock = threading.Lock()

        self._header: Optional[Header] = None
        self._sample_cursor = 0
        self._event_cursor = 0
        self._dv: NDArray[np.float64] = np.zeros(self._n_classes)

        self._metrics = ContinuousMetrics()
        self._start_time = 0.0
        self._last_status_time = 0.0

        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

        self.log.info(
            f"ContinuousClassifier initialized: {len(self.classifiers)} classifier(s), "
            f"trial_length={config.trial_length}, step={config.step}, "
            f"prediction_filter={config.prediction_filter}"
        )

    # =========================================================================
    # State and Snapshots
    # =========================================================================

    @property
    def state(self) -> ClassifierState:
        """Current loop state."""
        with self._state_lock:
            return self._state

    def _set_state(self, state: ClassifierState) -> None:
        with self._state_lock:
            old_state = self._state
            self._state = state
        self.log.info(f"ContinuousClassifier state: {old_state.name} → {state.name}")

    @property
    def decision_vector(self) -> NDArray[np.float64]:
        """Copy of the current smoothed decision vector."""
        return self._dv.copy()

    @property
    def cursors(self) -> Tuple[int, int]:
        """(sample cursor, event cursor)."""
        return self._sample_cursor, self._event_cursor

    @property
    def header(self) -> Optional[Header]:
        return self._header

    @property
    def metrics(self) -> ContinuousMetrics:
        """Current metrics."""
        if self._start_time and self.state == ClassifierState.STREAMING:
            self._metrics.uptime_seconds = time.monotonic() - self._start_time
        return self._metrics

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """
        Run the loop in a dedicated daemon thread.

        Raises:
            RuntimeError: If the loop has already been started
        """
        if self._thread is not None or self.state != ClassifierState.IDLE:
            raise RuntimeError(f"Cannot start from state {self.state.name}")

        self._thread = threading.Thread(
            target=self._thread_main,
            name="ContinuousClassifierThread",
            daemon=True
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the loop thread to finish.

        Args:
            timeout: Maximum wait in seconds (None = forever)

        Returns:
            True if the loop has finished

        Raises:
            Exception: The error that ended the loop thread, if any
        """
        if self._thread is None:
            return self.state == ClassifierState.TERMINATED
        self._thread.join(timeout)
        if self._thread.is_alive():
            return False
        if self._error is not None:
            raise self._error
        return True

    def _thread_main(self) -> None:
        try:
            self.run()
        except Exception as e:
            self.log.exception(f"ContinuousClassifier failed: {e}")
            self._error = e

    def run(self) -> None:
        """
        Execute the loop until the end event is observed.

        Raises:
            ConfigurationError: If the stream does not match the classifiers
        """
        if self.state != ClassifierState.IDLE:
            raise RuntimeError(f"Cannot run from state {self.state.name}")

        self._metrics = ContinuousMetrics()
        self._start_time = time.monotonic()
        self._last_status_time = self._start_time

        try:
            self._set_state(ClassifierState.CONNECTING)
            self._connect()
            self._set_state(ClassifierState.STREAMING)

            while self.state == ClassifierState.STREAMING:
                self._iterate()
        finally:
            self._disconnect()
            self._metrics.uptime_seconds = time.monotonic() - self._start_time
            if self.state != ClassifierState.TERMINATED:
                self._set_state(ClassifierState.TERMINATED)
            self.log.info(f"ContinuousClassifier finished: {self._metrics.to_dict()}")

    # =========================================================================
    # CONNECTING
    # =========================================================================

    def _connect(self) -> None:
        """Connect and obtain the header, retrying transport failures forever."""
        cfg = self.config
        header = None
        while header is None:
            self._metrics.connect_attempts += 1
            try:
                self.log.info(f"Connecting to {cfg.host}:{cfg.port}")
                self.client.connect(cfg.host, cfg.port)
                header = cfg.header if cfg.header is not None else self.client.get_header()
            except TransportError as e:
                self.log.warning(
                    f"Connection attempt {self._metrics.connect_attempts} failed: {e}. "
                    f"Retrying in {cfg.reconnect_delay_seconds}s"
                )
                self._disconnect()
                time.sleep(cfg.reconnect_delay_seconds)

        self._check_header(header)
        self._header = header
        self._sample_cursor = header.sample_count
        self._event_cursor = header.event_count
        self._dv = np.zeros(self._n_classes)

        self.log.info(f"#channels....: {header.channel_count}")
        self.log.info(f"#samples.....: {header.sample_count}")
        self.log.info(f"#events......: {header.event_count}")
        self.log.info(f"Sampling Freq: {header.sample_rate}")
        self.log.debug(f"Channel labels: {header.channel_labels}")

    def _check_header(self, header: Header) -> None:
        for i, clf in enumerate(self.classifiers):
            expected = clf.n_features_for(header.channel_count)
            if expected != clf.config.n_features:
                raise ConfigurationError(
                    f"Classifier {i} expects {clf.config.n_features} features but "
                    f"{header.channel_count} channels give {expected}"
                )

    def _disconnect(self) -> None:
        try:
            self.client.disconnect()
        except TransportError as e:
            self.log.warning(f"Error during disconnect: {e}")

    # =========================================================================
    # STREAMING
    # =========================================================================

    def _iterate(self) -> None:
        """One scheduling pass: wait, restart check, epochs, events."""
        cfg = self.config
        try:
            counts = self.client.wait_for_samples(
                self._sample_cursor + cfg.trial_length, cfg.timeout_ms
            )
            if counts.sample_count < self._sample_cursor:
                self._handle_restart(counts.sample_count, counts.event_count)
                return

            self._process_epochs(counts.sample_count)
            self._process_events(counts.event_count)
        except TransportError as e:
            self._metrics.transport_errors += 1
            self.log.warning(f"Transport error, iteration abandoned: {e}")
        finally:
            self._log_status()

    def _handle_restart(self, sample_count: int, event_count: int) -> None:
        self._metrics.restarts += 1
        self.log.warning(
            f"Buffer restart detected: {sample_count} samples < cursor {self._sample_cursor}"
        )
        self._sample_cursor = sample_count
        self._event_cursor = event_count
        self._dv = np.zeros(self._n_classes)

    def _process_epochs(self, available: int) -> None:
        cfg = self.config
        starts = index_range(self._sample_cursor, available - cfg.trial_length + 1, cfg.step)

        for start in starts:
            start = int(start)
            epoch = self.client.get_sample_block(start, start + cfg.trial_length - 1)

            dv = self._dv
            rejected = 0
            for clf in self.classifiers:
                result = clf.apply(epoch)
                if result.rejected:
                    rejected += 1
                    continue
                a = cfg.prediction_filter
                dv = dv * a + result.decision * (1.0 - a)

            # State only changes once the prediction is published
            self.client.put_event(
                BufferEvent(cfg.prediction_event_type, dv.tolist(), start)
            )
            self._dv = dv
            self._metrics.rejected_trials += rejected
            self._metrics.epochs_processed += 1
            self._metrics.predictions_published += 1
            self._sample_cursor = start + cfg.step

    def _process_events(self, event_count: int) -> None:
        if event_count <= self._event_cursor:
            return

        events = self.client.get_events(self._event_cursor, event_count - 1)
        self._metrics.events_seen += len(events)
        for event in events:
            if event.type == self.config.end_type and event.value == self.config.end_value:
                self.log.info(f"End event received at sample {event.sample}")
                self._set_state(ClassifierState.TERMINATED)
                return
        self._event_cursor = event_count

    def _log_status(self) -> None:
        now = time.monotonic()
        if now - self._last_status_time < self.config.status_interval_s:
            return
        self._last_status_time = now
        self.log.info(
            f"{now - self._start_time:.0f}s: {self._sample_cursor} samples, "
            f"{self._metrics.epochs_processed} epochs, dv={np.round(self._dv, 3).tolist()}"
        )
