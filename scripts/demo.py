#!/usr/bin/env python3
"""
Online Classifier Demo
======================

Runs the continuous classifier against a simulated buffer:
1. A producer thread streams synthetic EEG in real time, alternating
   between rest and a 10 Hz (mu rhythm) burst every few seconds
2. The continuous classifier epochs the stream, extracts Welch
   amplitudes and publishes smoothed predictions
3. After the requested duration the end event stops the loop

Usage:
    python scripts/demo.py
    python scripts/demo.py --duration 30          # Run for 30 seconds
    python scripts/demo.py --config online.yaml   # Use a saved configuration
    python scripts/demo.py --save-config online.yaml

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from pathlib import Path

# Add src directory to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

import numpy as np

from online_bci import (
    BufferEvent,
    Classifier,
    ClassifierConfig,
    ContinuousClassifier,
    ContinuousClassifierConfig,
    Header,
    SimulatedBuffer,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SAMPLE_RATE = 128.0
N_CHANNELS = 4
WELCH_WIDTH = 64
MU_FREQ = 10.0


def default_config() -> ContinuousClassifierConfig:
    """One-second epochs, 50% overlap, a classifier weighting the 10 Hz bin."""
    bin_width = SAMPLE_RATE / WELCH_WIDTH
    freq_idx = [int(round(MU_FREQ / bin_width))]

    # Class 0 ("rest") vs class 1 ("mu burst") on the mu amplitude of every channel
    weights = np.zeros((N_CHANNELS, 2))
    weights[:, 1] = 1.0
    weights[:, 0] = -1.0

    classifier = ClassifierConfig(
        weights=weights,
        bias=[0.5, -0.5],
        freq_idx=freq_idx,
        sample_rate=SAMPLE_RATE,
        welch_width=WELCH_WIDTH,
        spatial_filter="none",
        bad_trial_threshold=50.0,
        decision_function="softmax",
    )
    return ContinuousClassifierConfig(
        header=Header(N_CHANNELS, SAMPLE_RATE),
        trial_length=int(SAMPLE_RATE),
        overlap=0.5,
        timeout_ms=500,
        prediction_filter=0.5,
        classifiers=[classifier],
    )


def stream_samples(
    buffer: SimulatedBuffer,
    duration: float,
    stop: threading.Event,
    seed: int = 0
) -> None:
    """
    Append synthetic samples in real time.

    Args:
        buffer: Destination buffer
        duration: Seconds of data to produce
        stop: Set to abort early
        seed: Random seed
    """
    rng = np.random.default_rng(seed)
    block = int(SAMPLE_RATE / 10)
    n_blocks = int(duration * 10)
    t0 = time.monotonic()

    for i in range(n_blocks):
        if stop.is_set():
            break
        t = (i * block + np.arange(block)) / SAMPLE_RATE
        burst = (int(t[0]) // 3) % 2 == 1
        data = rng.standard_normal((block, N_CHANNELS))
        if burst:
            data += 3.0 * np.sin(2 * np.pi * MU_FREQ * t)[:, np.newaxis]
        buffer.append_samples(data)

        # Pace to real time
        delay = t0 + (i + 1) / 10.0 - time.monotonic()
        if delay > 0:
            time.sleep(delay)


def run_demo(config: ContinuousClassifierConfig, duration: float) -> None:
    """
    Run the online classifier demonstration.

    Args:
        config: Loop configuration
        duration: Demo duration in seconds
    """
    print("\n" + "=" * 60)
    print("ONLINE CLASSIFIER DEMO")
    print("=" * 60)
    print(f"   Channels: {N_CHANNELS} @ {SAMPLE_RATE} Hz")
    print(f"   Epoch: {config.trial_length} samples, step {config.step}")
    print(f"   Classifiers: {len(config.classifiers)}")

    buffer = SimulatedBuffer(N_CHANNELS, SAMPLE_RATE)
    classifiers = [Classifier(c) for c in config.classifiers]
    loop = ContinuousClassifier(config, classifiers, buffer, logger=logging.getLogger("online_bci.demo"))

    stop = threading.Event()
    producer = threading.Thread(
        target=stream_samples, args=(buffer, duration, stop), name="Producer", daemon=True
    )

    loop.start()
    producer.start()

    try:
        producer.join()
    except KeyboardInterrupt:
        print("\nDemo interrupted by user")
        stop.set()
        producer.join()

    buffer.put_event(BufferEvent(config.end_type, config.end_value, buffer.sample_count))
    loop.join(timeout=10.0)

    predictions = [e for e in buffer.events if e.type == config.prediction_event_type]
    print("-" * 60)
    for event in predictions[-5:]:
        print(f"   sample {event.sample:6d} | dv = {np.round(event.value, 3).tolist()}")

    metrics = loop.metrics
    print("\nStatistics:")
    print(f"   Epochs processed: {metrics.epochs_processed}")
    print(f"   Predictions published: {metrics.predictions_published}")
    print(f"   Rejected trials: {metrics.rejected_trials}")
    print(f"   Transport errors: {metrics.transport_errors}")
    print(f"   Uptime: {metrics.uptime_seconds:.1f}s")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Online Classifier Demonstration")
    parser.add_argument(
        "--duration",
        "-d",
        type=float,
        default=10.0,
        help="Demo duration in seconds (default: 10)",
    )
    parser.add_argument(
        "--config", "-c", type=Path, help="Load the loop configuration from YAML"
    )
    parser.add_argument(
        "--save-config", type=Path, help="Write the default configuration to YAML and exit"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.save_config is not None:
        default_config().to_yaml(args.save_config)
        logger.info(f"Configuration written to {args.save_config}")
        return

    config = ContinuousClassifierConfig.from_yaml(args.config) if args.config else default_config()
    run_demo(config, args.duration)


if __name__ == "__main__":
    main()
