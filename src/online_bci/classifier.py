"""
Epoch Classifier Module
=======================

Maps one multi-channel epoch to a class decision by composing bad
channel/trial rejection, spatial filtering, Welch spectral features and
a linear decision function.

Pipeline:

    epoch (samples x channels)
        → transpose (channels x samples), optional down-sampling
        → bad-channel zeroing / bad-trial rejection
        → spatial filter (CAR / whitening / none)
        → Welch amplitude per sub-window   → (channels, freqs, times)
        → select freq_idx x time_idx, flatten
        → f = Wᵀx + b
        → p = decision_function(f)

Decision Functions:
    IDENTITY:  p = f
    LOGISTIC:  p = 1 / (1 + exp(-f))
    SOFTMAX:   p = exp(f) / Σ exp(f)

Example:
    >>> config = ClassifierConfig(
    ...     weights=np.zeros((n_features, 2)), bias=np.zeros(2),
    ...     freq_idx=[2, 3, 4], start_ms=[0.0], sample_rate=256, welch_width=64)
    >>> result = Classifier(config).apply(epoch)
    >>> result.decision, result.confidence

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray
from scipy import special

from .matrix import ConfigurationError, DenseMatrix, MatrixLike, as_matrix, is_power_of_two, parse_enum
from .outliers import OutlierFeature, compute_feature
from .spatial import SpatialFilter, SpatialFilterType
from .spectral import SpectralEstimator, TaperType, WelchOutputType, n_positive_bins

logger = logging.getLogger(__name__)


# =============================================================================
# Decision Functions
# =============================================================================

class DecisionFunction(Enum):
    """Mapping from raw linear output to class confidence."""
    IDENTITY = auto()
    LOGISTIC = auto()
    SOFTMAX = auto()


def apply_decision_function(
    kind: Union[DecisionFunction, str],
    f: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Class confidences for the raw decision values f."""
    kind = parse_enum(DecisionFunction, kind)
    if kind == DecisionFunction.LOGISTIC:
        return special.expit(f)
    if kind == DecisionFunction.SOFTMAX:
        return special.softmax(f)
    return np.array(f, dtype=np.float64)


# =============================================================================
# Configuration
# =============================================================================

_ENUM_FIELDS = {
    "spatial_filter": SpatialFilterType,
    "taper": TaperType,
    "welch_output": WelchOutputType,
    "decision_function": DecisionFunction,
}


@dataclass(frozen=True, eq=False)
class ClassifierConfig:
    """
    Immutable classifier parameters, built once at startup.

    Attributes:
        weights: Linear weights, shape (n_features, n_classes)
        bias: Bias per class, shape (n_classes,)
        freq_idx: Welch frequency bins used as features
        time_idx: Sub-windows (indices into start_ms) used as features
        start_ms: Sub-window start offsets within the epoch (ms)
        window_ms: Sub-window length (ms); None runs to the end of the epoch
        sample_rate: Sampling rate of the incoming epochs (Hz)
        welch_width: Welch window width in (down-sampled) samples, power of two
        spatial_filter: Spatial filter type
        bad_channel_threshold: Channels whose amplitude exceeds
            median + threshold·std are zeroed; disabled when < 0
        bad_trial_threshold: Epochs whose RMS amplitude exceeds this value
            are rejected; disabled when < 0
        taper: Welch taper type
        welch_output: Spectral output kind (only AMPLITUDE)
        downsample: Block-averaging factor applied along time
        detrend: Linearly detrend each Welch window
        center: Subtract each Welch window's mean
        decision_function: Mapping from raw output to confidence

    Feature Layout:
        Features are flattened from a (channels, len(freq_idx),
        len(time_idx)) array in row-major order, so
        n_features = n_channels · len(freq_idx) · len(time_idx).
    """
    weights: NDArray[np.float64]
    bias: NDArray[np.float64]
    freq_idx: Sequence[int]
    time_idx: Sequence[int] = (0,)
    start_ms: Sequence[float] = (0.0,)
    window_ms: Optional[float] = None
    sample_rate: float = 250.0
    welch_width: int = 64
    spatial_filter: SpatialFilterType = SpatialFilterType.CAR
    bad_channel_threshold: float = -1.0
    bad_trial_threshold: float = -1.0
    taper: TaperType = TaperType.HANNING
    welch_output: WelchOutputType = WelchOutputType.AMPLITUDE
    downsample: int = 1
    detrend: bool = True
    center: bool = False
    decision_function: DecisionFunction = DecisionFunction.IDENTITY

    def __post_init__(self) -> None:
        """Normalize array/enum fields and validate."""
        weights = np.array(self.weights, dtype=np.float64)
        if weights.ndim == 1:
            weights = weights.reshape(-1, 1)
        if weights.ndim != 2:
            raise ConfigurationError(f"weights must be 2D, got {weights.ndim}D")
        bias = np.array(self.bias, dtype=np.float64).ravel()
        if bias.size != weights.shape[1]:
            raise ConfigurationError(
                f"bias length ({bias.size}) must match the number of classes ({weights.shape[1]})"
            )
        object.__setattr__(self, "weights", weights)
        object.__setattr__(self, "bias", bias)

        for name, enum_cls in _ENUM_FIELDS.items():
            object.__setattr__(self, name, parse_enum(enum_cls, getattr(self, name)))

        object.__setattr__(self, "freq_idx", tuple(int(i) for i in self.freq_idx))
        object.__setattr__(self, "time_idx", tuple(int(i) for i in self.time_idx))
        object.__setattr__(self, "start_ms", tuple(float(s) for s in self.start_ms))

        if self.sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be > 0, got {self.sample_rate}")
        if self.downsample < 1:
            raise ConfigurationError(f"downsample must be >= 1, got {self.downsample}")
        if not is_power_of_two(self.welch_width):
            raise ConfigurationError(f"welch_width must be a power of two, got {self.welch_width}")
        if not self.start_ms:
            raise ConfigurationError("start_ms must contain at least one offset")
        if any(s < 0 for s in self.start_ms):
            raise ConfigurationError(f"start_ms must be non-negative, got {self.start_ms}")
        if self.window_ms is not None and self.window_ms <= 0:
            raise ConfigurationError(f"window_ms must be > 0, got {self.window_ms}")
        if not self.freq_idx or not self.time_idx:
            raise ConfigurationError("freq_idx and time_idx must be non-empty")

        n_bins = n_positive_bins(self.welch_width)
        if min(self.freq_idx) < 0 or max(self.freq_idx) >= n_bins:
            raise ConfigurationError(f"freq_idx must lie in [0, {n_bins}), got {self.freq_idx}")
        if min(self.time_idx) < 0 or max(self.time_idx) >= len(self.start_ms):
            raise ConfigurationError(
                f"time_idx must lie in [0, {len(self.start_ms)}), got {self.time_idx}"
            )

    @property
    def n_classes(self) -> int:
        return self.weights.shape[1]

    @property
    def n_features(self) -> int:
        return self.weights.shape[0]

    @property
    def effective_sample_rate(self) -> float:
        """Sampling rate after down-sampling."""
        return self.sample_rate / self.downsample

    def ms_to_samples(self, ms: float) -> int:
        """Convert a duration in ms to (down-sampled) samples."""
        return int(round(ms * self.effective_sample_rate / 1000.0))

    def to_dict(self) -> Dict[str, Any]:
        """Plain-type representation (for YAML)."""
        return {
            "weights": self.weights.tolist(),
            "bias": self.bias.tolist(),
            "freq_idx": list(self.freq_idx),
            "time_idx": list(self.time_idx),
            "start_ms": list(self.start_ms),
            "window_ms": self.window_ms,
            "sample_rate": float(self.sample_rate),
            "welch_width": self.welch_width,
            "spatial_filter": self.spatial_filter.name,
            "bad_channel_threshold": self.bad_channel_threshold,
            "bad_trial_threshold": self.bad_trial_threshold,
            "taper": self.taper.name,
            "welch_output": self.welch_output.name,
            "downsample": self.downsample,
            "detrend": self.detrend,
            "center": self.center,
            "decision_function": self.decision_function.name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassifierConfig":
        """
        Build from a plain mapping.

        A mapping with a ``path`` key loads the .npz file it names
        instead (see ``save``).
        """
        if "path" in data:
            return cls.load(data["path"])
        return cls(**data)

    def save(self, filepath: Union[str, Path]) -> None:
        """Save the classifier parameters to a .npz file."""
        data = self.to_dict()
        window_ms = data.pop("window_ms")
        np.savez(
            filepath,
            weights=self.weights,
            bias=self.bias,
            freq_idx=np.asarray(self.freq_idx, dtype=np.int64),
            time_idx=np.asarray(self.time_idx, dtype=np.int64),
            start_ms=np.asarray(self.start_ms, dtype=np.float64),
            window_ms=np.nan if window_ms is None else window_ms,
            **{k: v for k, v in data.items()
               if k not in ("weights", "bias", "freq_idx", "time_idx", "start_ms")}
        )
        logger.info(f"Classifier saved to {filepath}")

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> "ClassifierConfig":
        """Load classifier parameters saved with ``save``."""
        with np.load(filepath) as data:
            window_ms = float(data["window_ms"])
            config = cls(
                weights=data["weights"],
                bias=data["bias"],
                freq_idx=data["freq_idx"].tolist(),
                time_idx=data["time_idx"].tolist(),
                start_ms=data["start_ms"].tolist(),
                window_ms=None if np.isnan(window_ms) else window_ms,
                sample_rate=float(data["sample_rate"]),
                welch_width=int(data["welch_width"]),
                spatial_filter=str(data["spatial_filter"]),
                bad_channel_threshold=float(data["bad_channel_threshold"]),
                bad_trial_threshold=float(data["bad_trial_threshold"]),
                taper=str(data["taper"]),
                welch_output=str(data["welch_output"]),
                downsample=int(data["downsample"]),
                detrend=bool(data["detrend"]),
                center=bool(data["center"]),
                decision_function=str(data["decision_function"]),
            )
        logger.info(f"Classifier loaded from {filepath}")
        return config


# =============================================================================
# Result
# =============================================================================

@dataclass
class ClassifierResult:
    """
    Output of one classification.

    Attributes:
        decision: Raw linear output f = Wᵀx + b, shape (n_classes,)
        confidence: decision_function(f), shape (n_classes,)
        rejected: True when the epoch failed the bad-trial check
        bad_channels: Boolean mask of channels zeroed as bad
    """
    decision: NDArray[np.float64]
    confidence: NDArray[np.float64]
    rejected: bool = False
    bad_channels: NDArray[np.bool_] = field(default_factory=lambda: np.zeros(0, dtype=bool))


# =============================================================================
# Classifier
# =============================================================================

class Classifier:
    """
    Epoch-to-decision mapping for one classifier configuration.

    The classifier is stateless between calls; apply() may be called
    with epochs of any length as long as every sub-window holds at
    least one Welch window.
    """

    def __init__(self, config: ClassifierConfig) -> None:
        """
        Args:
            config: Classifier parameters
        """
        self.config = config
        self._spatial = SpatialFilter(config.spatial_filter)
        self._spectral = SpectralEstimator(
            width=config.welch_width,
            taper=config.taper,
            detrend=config.detrend,
            center=config.center,
            output=config.welch_output,
        )
        self._starts = [config.ms_to_samples(ms) for ms in config.start_ms]
        self._window = None if config.window_ms is None else config.ms_to_samples(config.window_ms)

        logger.debug(
            f"Classifier: {config.n_features} features -> {config.n_classes} classes, "
            f"spatial={config.spatial_filter.name}, starts={self._starts} samples, "
            f"window={self._window}, welch_width={config.welch_width}"
        )

    def n_features_for(self, n_channels: int) -> int:
        """Feature vector length for epochs with n_channels channels."""
        return n_channels * len(self.config.freq_idx) * len(self.config.time_idx)

    def apply(self, epoch: MatrixLike) -> ClassifierResult:
        """
        Classify one epoch.

        Args:
            epoch: Samples x channels

        Returns:
            ClassifierResult with raw decision and confidence

        Raises:
            ConfigurationError: If the feature count does not match the
                weights or a sub-window is too short for the Welch width
        """
        cfg = self.config
        data = as_matrix(epoch).transpose()
        if cfg.downsample > 1:
            data = self._downsample(data, cfg.downsample)

        n_channels = data.rows
        expected = self.n_features_for(n_channels)
        if expected != cfg.n_features:
            raise ConfigurationError(
                f"Epoch with {n_channels} channels gives {expected} features, "
                f"weights expect {cfg.n_features}"
            )

        bad_channels = self._detect_bad_channels(data)
        good = np.flatnonzero(~bad_channels)

        if self._is_bad_trial(data, good):
            zeros = np.zeros(cfg.n_classes)
            logger.debug("Epoch rejected as bad trial")
            return ClassifierResult(
                decision=zeros,
                confidence=apply_decision_function(cfg.decision_function, zeros),
                rejected=True,
                bad_channels=bad_channels,
            )

        data = self._spatial_filter(data, good)
        features = self._spectral_features(data)

        x = DenseMatrix(features.ravel())
        f = DenseMatrix(cfg.weights).transpose().matmul(x).add(DenseMatrix(cfg.bias))
        decision = f.get_column(0)
        return ClassifierResult(
            decision=decision,
            confidence=apply_decision_function(cfg.decision_function, decision),
            bad_channels=bad_channels,
        )

    # =========================================================================
    # Stages
    # =========================================================================

    @staticmethod
    def _downsample(data: DenseMatrix, factor: int) -> DenseMatrix:
        """Block-average every `factor` consecutive samples (channels x samples)."""
        n = (data.cols // factor) * factor
        blocks = data.to_array()[:, :n].reshape(data.rows, n // factor, factor)
        return DenseMatrix(blocks.mean(axis=2))

    def _detect_bad_channels(self, data: DenseMatrix) -> NDArray[np.bool_]:
        threshold = self.config.bad_channel_threshold
        bad = np.zeros(data.rows, dtype=bool)
        if threshold < 0 or data.rows < 2:
            return bad

        amplitude = compute_feature(data, 1, OutlierFeature.VAR)
        limit = np.median(amplitude) + threshold * np.std(amplitude, ddof=1)
        bad = amplitude > limit
        if np.any(bad):
            logger.debug(f"Bad channels: {np.flatnonzero(bad).tolist()}")
        return bad

    def _is_bad_trial(self, data: DenseMatrix, good: NDArray[np.int64]) -> bool:
        threshold = self.config.bad_trial_threshold
        if threshold < 0:
            return False
        if good.size == 0:
            return True
        variance = data.select(0, good).variance(1)
        power = float(np.sqrt(variance.mean().item()))
        return power > threshold

    def _spatial_filter(self, data: DenseMatrix, good: NDArray[np.int64]) -> DenseMatrix:
        """Filter the good channels; bad channels stay zero."""
        out = np.zeros(data.shape)
        if good.size:
            out[good] = self._spatial.apply(data.select(0, good)).to_array()
        return DenseMatrix(out)

    def _spectral_features(self, data: DenseMatrix) -> NDArray[np.float64]:
        """Selected (channels, freqs, times) Welch amplitudes."""
        cfg = self.config
        spectra = []
        for start in self._starts:
            length = data.cols - start if self._window is None else self._window
            spectrum = self._spectral.estimate(data, axis=1, offset=start, length=length)
            spectra.append(spectrum.to_array())

        stacked = np.stack(spectra, axis=2)
        return stacked[:, list(cfg.freq_idx), :][:, :, list(cfg.time_idx)]
