"""
Online BCI Classifier
=====================

Continuous classification of a live multi-channel sample stream: epochs
are cut from a buffered source, turned into spectral/spatial features,
classified with a linear model, smoothed over time and published back
to the buffer as prediction events.

Processing Overview:

    Buffer → epochs → SpatialFilter → SpectralEstimator → Classifier → dv → Buffer
                        ↑
                 bad channel / trial rejection (OutlierTrimmer features)

Key Classes:
    - DenseMatrix: Axis-aware 2D container with the numeric primitives
    - SpectralEstimator: Welch amplitude spectra
    - SpatialFilter: Common average reference and whitening
    - OutlierTrimmer: Iterative row/column outlier removal
    - Classifier: Epoch → decision mapping
    - ContinuousClassifier: Online loop over a BufferClient
    - SimulatedBuffer: In-memory buffer for tests and demos

Quick Start:
    >>> from online_bci import (
    ...     Classifier, ClassifierConfig, ContinuousClassifier,
    ...     ContinuousClassifierConfig, SimulatedBuffer)
    >>>
    >>> buffer = SimulatedBuffer(n_channels=4, sample_rate=100)
    >>> loop = ContinuousClassifier(
    ...     ContinuousClassifierConfig(trial_length=64),
    ...     [Classifier(classifier_config)], buffer)
    >>> loop.start()

Author: Online BCI Project Team
License: MIT
"""

# Matrix module
from .matrix import (
    ConfigurationError,
    DenseMatrix,
    EigenResult,
    SVDResult,
    as_matrix,
    index_range,
)

# Spectral module
from .spectral import (
    SpectralEstimator,
    TaperType,
    TransformDirection,
    WelchOutputType,
    fft,
    ifft,
    make_taper,
    welch,
    welch_starts,
)

# Spatial filtering module
from .spatial import (
    SpatialFilter,
    SpatialFilterType,
)

# Outlier module
from .outliers import (
    OutlierFeature,
    OutlierTrimmer,
    remove_outliers,
)

# Classifier module
from .classifier import (
    Classifier,
    ClassifierConfig,
    ClassifierResult,
    DecisionFunction,
)

# Buffer module
from .buffer import (
    BufferClient,
    BufferEvent,
    Header,
    SamplesEventsCount,
    SimulatedBuffer,
    TransportError,
)

# Online loop module
from .continuous import (
    ClassifierState,
    ContinuousClassifier,
    ContinuousClassifierConfig,
    ContinuousMetrics,
)

# Version
__version__ = "0.1.0"

# Public API
__all__ = [
    # Matrix
    "ConfigurationError",
    "DenseMatrix",
    "EigenResult",
    "SVDResult",
    "as_matrix",
    "index_range",
    # Spectral
    "SpectralEstimator",
    "TaperType",
    "TransformDirection",
    "WelchOutputType",
    "fft",
    "ifft",
    "make_taper",
    "welch",
    "welch_starts",
    # Spatial
    "SpatialFilter",
    "SpatialFilterType",
    # Outliers
    "OutlierFeature",
    "OutlierTrimmer",
    "remove_outliers",
    # Classifier
    "Classifier",
    "ClassifierConfig",
    "ClassifierResult",
    "DecisionFunction",
    # Buffer
    "BufferClient",
    "BufferEvent",
    "Header",
    "SamplesEventsCount",
    "SimulatedBuffer",
    "TransportError",
    # Online loop
    "ClassifierState",
    "ContinuousClassifier",
    "ContinuousClassifierConfig",
    "ContinuousMetrics",
]
