"""
Unit Tests for the Epoch Classifier
===================================

Tests for configuration validation, feature layout, rejection and the
decision functions.

Author: Online BCI Project Team
License: MIT
"""

import numpy as np
import pytest

from online_bci.classifier import (
    Classifier,
    ClassifierConfig,
    DecisionFunction,
    apply_decision_function,
)
from online_bci.matrix import ConfigurationError, DenseMatrix
from online_bci.spatial import SpatialFilter, SpatialFilterType
from online_bci.spectral import SpectralEstimator, TaperType


# =============================================================================
# Fixtures
# =============================================================================

N_CHANNELS = 3
SAMPLE_RATE = 64.0


def make_config(**overrides):
    """Classifier on 3 channels, 16-point Welch, bins 1-2, one sub-window."""
    params = dict(
        weights=np.zeros((N_CHANNELS * 2, 2)),
        bias=np.array([1.0, -1.0]),
        freq_idx=[1, 2],
        time_idx=[0],
        start_ms=[0.0],
        sample_rate=SAMPLE_RATE,
        welch_width=16,
    )
    params.update(overrides)
    return ClassifierConfig(**params)


@pytest.fixture
def epoch(rng):
    """One second of noise, samples x channels."""
    return rng.standard_normal((64, N_CHANNELS))


# =============================================================================
# Configuration Tests
# =============================================================================

class TestClassifierConfig:
    """Tests for parameter validation and persistence."""

    def test_defaults(self):
        config = make_config()
        assert config.n_classes == 2
        assert config.n_features == 6
        assert config.spatial_filter == SpatialFilterType.CAR
        assert config.taper == TaperType.HANNING
        assert config.decision_function == DecisionFunction.IDENTITY

    def test_enum_names_accepted(self):
        config = make_config(spatial_filter="whiten", taper="blackman", decision_function="softmax")
        assert config.spatial_filter == SpatialFilterType.WHITEN
        assert config.taper == TaperType.BLACKMAN
        assert config.decision_function == DecisionFunction.SOFTMAX

    def test_vector_weights_are_single_class(self):
        config = make_config(weights=np.ones(6), bias=[0.0])
        assert config.weights.shape == (6, 1)

    def test_bias_length_mismatch(self):
        with pytest.raises(ConfigurationError):
            make_config(bias=[0.0, 0.0, 0.0])

    def test_width_not_power_of_two(self):
        with pytest.raises(ConfigurationError):
            make_config(welch_width=12)

    def test_freq_idx_out_of_range(self):
        """16-point Welch has 9 bins."""
        with pytest.raises(ConfigurationError):
            make_config(freq_idx=[9])

    def test_time_idx_out_of_range(self):
        with pytest.raises(ConfigurationError):
            make_config(time_idx=[1])

    def test_invalid_downsample(self):
        with pytest.raises(ConfigurationError):
            make_config(downsample=0)

    def test_ms_to_samples(self):
        config = make_config(start_ms=[0.0, 500.0], downsample=2)
        assert config.effective_sample_rate == 32.0
        assert config.ms_to_samples(500.0) == 16

    def test_save_load(self, tmp_path, rng):
        config = make_config(
            weights=rng.standard_normal((6, 2)),
            window_ms=250.0,
            bad_channel_threshold=3.0,
            decision_function=DecisionFunction.LOGISTIC,
        )
        path = tmp_path / "classifier.npz"
        config.save(path)
        loaded = ClassifierConfig.load(path)

        assert np.array_equal(loaded.weights, config.weights)
        assert np.array_equal(loaded.bias, config.bias)
        assert loaded.freq_idx == config.freq_idx
        assert loaded.window_ms == 250.0
        assert loaded.bad_channel_threshold == 3.0
        assert loaded.decision_function == DecisionFunction.LOGISTIC
        assert loaded.detrend is True

    def test_dict_round_trip(self):
        config = make_config(window_ms=None)
        rebuilt = ClassifierConfig.from_dict(config.to_dict())
        assert rebuilt.to_dict() == config.to_dict()

    def test_from_dict_path(self, tmp_path):
        path = tmp_path / "model.npz"
        make_config().save(path)
        assert ClassifierConfig.from_dict({"path": str(path)}).n_features == 6


# =============================================================================
# Decision Function Tests
# =============================================================================

class TestDecisionFunctions:
    """Tests for raw output to confidence mapping."""

    def test_identity(self):
        f = np.array([1.0, -2.0])
        assert apply_decision_function(DecisionFunction.IDENTITY, f).tolist() == [1.0, -2.0]

    def test_logistic(self):
        p = apply_decision_function("logistic", np.array([0.0, 100.0]))
        assert p.tolist() == pytest.approx([0.5, 1.0])

    def test_softmax(self):
        p = apply_decision_function(DecisionFunction.SOFTMAX, np.array([1.0, 2.0, 3.0]))
        assert p.sum() == pytest.approx(1.0)
        assert np.all(np.diff(p) > 0)


# =============================================================================
# Classifier Tests
# =============================================================================

class TestClassifier:
    """Tests for epoch classification."""

    def test_zero_weights_give_bias(self, epoch):
        result = Classifier(make_config()).apply(epoch)
        assert result.decision.tolist() == [1.0, -1.0]
        assert result.confidence.tolist() == [1.0, -1.0]
        assert not result.rejected
        assert not result.bad_channels.any()

    def test_feature_layout(self, epoch, rng):
        """Features are (channel, freq, time) flattened in row-major order."""
        weights = rng.standard_normal((N_CHANNELS * 2 * 2, 2))
        config = make_config(weights=weights, time_idx=[0, 1], start_ms=[0.0, 500.0])
        result = Classifier(config).apply(epoch)

        data = SpatialFilter.car(N_CHANNELS).matmul(DenseMatrix(epoch.T))
        estimator = SpectralEstimator(16, TaperType.HANNING, detrend=True)
        spectra = [
            estimator.estimate(data, axis=1, offset=0, length=64).to_array(),
            estimator.estimate(data, axis=1, offset=32, length=32).to_array(),
        ]
        features = np.stack(spectra, axis=2)[:, [1, 2], :].ravel()
        expected = weights.T @ features + config.bias

        assert np.allclose(result.decision, expected)

    def test_window_ms_limits_sub_window(self, epoch):
        """A sub-window shorter than the Welch width is a configuration error."""
        classifier = Classifier(make_config(window_ms=125.0))
        with pytest.raises(ConfigurationError):
            classifier.apply(epoch)

    def test_channel_count_mismatch(self, rng):
        with pytest.raises(ConfigurationError):
            Classifier(make_config()).apply(rng.standard_normal((64, N_CHANNELS + 1)))

    def test_non_amplitude_output_rejected_at_construction(self):
        with pytest.raises(ConfigurationError):
            Classifier(make_config(welch_output="power"))

    def test_logistic_confidence(self, epoch):
        config = make_config(bias=[0.0, 0.0], decision_function="logistic")
        result = Classifier(config).apply(epoch)
        assert result.confidence.tolist() == pytest.approx([0.5, 0.5])

    def test_bad_trial_rejected(self, epoch):
        config = make_config(bad_trial_threshold=0.1)
        result = Classifier(config).apply(epoch * 10.0)
        assert result.rejected
        assert result.decision.tolist() == [0.0, 0.0]

    def test_good_trial_kept(self, epoch):
        config = make_config(bad_trial_threshold=100.0)
        assert not Classifier(config).apply(epoch).rejected

    def test_bad_channel_zeroed(self, rng):
        n_channels = 4
        data = rng.standard_normal((64, n_channels))
        data[:, 2] *= 100.0
        weights = np.ones((n_channels * 2, 1))
        config = make_config(weights=weights, bias=[0.0], bad_channel_threshold=1.0)

        result = Classifier(config).apply(data)
        assert result.bad_channels.tolist() == [False, False, True, False]

        # The bad channel contributes nothing to the decision
        louder = data.copy()
        louder[:, 2] *= 3.0
        again = Classifier(config).apply(louder)
        assert again.bad_channels.tolist() == result.bad_channels.tolist()
        assert np.allclose(again.decision, result.decision)

    def test_downsample_block_mean(self):
        data = DenseMatrix([[1.0, 3.0, 5.0, 7.0, 9.0]])
        assert Classifier._downsample(data, 2) == DenseMatrix([[2.0, 6.0]])

    def test_downsampled_epoch(self, rng):
        """Down-sampling by 2 classifies the block-averaged epoch at half the rate."""
        raw = rng.standard_normal((128, N_CHANNELS))
        weights = rng.standard_normal((N_CHANNELS * 2, 2))
        down = make_config(weights=weights, sample_rate=128.0, downsample=2)
        plain = make_config(weights=weights, sample_rate=64.0)

        averaged = raw.reshape(64, 2, N_CHANNELS).mean(axis=1)
        assert np.allclose(
            Classifier(down).apply(raw).decision,
            Classifier(plain).apply(averaged).decision,
        )

    def test_n_features_for(self):
        classifier = Classifier(make_config(time_idx=[0, 1], start_ms=[0.0, 250.0],
                                            weights=np.zeros((12, 2))))
        assert classifier.n_features_for(3) == 12
