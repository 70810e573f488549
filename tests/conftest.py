"""
Pytest Configuration and Fixtures
==================================

Shared test configuration and fixtures for all test modules.
Handles path setup for importing the package from src/.

Author: Online BCI Project Team
License: MIT
"""

import logging
import sys
from pathlib import Path

# Add src directory to path for imports
project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

import numpy as np
import pytest


# =============================================================================
# Global Fixtures
# =============================================================================

@pytest.fixture
def rng():
    """Seeded random generator for reproducibility."""
    return np.random.default_rng(42)


@pytest.fixture
def a_matrix():
    """Small non-symmetric 2x2 matrix used across numeric tests."""
    from online_bci import DenseMatrix
    return DenseMatrix([[1.0, 2.0], [5.0, 4.0]])


@pytest.fixture
def b_matrix():
    """3x3 matrix with known statistics and eigenvalues."""
    from online_bci import DenseMatrix
    return DenseMatrix([[0.5, 0.4, 0.2], [0.3, 0.2, 0.2], [0.2, 0.2, 0.7]])


@pytest.fixture
def test_logger():
    """Logger handed to components that accept one."""
    log = logging.getLogger("online_bci.tests")
    log.setLevel(logging.DEBUG)
    return log


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Add custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
