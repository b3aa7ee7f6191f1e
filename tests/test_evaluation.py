"""
Test Suite for Evaluation Module
================================

Tests for metric computation and persistence.
"""

import json

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tabtune.errors import ShapeMismatch
from tabtune.evaluation import METRICS, get_metric, score, save_metrics


class TestScore:
    """Tests for the score function."""

    @pytest.fixture
    def truth(self):
        return np.array([1.0, 2.0, 3.0, 4.0, 5.0])

    @pytest.fixture
    def predictions(self):
        return np.array([1.5, 2.0, 2.5, 4.0, 6.0])

    def test_closed_form_values(self, predictions, truth):
        # residuals 0.5, 0, -0.5, 0, 1 -> SSR 1.5, SST 10
        metrics = score(predictions, truth)

        assert metrics['rmse'] == pytest.approx(np.sqrt(0.3))
        assert metrics['mae'] == pytest.approx(0.4)
        assert metrics['rsq'] == pytest.approx(0.85)

    def test_default_metric_order(self, predictions, truth):
        assert list(score(predictions, truth)) == ['rmse', 'mae', 'rsq']

    def test_perfect_predictions(self, truth):
        metrics = score(truth, truth)

        assert metrics['rmse'] == 0.0
        assert metrics['mae'] == 0.0
        assert metrics['rsq'] == 1.0

    def test_mean_prediction_has_zero_rsq(self, truth):
        metrics = score(np.full(5, truth.mean()), truth, ['rsq'])

        assert metrics == {'rsq': pytest.approx(0.0)}

    def test_subset_of_metrics(self, predictions, truth):
        assert list(score(predictions, truth, ['mae'])) == ['mae']

    def test_length_mismatch(self, truth):
        with pytest.raises(ShapeMismatch):
            score(np.array([1.0, 2.0]), truth)

    def test_empty_input(self):
        with pytest.raises(ValueError):
            score(np.array([]), np.array([]))

    def test_unknown_metric(self, predictions, truth):
        with pytest.raises(ValueError, match="Unknown metric"):
            score(predictions, truth, ['mape'])


class TestMetricRegistry:
    """Tests for metric directions."""

    def test_error_metrics_minimized(self):
        assert get_metric('rmse').minimize
        assert get_metric('mae').minimize

    def test_rsq_maximized(self):
        assert not get_metric('rsq').minimize

    def test_registry_names(self):
        assert set(METRICS) == {'rmse', 'mae', 'rsq'}


class TestSaveMetrics:
    """Tests for metrics persistence."""

    def test_writes_json(self, tmp_path):
        path = tmp_path / "reports" / "metrics.json"
        written = save_metrics({'rmse': 1.25, 'mae': 0.5}, str(path))

        assert Path(written).exists()
        with open(written) as f:
            assert json.load(f) == {'rmse': 1.25, 'mae': 0.5}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
