"""
Test Suite for Model Module
===========================

Tests for hyperparameter ranges and the model families.
"""

import dataclasses

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tabtune.errors import ConfigOutOfRange
from tabtune.model import (
    HyperParameter, RandomForestModel, GradientBoostingModel, build_model
)


@pytest.fixture
def regression_data():
    rng = np.random.RandomState(42)
    X = pd.DataFrame(rng.randn(120, 4), columns=['a', 'b', 'c', 'd'])
    y = 3 * X['a'].to_numpy() - 2 * X['b'].to_numpy() + rng.randn(120) * 0.1
    return X, y


class TestHyperParameter:
    """Tests for validation and discretization."""

    def test_validate_integer(self):
        param = HyperParameter('ensemble_size', 1, 5000)

        assert param.validate(100) == 100
        assert param.validate(100.0) == 100
        assert isinstance(param.validate(np.int64(7)), int)

    @pytest.mark.parametrize("value", [0, 5001, 2.5, 'ten', None, True, float('nan')])
    def test_validate_rejects(self, value):
        with pytest.raises(ConfigOutOfRange):
            HyperParameter('ensemble_size', 1, 5000).validate(value)

    def test_linear_levels(self):
        param = HyperParameter('ensemble_size', 1, 5000)

        assert param.discretize(3, 100, 1000) == [100, 550, 1000]

    def test_log_levels(self):
        param = HyperParameter('learning_rate', 1e-4, 1.0, integer=False, log_scale=True)

        assert param.discretize(3, 0.001, 0.1) == pytest.approx([0.001, 0.01, 0.1])

    @pytest.mark.parametrize("model_class", [RandomForestModel, GradientBoostingModel])
    def test_ensemble_size_levels_are_log_spaced(self, model_class):
        assert model_class.parameter('ensemble_size').discretize(3) == [1, 71, 5000]

    def test_narrow_integer_range_deduplicates(self):
        param = HyperParameter('min_leaf_size', 1, 1000)

        assert param.discretize(5, 1, 2) == [1, 2]

    def test_single_level(self):
        assert HyperParameter('tree_depth', 1, 15).discretize(1) == [1]

    def test_grid_bounds_validated(self):
        with pytest.raises(ConfigOutOfRange):
            HyperParameter('tree_depth', 1, 15).discretize(3, 1, 20)

    def test_invalid_declaration(self):
        with pytest.raises(ValueError):
            HyperParameter('broken', 10, 1)


class TestRandomForestModel:
    """Tests for the random forest family."""

    def test_defaults(self):
        model = RandomForestModel()

        assert model.hyperparameters == {
            'feature_subset_size': None, 'ensemble_size': 500, 'min_leaf_size': 5
        }

    def test_configure_returns_new_model(self):
        model = RandomForestModel(ensemble_size=10)
        other = model.configure(ensemble_size=20)

        assert model.hyperparameters['ensemble_size'] == 10
        assert other.hyperparameters['ensemble_size'] == 20
        assert other.random_state == model.random_state

    def test_hyperparameters_read_only(self):
        model = RandomForestModel(ensemble_size=10)

        with pytest.raises(TypeError):
            model.hyperparameters['ensemble_size'] = 20
        with pytest.raises(AttributeError):
            model.hyperparameters = {'ensemble_size': 20}
        assert model.hyperparameters['ensemble_size'] == 10

    def test_out_of_range_rejected(self):
        with pytest.raises(ConfigOutOfRange):
            RandomForestModel(ensemble_size=0)

    def test_unknown_hyperparameter(self):
        with pytest.raises(ValueError, match="Unknown hyperparameter"):
            RandomForestModel(learning_rate=0.1)

    def test_fit_predict(self, regression_data):
        X, y = regression_data
        model = RandomForestModel(ensemble_size=20, min_leaf_size=2)
        fitted = model.fit(X, y)
        predictions = model.predict(fitted, X)

        assert predictions.shape == (len(y),)
        assert fitted.feature_names == ('a', 'b', 'c', 'd')
        assert fitted.training_info['n_samples'] == 120

    def test_fitted_model_immutable(self, regression_data):
        X, y = regression_data
        fitted = RandomForestModel(ensemble_size=5).fit(X, y)

        with pytest.raises(dataclasses.FrozenInstanceError):
            fitted.family = 'gradient_boosting'
        with pytest.raises(TypeError):
            fitted.hyperparameters['ensemble_size'] = 50
        with pytest.raises(TypeError):
            fitted.training_info['n_samples'] = 0

    def test_same_seed_same_predictions(self, regression_data):
        X, y = regression_data
        first = RandomForestModel(ensemble_size=10).fit(X, y).predict(X)
        second = RandomForestModel(ensemble_size=10).fit(X, y).predict(X)

        np.testing.assert_array_equal(first, second)

    def test_feature_subset_clamped(self, regression_data):
        X, y = regression_data
        model = RandomForestModel(ensemble_size=5, feature_subset_size=50)
        fitted = model.fit(X, y)

        assert fitted.estimator.max_features == 4

    def test_feature_importances_sorted(self, regression_data):
        X, y = regression_data
        importances = RandomForestModel(ensemble_size=20).fit(X, y).feature_importances()

        assert list(importances.index[:2]) == ['a', 'b']
        assert importances.is_monotonic_decreasing

    def test_wrong_feature_count(self, regression_data):
        X, y = regression_data
        fitted = RandomForestModel(ensemble_size=5).fit(X, y)

        with pytest.raises(ValueError, match="Expected 4 features"):
            fitted.predict(X.to_numpy()[:, :3])


class TestGradientBoostingModel:
    """Tests for the gradient boosting family."""

    def test_fit_predict(self, regression_data):
        X, y = regression_data
        model = GradientBoostingModel(ensemble_size=30, min_leaf_size=5, tree_depth=2)
        fitted = model.fit(X, y)

        assert model.predict(fitted, X).shape == (len(y),)
        assert fitted.estimator.max_depth == 2

    def test_learning_rate_range(self):
        with pytest.raises(ConfigOutOfRange):
            GradientBoostingModel(learning_rate=2.0)

    def test_family_mismatch(self, regression_data):
        X, y = regression_data
        fitted = RandomForestModel(ensemble_size=5).fit(X, y)

        with pytest.raises(ValueError, match="random_forest"):
            GradientBoostingModel().predict(fitted, X)


class TestBuildModel:
    """Tests for the family registry."""

    def test_builds_registered_family(self):
        model = build_model('gradient_boosting', tree_depth=4)

        assert isinstance(model, GradientBoostingModel)
        assert model.hyperparameters['tree_depth'] == 4

    def test_unknown_family(self):
        with pytest.raises(ValueError, match="Unknown model family"):
            build_model('svm')


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
