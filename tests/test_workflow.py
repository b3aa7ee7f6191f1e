"""
Test Suite for Workflow Module
==============================

Tests for fitting recipes and models together and the final fit.
"""

import dataclasses

import joblib
import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tabtune.data_loader import Dataset
from tabtune.errors import NotFittedError
from tabtune.model import RandomForestModel
from tabtune.preprocessing import build_recipe
from tabtune.splitting import split
from tabtune.workflow import Workflow, FittedWorkflow, last_fit


def make_dataset(n_samples=160, seed=11):
    rng = np.random.RandomState(seed)
    size = rng.uniform(50, 250, n_samples)
    rooms = rng.randint(1, 6, n_samples).astype(float)
    district = np.array(['centre', 'suburb', 'rural'])[rng.randint(0, 3, n_samples)]
    bump = pd.Series(district).map({'centre': 40.0, 'suburb': 10.0, 'rural': 0.0}).to_numpy()
    return Dataset(pd.DataFrame({
        'size': size,
        'rooms': rooms,
        'district': district,
        'price': 2.0 * size + 15.0 * rooms + bump + rng.randn(n_samples) * 5
    }), target='price')


@pytest.fixture
def dataset():
    return make_dataset()


@pytest.fixture
def workflow():
    return Workflow(build_recipe({}), RandomForestModel(ensemble_size=25, min_leaf_size=2))


class TestWorkflow:
    """Tests for Workflow.fit and FittedWorkflow."""

    def test_fit_predict(self, workflow, dataset):
        fitted = workflow.fit(dataset)
        predictions = fitted.predict(dataset)

        assert predictions.shape == (len(dataset),)
        assert np.corrcoef(predictions, dataset.target_values)[0, 1] > 0.9

    def test_recipe_fit_on_training_rows_only(self, workflow, dataset):
        data_split = split(dataset, 'price', seed=0)
        fitted = workflow.fit(data_split.train)
        normalize = fitted.recipe.summary()[1]

        assert fitted.recipe.n_training_rows == len(data_split.train)
        assert normalize['means']['size'] == pytest.approx(data_split.train.column('size').mean())

    def test_finalize_does_not_change_template(self, workflow):
        final = workflow.finalize({'ensemble_size': 10})

        assert workflow.model.hyperparameters['ensemble_size'] == 25
        assert final.model.hyperparameters['ensemble_size'] == 10
        assert final.recipe is workflow.recipe

    def test_fitted_hyperparameters(self, workflow, dataset):
        fitted = workflow.finalize({'min_leaf_size': 3}).fit(dataset)

        assert fitted.hyperparameters['min_leaf_size'] == 3

    def test_fit_rejects_prepared_data(self, workflow, dataset):
        prepared = workflow.fit(dataset).prepare(dataset)
        with pytest.raises(TypeError):
            workflow.fit(prepared)

    def test_save_and_load(self, workflow, dataset, tmp_path):
        fitted = workflow.fit(dataset)
        path = tmp_path / "models" / "workflow.joblib"
        fitted.save(str(path))
        loaded = FittedWorkflow.load(str(path))

        np.testing.assert_array_almost_equal(loaded.predict(dataset), fitted.predict(dataset))
        assert loaded.recipe.output_columns == fitted.recipe.output_columns
        assert loaded.hyperparameters == fitted.hyperparameters
        assert loaded.fitted_model.training_info['n_samples'] == len(dataset)

    def test_fitted_workflow_immutable(self, workflow, dataset):
        fitted = workflow.fit(dataset)

        with pytest.raises(dataclasses.FrozenInstanceError):
            fitted.fitted_model.family = 'gradient_boosting'
        with pytest.raises(TypeError):
            fitted.fitted_model.hyperparameters['ensemble_size'] = 1
        with pytest.raises(TypeError):
            fitted.model.hyperparameters['ensemble_size'] = 1
        assert fitted.predict(dataset).shape == (len(dataset),)

    def test_load_rejects_other_objects(self, tmp_path):
        path = tmp_path / "other.joblib"
        joblib.dump({'not': 'a workflow'}, path)

        with pytest.raises(TypeError):
            FittedWorkflow.load(str(path))

    def test_load_before_save(self, tmp_path):
        with pytest.raises(NotFittedError):
            FittedWorkflow.load(str(tmp_path / "missing.joblib"))


class TestLastFit:
    """Tests for the final fit and test-set evaluation."""

    def test_scores_test_split(self, workflow, dataset):
        data_split = split(dataset, 'price', seed=0)
        result = last_fit(workflow, data_split)

        assert set(result.metrics) == {'rmse', 'mae', 'rsq'}
        assert len(result.predictions) == len(data_split.test)
        np.testing.assert_array_equal(result.truth, data_split.test.target_values)
        assert result.metrics['rsq'] > 0.7

    def test_model_trained_on_training_rows(self, workflow, dataset):
        data_split = split(dataset, 'price', seed=0)
        result = last_fit(workflow, data_split, metrics=['mae'])

        assert result.workflow.fitted_model.training_info['n_samples'] == len(data_split.train)
        assert list(result.metrics) == ['mae']


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
