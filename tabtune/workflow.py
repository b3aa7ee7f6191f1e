"""
Workflow Module
===============

Binds a preprocessing Recipe and a RegressionModel into one fit/predict unit.

The recipe inside a workflow is only ever fit by ``Workflow.fit`` on the
training Dataset it is given; predicting applies the frozen recipe and then
the fitted model.

Functions:
    - Workflow.fit: Fit recipe then model on training data
    - FittedWorkflow.predict: Predict for any compatible raw Dataset
    - last_fit: Fit on the training split and evaluate on the test split
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import joblib
import numpy as np

from .data_loader import Dataset
from .errors import NotFittedError
from .evaluation import score
from .model import FittedModel, RegressionModel
from .preprocessing import FittedRecipe, PreparedDataset, Recipe
from .splitting import Split

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FittedWorkflow:
    """A recipe and model fitted together on one training Dataset."""

    recipe: FittedRecipe
    model: RegressionModel
    fitted_model: FittedModel

    @property
    def hyperparameters(self) -> Dict[str, Any]:
        return dict(self.fitted_model.hyperparameters)

    def prepare(self, dataset: Dataset) -> PreparedDataset:
        return self.recipe.apply(dataset)

    def predict(self, dataset: Dataset) -> np.ndarray:
        """
        Predict the target for a raw Dataset.

        Args:
            dataset: Raw Dataset with the columns seen during fit

        Returns:
            Predictions of shape (n_rows,)
        """
        prepared = self.recipe.apply(dataset)
        return self.model.predict(self.fitted_model, prepared.to_numpy())

    def save(self, filepath: str) -> None:
        """
        Save the fitted workflow to disk.

        Args:
            filepath: Path to save the workflow
        """
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, filepath)
        logger.info(f"Workflow saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FittedWorkflow':
        """
        Load a fitted workflow from disk.

        Args:
            filepath: Path to the saved workflow

        Returns:
            Loaded FittedWorkflow instance

        Raises:
            NotFittedError: If no workflow has been saved at filepath
        """
        if not Path(filepath).exists():
            raise NotFittedError(f"No fitted workflow at {filepath}; run the evaluate phase first")
        workflow = joblib.load(filepath)
        if not isinstance(workflow, cls):
            raise TypeError(f"{filepath} does not hold a {cls.__name__}")
        logger.info(f"Workflow loaded from {filepath}")
        return workflow


class Workflow:
    """Unfitted pairing of a Recipe and a model configuration."""

    def __init__(self, recipe: Recipe, model: RegressionModel):
        self.recipe = recipe
        self.model = model

    def finalize(self, hyperparameters: Dict[str, Any]) -> 'Workflow':
        """Return a workflow whose model uses the given hyperparameter values."""
        return Workflow(self.recipe, self.model.configure(**hyperparameters))

    def fit(self, train: Dataset) -> FittedWorkflow:
        """
        Fit the recipe on the training data, then the model on its output.

        Args:
            train: Training Dataset

        Returns:
            FittedWorkflow
        """
        fitted_recipe = self.recipe.fit(train)
        prepared = fitted_recipe.apply(train)
        fitted_model = self.model.fit(
            prepared.to_numpy(),
            prepared.target_values,
            feature_names=prepared.feature_names
        )
        return FittedWorkflow(recipe=fitted_recipe, model=self.model, fitted_model=fitted_model)

    def __repr__(self) -> str:
        return f"Workflow({self.recipe!r}, {self.model!r})"


@dataclass(frozen=True)
class LastFitResult:
    """Final fit on the training split and its evaluation on the test split."""

    workflow: FittedWorkflow
    predictions: np.ndarray
    truth: np.ndarray
    metrics: Dict[str, float]


def last_fit(
    workflow: Workflow,
    split: Split,
    metrics: Optional[Iterable[str]] = None
) -> LastFitResult:
    """
    Fit a finalized workflow on the full training split and score it on the test split.

    Args:
        workflow: Workflow, usually finalized with the tuned configuration
        split: Train/test split
        metrics: Metric names (default: rmse, mae, rsq)

    Returns:
        LastFitResult with the fitted workflow, test predictions and metrics
    """
    logger.info("=" * 60)
    logger.info("FINAL FIT ON TRAINING SPLIT")
    logger.info("=" * 60)
    logger.info(f"Hyperparameters: {dict(workflow.model.hyperparameters)}")

    fitted = workflow.fit(split.train)
    predictions = fitted.predict(split.test)
    truth = split.test.target_values
    test_metrics = score(predictions, truth, metrics)

    logger.info(f"Test metrics over {len(truth)} rows: {test_metrics}")

    return LastFitResult(
        workflow=fitted,
        predictions=predictions,
        truth=truth,
        metrics=test_metrics
    )
