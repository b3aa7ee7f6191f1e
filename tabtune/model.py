"""
Model Training Module
=====================

Regression model families with declared hyperparameter ranges.

Each family wraps an opaque scikit-learn estimator behind the same small
capability set:

    - configure: new model with validated hyperparameters
    - fit: train on a feature matrix and target, returning a FittedModel
    - predict: predictions from a FittedModel

Families:
    - random_forest: RandomForestRegressor
    - gradient_boosting: GradientBoostingRegressor
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, Union

import numpy as np
import pandas as pd
from sklearn.base import RegressorMixin
from sklearn.ensemble import GradientBoostingRegressor, RandomForestRegressor

from .errors import ConfigOutOfRange

logger = logging.getLogger(__name__)

ArrayLike = Union[np.ndarray, pd.DataFrame]


@dataclass(frozen=True)
class HyperParameter:
    """
    A tunable hyperparameter and its valid closed range.

    Args:
        name: Hyperparameter name as used in configurations
        lower: Smallest valid value
        upper: Largest valid value
        integer: Whether values must be whole numbers
        log_scale: Whether grids should space values logarithmically
    """

    name: str
    lower: float
    upper: float
    integer: bool = True
    log_scale: bool = False

    def __post_init__(self):
        if self.lower > self.upper:
            raise ValueError(f"{self.name}: lower bound {self.lower} exceeds upper bound {self.upper}")
        if self.log_scale and self.lower <= 0:
            raise ValueError(f"{self.name}: log-scaled ranges need a positive lower bound")

    def validate(self, value: Any) -> Union[int, float]:
        """Return the value coerced to the parameter's type, or raise ConfigOutOfRange."""
        if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
            raise ConfigOutOfRange(f"{self.name}={value!r} is not numeric")
        if not np.isfinite(value) or not self.lower <= value <= self.upper:
            raise ConfigOutOfRange(
                f"{self.name}={value} outside declared range [{self.lower}, {self.upper}]"
            )
        if self.integer:
            if float(value) != round(float(value)):
                raise ConfigOutOfRange(f"{self.name}={value} must be a whole number")
            return int(round(float(value)))
        return float(value)

    def discretize(
        self,
        levels: int,
        lower: Optional[float] = None,
        upper: Optional[float] = None
    ) -> List[Union[int, float]]:
        """
        Evenly spaced (log-spaced for log-scaled parameters) values between bounds.

        Integer parameters are rounded and de-duplicated, so fewer than
        ``levels`` values may come back for narrow ranges.
        """
        if levels < 1:
            raise ValueError(f"{self.name}: levels must be at least 1, got {levels}")
        lower = self.validate(self.lower if lower is None else lower)
        upper = self.validate(self.upper if upper is None else upper)
        if lower > upper:
            raise ValueError(f"{self.name}: grid lower bound {lower} exceeds upper bound {upper}")

        if levels == 1:
            raw = np.array([lower], dtype=float)
        elif self.log_scale:
            raw = np.geomspace(lower, upper, levels)
        else:
            raw = np.linspace(lower, upper, levels)

        values: List[Union[int, float]] = []
        for v in raw:
            v = min(max(float(v), lower), upper)
            coerced = self.validate(round(v) if self.integer else v)
            if coerced not in values:
                values.append(coerced)
        return values


@dataclass(frozen=True)
class FittedModel:
    """
    A trained estimator plus the metadata recorded while training it.

    Hyperparameters and training info are read-only views.
    """

    estimator: RegressorMixin
    family: str
    feature_names: Tuple[str, ...]
    hyperparameters: Mapping[str, Any]
    training_info: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'feature_names', tuple(self.feature_names))
        object.__setattr__(self, 'hyperparameters', MappingProxyType(dict(self.hyperparameters)))
        object.__setattr__(self, 'training_info', MappingProxyType(dict(self.training_info)))

    # mappingproxy cannot be pickled
    def __getstate__(self) -> Dict[str, Any]:
        state = dict(self.__dict__)
        state['hyperparameters'] = dict(self.hyperparameters)
        state['training_info'] = dict(self.training_info)
        return state

    def __setstate__(self, state: Dict[str, Any]):
        for name, value in state.items():
            object.__setattr__(self, name, value)
        self.__post_init__()

    def predict(self, X: ArrayLike) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        if X.ndim != 2 or X.shape[1] != len(self.feature_names):
            raise ValueError(
                f"Expected {len(self.feature_names)} features, but got shape {X.shape}"
            )
        return np.asarray(self.estimator.predict(X), dtype=float)

    def feature_importances(self) -> pd.Series:
        """Impurity-based importances, sorted from most to least important."""
        return pd.Series(
            self.estimator.feature_importances_,
            index=list(self.feature_names),
            name='importance'
        ).sort_values(ascending=False)


class RegressionModel:
    """
    Base class for model families.

    Subclasses declare ``family``, ``parameters`` and ``defaults`` and build
    their scikit-learn estimator in ``_create_estimator``.
    """

    family: str = ""
    parameters: Tuple[HyperParameter, ...] = ()
    defaults: Dict[str, Any] = {}

    def __init__(self, random_state: Optional[int] = 42, n_jobs: int = 1, **hyperparameters):
        """
        Initialize the model with hyperparameters.

        Args:
            random_state: Random seed for reproducibility
            n_jobs: Parallel jobs used inside the estimator
            **hyperparameters: Values for the declared hyperparameters; unset
                ones take the family defaults
        """
        self.random_state = random_state
        self.n_jobs = n_jobs
        self._hyperparameters = self._validate({**self.defaults, **hyperparameters})

    @property
    def hyperparameters(self) -> Mapping[str, Any]:
        return MappingProxyType(self._hyperparameters)

    @classmethod
    def parameter(cls, name: str) -> HyperParameter:
        for param in cls.parameters:
            if param.name == name:
                return param
        raise ValueError(
            f"Unknown hyperparameter '{name}' for {cls.family}. "
            f"Declared: {[p.name for p in cls.parameters]}"
        )

    def _validate(self, values: Dict[str, Any]) -> Dict[str, Any]:
        validated = {}
        for name, value in values.items():
            param = self.parameter(name)
            validated[name] = None if value is None else param.validate(value)
        return validated

    def configure(self, **hyperparameters) -> 'RegressionModel':
        """Return a new model of the same family with some hyperparameters replaced."""
        return type(self)(
            random_state=self.random_state,
            n_jobs=self.n_jobs,
            **{**self.hyperparameters, **hyperparameters}
        )

    def _feature_subset(self, n_features: int) -> Optional[int]:
        size = self.hyperparameters.get('feature_subset_size')
        if size is not None and size > n_features:
            logger.warning(
                f"feature_subset_size={size} exceeds the {n_features} available features; "
                f"using {n_features}"
            )
            return n_features
        return size

    def _create_estimator(self, n_features: int) -> RegressorMixin:
        raise NotImplementedError

    def fit(
        self,
        X: ArrayLike,
        y: np.ndarray,
        feature_names: Optional[List[str]] = None
    ) -> FittedModel:
        """
        Train the model on the provided data.

        Args:
            X: Feature matrix of shape (n_samples, n_features)
            y: Target array of shape (n_samples,)
            feature_names: Column names; taken from X when it is a DataFrame

        Returns:
            FittedModel
        """
        if feature_names is None:
            feature_names = list(X.columns) if isinstance(X, pd.DataFrame) else [
                f"x{i}" for i in range(np.shape(X)[1])
            ]
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float).ravel()
        if X.shape[0] != y.shape[0]:
            raise ValueError(f"X and y length mismatch: {X.shape[0]} vs {y.shape[0]}")

        start_time = datetime.now()
        estimator = self._create_estimator(X.shape[1])
        logger.debug(f"Training {self.family} on X={X.shape} with {dict(self.hyperparameters)}")
        estimator.fit(X, y)
        end_time = datetime.now()

        return FittedModel(
            estimator=estimator,
            family=self.family,
            feature_names=tuple(feature_names),
            hyperparameters=dict(self.hyperparameters),
            training_info={
                'training_duration_seconds': (end_time - start_time).total_seconds(),
                'n_samples': int(X.shape[0]),
                'n_features': int(X.shape[1]),
                'trained_at': end_time.isoformat()
            }
        )

    def predict(self, fitted: FittedModel, X: ArrayLike) -> np.ndarray:
        """Predictions of a fitted model of this family."""
        if fitted.family != self.family:
            raise ValueError(f"Model fitted as {fitted.family}, cannot predict as {self.family}")
        return fitted.predict(X)

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v}" for k, v in self.hyperparameters.items())
        return f"{type(self).__name__}({params})"


class RandomForestModel(RegressionModel):
    """Random forest regression (scikit-learn RandomForestRegressor)."""

    family = "random_forest"
    parameters = (
        HyperParameter("feature_subset_size", 1, 1000),
        HyperParameter("ensemble_size", 1, 5000, log_scale=True),
        HyperParameter("min_leaf_size", 1, 1000),
    )
    defaults = {
        'feature_subset_size': None,
        'ensemble_size': 500,
        'min_leaf_size': 5
    }

    def _create_estimator(self, n_features: int) -> RandomForestRegressor:
        subset = self._feature_subset(n_features)
        return RandomForestRegressor(
            n_estimators=self.hyperparameters['ensemble_size'],
            max_features=1.0 if subset is None else subset,
            min_samples_leaf=self.hyperparameters['min_leaf_size'],
            random_state=self.random_state,
            n_jobs=self.n_jobs
        )


class GradientBoostingModel(RegressionModel):
    """Gradient-boosted trees (scikit-learn GradientBoostingRegressor)."""

    family = "gradient_boosting"
    parameters = (
        HyperParameter("feature_subset_size", 1, 1000),
        HyperParameter("ensemble_size", 1, 5000, log_scale=True),
        HyperParameter("min_leaf_size", 1, 1000),
        HyperParameter("learning_rate", 1e-4, 1.0, integer=False, log_scale=True),
        HyperParameter("tree_depth", 1, 15),
    )
    defaults = {
        'feature_subset_size': None,
        'ensemble_size': 100,
        'min_leaf_size': 20,
        'learning_rate': 0.1,
        'tree_depth': 3
    }

    def _create_estimator(self, n_features: int) -> GradientBoostingRegressor:
        subset = self._feature_subset(n_features)
        return GradientBoostingRegressor(
            n_estimators=self.hyperparameters['ensemble_size'],
            max_features=subset,
            min_samples_leaf=self.hyperparameters['min_leaf_size'],
            learning_rate=self.hyperparameters['learning_rate'],
            max_depth=self.hyperparameters['tree_depth'],
            random_state=self.random_state
        )


MODEL_FAMILIES: Dict[str, Type[RegressionModel]] = {
    RandomForestModel.family: RandomForestModel,
    GradientBoostingModel.family: GradientBoostingModel,
}


def build_model(family: str, **kwargs) -> RegressionModel:
    """
    Create a model of a registered family.

    Args:
        family: Key of MODEL_FAMILIES
        **kwargs: random_state, n_jobs and hyperparameter values

    Returns:
        Configured RegressionModel
    """
    if family not in MODEL_FAMILIES:
        raise ValueError(f"Unknown model family: {family}. Choose from: {sorted(MODEL_FAMILIES)}")
    return MODEL_FAMILIES[family](**kwargs)


def print_model_summary(fitted: FittedModel) -> None:
    """
    Print a summary of a trained model.

    Args:
        fitted: Trained model
    """
    print("\n" + "=" * 50)
    print("MODEL SUMMARY")
    print("=" * 50)
    print(f"Model family: {fitted.family}")
    print(f"Number of input features: {len(fitted.feature_names)}")
    print("\nHyperparameters:")
    for name, value in fitted.hyperparameters.items():
        print(f"  - {name}: {value}")

    if fitted.training_info:
        print("\nTraining Info:")
        print(f"  - Duration: {fitted.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {fitted.training_info.get('n_samples', 'N/A')}")

    print("\nTop features:")
    for name, value in fitted.feature_importances().head(10).items():
        print(f"  - {name}: {value:.4f}")
    print("=" * 50 + "\n")
