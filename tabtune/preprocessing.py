"""
Data Preprocessing Module
=========================

Declarative preprocessing recipes fit on training data only.

A Recipe is an ordered list of steps. Fitting it on a training Dataset
learns every step's parameters once and freezes them in a FittedRecipe;
applying the FittedRecipe to any other Dataset reuses those parameters
verbatim, so validation and test rows never influence preprocessing.

Steps:
    - step_nzv: Drop near-zero-variance predictors
    - step_normalize: Center and scale numeric predictors
    - step_dummy: One-hot encode categorical predictors
    - step_corr: Drop one member of each highly correlated predictor pair
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .data_loader import Dataset, is_numeric_column
from .errors import UnknownColumn, ZeroVariance

logger = logging.getLogger(__name__)

DEFAULT_NZV_THRESHOLD = 0.95
DEFAULT_CORR_THRESHOLD = 0.9


# ============================================================================
# Selectors
# ============================================================================

@dataclass(frozen=True)
class Selector:
    """Named predicate choosing columns from the current frame (never the target)."""

    name: str
    choose: Callable[[pd.DataFrame, str], List[str]] = field(compare=False)

    def resolve(self, frame: pd.DataFrame, target: str) -> List[str]:
        columns = [c for c in self.choose(frame, target) if c != target]
        if not columns:
            raise UnknownColumn(f"Selector {self.name} matched no column")
        return columns

    def __repr__(self) -> str:
        return self.name


def _all_predictors(frame: pd.DataFrame, target: str) -> List[str]:
    return [c for c in frame.columns if c != target]


def _numeric_predictors(frame: pd.DataFrame, target: str) -> List[str]:
    return [c for c in _all_predictors(frame, target) if is_numeric_column(frame[c])]


def _nominal_predictors(frame: pd.DataFrame, target: str) -> List[str]:
    return [c for c in _all_predictors(frame, target) if not is_numeric_column(frame[c])]


def all_predictors() -> Selector:
    return Selector("all_predictors()", _all_predictors)


def all_numeric_predictors() -> Selector:
    return Selector("all_numeric_predictors()", _numeric_predictors)


def all_nominal_predictors() -> Selector:
    return Selector("all_nominal_predictors()", _nominal_predictors)


class _NamedColumns:
    # Module-level callable so fitted recipes holding it stay picklable.
    def __init__(self, names: Tuple[str, ...]):
        self.names = names

    def __call__(self, frame: pd.DataFrame, target: str) -> List[str]:
        missing = [n for n in self.names if n not in frame.columns]
        if missing:
            logger.warning(f"Columns not present, skipped: {missing}")
        return [n for n in self.names if n in frame.columns]


def has_columns(*names: str) -> Selector:
    """Select columns by name; names absent from the data are skipped."""
    return Selector(f"has_columns({', '.join(names)})", _NamedColumns(tuple(names)))


# ============================================================================
# Prepared data
# ============================================================================

class PreparedDataset:
    """
    Output of applying a FittedRecipe: model-ready features plus the target.

    Deliberately not a Dataset, so a recipe can neither be fit on nor applied
    to data that has already been through preprocessing.
    """

    def __init__(self, features: pd.DataFrame, target_values: np.ndarray, target: str):
        if len(features) != len(target_values):
            raise ValueError(
                f"Feature rows ({len(features)}) and target rows ({len(target_values)}) differ"
            )
        self._features = features.copy()
        self._target_values = np.array(target_values, dtype=float, copy=True)
        self._target = target

    @property
    def features(self) -> pd.DataFrame:
        return self._features.copy()

    @property
    def feature_names(self) -> List[str]:
        return list(self._features.columns)

    @property
    def target(self) -> str:
        return self._target

    @property
    def target_values(self) -> np.ndarray:
        return self._target_values.copy()

    def to_numpy(self) -> np.ndarray:
        return self._features.to_numpy(dtype=float, copy=True)

    def __len__(self) -> int:
        return len(self._features)

    def __repr__(self) -> str:
        return f"PreparedDataset(rows={len(self)}, features={len(self.feature_names)})"


# ============================================================================
# Steps
# ============================================================================

def _present(frame: pd.DataFrame, columns: Tuple[str, ...], step: str) -> List[str]:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        logger.warning(f"{step}: columns seen during fit are missing, skipped: {missing}")
    return [c for c in columns if c in frame.columns]


@dataclass(frozen=True)
class FittedNearZeroVariance:
    dropped: Tuple[str, ...]

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        return frame.drop(columns=_present(frame, self.dropped, "step_nzv"))

    def params(self) -> Dict[str, Any]:
        return {'step': 'nzv', 'dropped': list(self.dropped)}


@dataclass(frozen=True)
class NearZeroVarianceStep:
    """Drop predictors whose most frequent value covers more than ``threshold`` of rows."""

    selector: Selector
    threshold: float = DEFAULT_NZV_THRESHOLD

    def __post_init__(self):
        if not 0.0 < self.threshold <= 1.0:
            raise ValueError(f"nzv threshold must be in (0, 1], got {self.threshold}")

    def fit(self, frame: pd.DataFrame, columns: List[str]) -> FittedNearZeroVariance:
        dropped = []
        for col in columns:
            values = frame[col]
            if len(values) == 0 or values.nunique(dropna=False) <= 1:
                dropped.append(col)
                continue
            top_fraction = values.value_counts(dropna=False, normalize=True).iloc[0]
            if top_fraction > self.threshold:
                dropped.append(col)

        if dropped:
            logger.info(f"step_nzv: dropping {len(dropped)} near-zero-variance columns: {dropped}")
        return FittedNearZeroVariance(dropped=tuple(dropped))


@dataclass(frozen=True)
class FittedNormalize:
    columns: Tuple[str, ...]
    means: Tuple[float, ...]
    stds: Tuple[float, ...]

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        frame = frame.copy()
        stats = dict(zip(self.columns, zip(self.means, self.stds)))
        for col in _present(frame, self.columns, "step_normalize"):
            mean, std = stats[col]
            frame[col] = (frame[col].astype(float) - mean) / std
        return frame

    def params(self) -> Dict[str, Any]:
        return {
            'step': 'normalize',
            'means': dict(zip(self.columns, self.means)),
            'stds': dict(zip(self.columns, self.stds))
        }


@dataclass(frozen=True)
class NormalizeStep:
    """Center numeric predictors on the training mean and scale by the training std."""

    selector: Selector

    def fit(self, frame: pd.DataFrame, columns: List[str]) -> FittedNormalize:
        numeric = [c for c in columns if is_numeric_column(frame[c])]
        skipped = sorted(set(columns) - set(numeric))
        if skipped:
            logger.warning(f"step_normalize: skipping non-numeric columns {skipped}")

        means, stds = [], []
        for col in numeric:
            values = frame[col].astype(float)
            std = float(values.std(ddof=1))
            if not np.isfinite(std) or std == 0.0:
                raise ZeroVariance(
                    f"Column '{col}' has zero standard deviation in the training data; "
                    f"drop it first (step_nzv) or exclude it from step_normalize"
                )
            means.append(float(values.mean()))
            stds.append(std)

        logger.info(f"step_normalize: learned mean/std for {len(numeric)} columns")
        return FittedNormalize(columns=tuple(numeric), means=tuple(means), stds=tuple(stds))


@dataclass(frozen=True)
class FittedDummy:
    columns: Tuple[str, ...]
    levels: Tuple[Tuple[Any, ...], ...]
    one_hot: bool = True

    def indicator_names(self) -> List[str]:
        names = []
        for col, levels in zip(self.columns, self.levels):
            kept = levels if self.one_hot else levels[1:]
            names.extend(f"{col}_{level}" for level in kept)
        return names

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        vocabulary = dict(zip(self.columns, self.levels))
        present = _present(frame, self.columns, "step_dummy")
        indicators = {}
        for col in present:
            values = frame[col]
            levels = vocabulary[col]
            unseen = int((values.notna() & ~values.isin(levels)).sum())
            if unseen:
                logger.info(
                    f"step_dummy: {unseen} rows of '{col}' hold levels unseen during fit; "
                    f"encoded as all-zero indicators"
                )
            kept = levels if self.one_hot else levels[1:]
            for level in kept:
                indicators[f"{col}_{level}"] = (values == level).astype(float).to_numpy()

        frame = frame.drop(columns=present)
        if indicators:
            frame = pd.concat([frame, pd.DataFrame(indicators, index=frame.index)], axis=1)
        return frame

    def params(self) -> Dict[str, Any]:
        return {
            'step': 'dummy',
            'levels': {col: list(levels) for col, levels in zip(self.columns, self.levels)},
            'one_hot': self.one_hot
        }


@dataclass(frozen=True)
class DummyStep:
    """
    Replace categorical predictors by indicator columns.

    One indicator per level observed in training (``one_hot=True``), or all
    levels but the first as reference coding (``one_hot=False``). Levels not
    seen during fit map to an all-zero indicator row.
    """

    selector: Selector
    one_hot: bool = True

    def fit(self, frame: pd.DataFrame, columns: List[str]) -> FittedDummy:
        nominal = [c for c in columns if not is_numeric_column(frame[c])]
        skipped = sorted(set(columns) - set(nominal))
        if skipped:
            logger.warning(f"step_dummy: skipping numeric columns {skipped}")

        levels = tuple(tuple(sorted(frame[col].dropna().unique(), key=str)) for col in nominal)
        fitted = FittedDummy(columns=tuple(nominal), levels=levels, one_hot=self.one_hot)

        clashes = set(fitted.indicator_names()) & (set(frame.columns) - set(nominal))
        if clashes:
            raise ValueError(f"step_dummy: indicator names clash with existing columns {sorted(clashes)}")

        logger.info(
            f"step_dummy: encoding {len(nominal)} columns into "
            f"{len(fitted.indicator_names())} indicators"
        )
        return fitted


@dataclass(frozen=True)
class FittedCorrelation:
    dropped: Tuple[str, ...]

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        return frame.drop(columns=_present(frame, self.dropped, "step_corr"))

    def params(self) -> Dict[str, Any]:
        return {'step': 'corr', 'dropped': list(self.dropped)}


def find_correlated(corr: np.ndarray, threshold: float) -> List[int]:
    """
    Greedy removal of highly correlated columns.

    While some remaining pair has absolute correlation above ``threshold``,
    take the most correlated pair and remove the member with the larger mean
    absolute correlation to the other remaining columns (the later column on
    ties). Afterwards no remaining pair exceeds the threshold.

    Args:
        corr: Square absolute correlation matrix
        threshold: Absolute correlation cutoff

    Returns:
        Positions of removed columns, in removal order
    """
    corr = np.nan_to_num(np.abs(np.asarray(corr, dtype=float)), nan=0.0)
    np.fill_diagonal(corr, 0.0)

    remaining = list(range(corr.shape[0]))
    removed = []
    while len(remaining) > 1:
        sub = corr[np.ix_(remaining, remaining)]
        if sub.max() <= threshold:
            break
        i, j = sorted(np.unravel_index(np.argmax(sub), sub.shape))
        n_other = len(remaining) - 1
        drop = i if sub[i].sum() / n_other > sub[j].sum() / n_other else j
        removed.append(remaining.pop(drop))
    return removed


@dataclass(frozen=True)
class CorrelationStep:
    """Drop predictors until no pair has training |correlation| above ``threshold``."""

    selector: Selector
    threshold: float = DEFAULT_CORR_THRESHOLD

    def __post_init__(self):
        if not 0.0 < self.threshold <= 1.0:
            raise ValueError(f"corr threshold must be in (0, 1], got {self.threshold}")

    def fit(self, frame: pd.DataFrame, columns: List[str]) -> FittedCorrelation:
        numeric = [c for c in columns if is_numeric_column(frame[c])]
        if len(numeric) < 2:
            return FittedCorrelation(dropped=())

        corr = frame[numeric].astype(float).corr().to_numpy()
        dropped = [numeric[i] for i in find_correlated(corr, self.threshold)]

        if dropped:
            logger.info(
                f"step_corr: dropping {len(dropped)} columns with |r| > {self.threshold}: {dropped}"
            )
        return FittedCorrelation(dropped=tuple(dropped))


# ============================================================================
# Recipe
# ============================================================================

@dataclass(frozen=True)
class FittedRecipe:
    """
    Frozen preprocessing: step parameters learned from one training Dataset.

    ``apply`` only ever reads these parameters.
    """

    steps: Tuple[Any, ...]
    target: str
    input_columns: Tuple[str, ...]
    output_columns: Tuple[str, ...]
    n_training_rows: int

    def apply(self, dataset: Dataset) -> PreparedDataset:
        """
        Transform a raw Dataset with the frozen step parameters.

        Args:
            dataset: Raw Dataset (training, validation, test or new rows)

        Returns:
            PreparedDataset with exactly the feature columns produced during fit

        Raises:
            TypeError: If given already prepared data
            UnknownColumn: If a feature produced during fit cannot be produced
        """
        if isinstance(dataset, PreparedDataset) or not isinstance(dataset, Dataset):
            raise TypeError(
                f"FittedRecipe.apply expects a raw Dataset, got {type(dataset).__name__}"
            )
        if dataset.target != self.target:
            raise ValueError(
                f"Recipe was fit with target '{self.target}', dataset has '{dataset.target}'"
            )

        frame = dataset.frame
        for step in self.steps:
            frame = step.apply(frame)

        missing = [c for c in self.output_columns if c not in frame.columns]
        if missing:
            raise UnknownColumn(f"Prepared data lacks features produced during fit: {missing}")
        extra = [c for c in frame.columns if c not in self.output_columns and c != self.target]
        if extra:
            logger.info(f"Ignoring columns unknown to the fitted recipe: {extra}")

        return PreparedDataset(
            features=frame[list(self.output_columns)],
            target_values=dataset.target_values,
            target=self.target
        )

    def summary(self) -> List[Dict[str, Any]]:
        return [step.params() for step in self.steps]


class Recipe:
    """
    Unfitted, declarative preprocessing recipe.

    Built fluently; every ``step_*`` call returns a new Recipe so a recipe
    can be shared between workflows without being changed by either.

    Example:
        recipe = (Recipe()
                  .step_nzv()
                  .step_normalize()
                  .step_dummy()
                  .step_corr(threshold=0.9))
    """

    def __init__(self, steps: Tuple[Any, ...] = ()):
        self.steps = tuple(steps)

    def _add(self, step: Any) -> 'Recipe':
        return Recipe(self.steps + (step,))

    def step_nzv(
        self,
        selector: Optional[Selector] = None,
        threshold: float = DEFAULT_NZV_THRESHOLD
    ) -> 'Recipe':
        return self._add(NearZeroVarianceStep(selector or all_predictors(), threshold))

    def step_normalize(self, selector: Optional[Selector] = None) -> 'Recipe':
        return self._add(NormalizeStep(selector or all_numeric_predictors()))

    def step_dummy(self, selector: Optional[Selector] = None, one_hot: bool = True) -> 'Recipe':
        return self._add(DummyStep(selector or all_nominal_predictors(), one_hot))

    def step_corr(
        self,
        selector: Optional[Selector] = None,
        threshold: float = DEFAULT_CORR_THRESHOLD
    ) -> 'Recipe':
        return self._add(CorrelationStep(selector or all_numeric_predictors(), threshold))

    def fit(self, train: Dataset) -> FittedRecipe:
        """
        Learn every step's parameters from the training Dataset.

        Steps run in declaration order and each sees the output of the
        previous one. A selector matching no column makes its step a no-op.

        Args:
            train: Training Dataset

        Returns:
            FittedRecipe with frozen parameters
        """
        if isinstance(train, PreparedDataset) or not isinstance(train, Dataset):
            raise TypeError(f"Recipe.fit expects a raw Dataset, got {type(train).__name__}")

        frame = train.frame
        target = train.target
        fitted_steps = []

        for step in self.steps:
            try:
                columns = step.selector.resolve(frame, target)
            except UnknownColumn as e:
                logger.warning(f"{type(step).__name__}: {e}; step has no effect")
                columns = []
            fitted = step.fit(frame, columns)
            frame = fitted.apply(frame)
            fitted_steps.append(fitted)

        output_columns = tuple(c for c in frame.columns if c != target)
        logger.info(
            f"Fitted recipe with {len(self.steps)} steps on {len(train)} rows: "
            f"{len(train.predictors)} predictors -> {len(output_columns)} features"
        )

        return FittedRecipe(
            steps=tuple(fitted_steps),
            target=target,
            input_columns=tuple(train.predictors),
            output_columns=output_columns,
            n_training_rows=len(train)
        )

    def __repr__(self) -> str:
        return f"Recipe(steps={[type(s).__name__ for s in self.steps]})"


def build_recipe(config: Dict[str, Any]) -> Recipe:
    """
    Build the standard recipe from the ``recipe`` configuration section.

    Args:
        config: Mapping with optional ``nzv_threshold``, ``corr_threshold``, ``one_hot``

    Returns:
        Recipe: nzv -> normalize -> dummy -> corr
    """
    return (Recipe()
            .step_nzv(threshold=config.get('nzv_threshold', DEFAULT_NZV_THRESHOLD))
            .step_normalize()
            .step_dummy(one_hot=config.get('one_hot', True))
            .step_corr(threshold=config.get('corr_threshold', DEFAULT_CORR_THRESHOLD)))
