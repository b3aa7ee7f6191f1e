"""
Data Splitting Module
=====================

Stratified train/test splitting and stratified k-fold resampling.

Numeric strata columns are binned into quantile groups (deciles by default)
and every bin is sampled independently, so the distribution of the strata
column is preserved in each partition.

Functions:
    - make_strata: Bin a column into stratum labels
    - split: Stratified train/test split
    - fold: Stratified k-fold partition of the training set
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import StratifiedKFold

from .data_loader import Dataset, is_numeric_column
from .errors import InvalidFraction, InsufficientRows, UnknownColumn

logger = logging.getLogger(__name__)

DEFAULT_STRATA_BINS = 10


def _frozen(rows: np.ndarray) -> np.ndarray:
    rows = np.asarray(rows, dtype=int)
    rows.setflags(write=False)
    return rows


@dataclass(frozen=True)
class Split:
    """A train/test partition of a Dataset's rows."""

    train: Dataset
    test: Dataset
    train_rows: np.ndarray
    test_rows: np.ndarray

    @property
    def test_fraction(self) -> float:
        return len(self.test_rows) / (len(self.train_rows) + len(self.test_rows))


@dataclass(frozen=True)
class Fold:
    """
    One cross-validation fold.

    ``analysis_rows`` are the rows a model is fit on, ``assessment_rows`` the
    held-out rows it is scored on. Both are positions into the FoldSet data.
    """

    fold_id: int
    analysis_rows: np.ndarray
    assessment_rows: np.ndarray


@dataclass(frozen=True)
class FoldSet:
    """Ordered, disjoint stratified folds over a training Dataset."""

    data: Dataset
    folds: Tuple[Fold, ...]

    def analysis(self, fold: Fold) -> Dataset:
        return self.data.subset(fold.analysis_rows)

    def assessment(self, fold: Fold) -> Dataset:
        return self.data.subset(fold.assessment_rows)

    def __iter__(self) -> Iterator[Fold]:
        return iter(self.folds)

    def __len__(self) -> int:
        return len(self.folds)

    def __getitem__(self, index: int) -> Fold:
        return self.folds[index]


def make_strata(values: pd.Series, n_bins: int = DEFAULT_STRATA_BINS) -> np.ndarray:
    """
    Convert a column into integer stratum labels.

    Numeric columns are cut at their quantiles into ``n_bins`` groups; tied
    quantile edges collapse into a single bin. Categorical columns use one
    stratum per level, with missing values pooled into their own stratum.

    Args:
        values: Column to stratify on
        n_bins: Number of quantile bins for numeric columns

    Returns:
        Integer label per row
    """
    if n_bins < 1:
        raise ValueError(f"n_bins must be at least 1, got {n_bins}")

    if is_numeric_column(values):
        if values.isnull().any():
            raise ValueError(
                f"Strata column '{values.name}' has {int(values.isnull().sum())} missing values"
            )
        if values.nunique() <= 1 or n_bins == 1:
            return np.zeros(len(values), dtype=int)
        labels = pd.qcut(values, q=n_bins, labels=False, duplicates="drop")
        return np.asarray(labels, dtype=int)

    codes, _ = pd.factorize(values, sort=True)
    return np.asarray(codes, dtype=int)


def _strata_for(dataset: Dataset, strata_column: Optional[str], n_bins: int) -> np.ndarray:
    if strata_column is None:
        return np.zeros(len(dataset), dtype=int)
    if strata_column not in dataset.columns:
        raise UnknownColumn(f"Strata column '{strata_column}' not found in dataset")
    return make_strata(dataset.column(strata_column), n_bins)


def split(
    dataset: Dataset,
    strata_column: Optional[str],
    test_fraction: float = 0.25,
    seed: Optional[int] = None,
    n_bins: int = DEFAULT_STRATA_BINS
) -> Split:
    """
    Split a dataset into train and test partitions, stratified by a column.

    ``floor(test_fraction * n + 0.5)`` rows are drawn from each stratum bin
    independently. Passing ``strata_column=None`` treats the whole dataset
    as one stratum.

    Args:
        dataset: Dataset to split
        strata_column: Column whose distribution is preserved (usually the target)
        test_fraction: Fraction of rows assigned to the test partition
        seed: Random seed; identical seeds give identical partitions
        n_bins: Number of quantile bins for a numeric strata column

    Returns:
        Split holding the train and test Datasets and their row positions

    Raises:
        InvalidFraction: If test_fraction is not in (0, 1)
        InsufficientRows: If either partition would be empty
    """
    if not 0.0 < test_fraction < 1.0:
        raise InvalidFraction(f"test_fraction must be in (0, 1), got {test_fraction}")

    target_missing = int(np.isnan(dataset.target_values).sum())
    if target_missing:
        raise ValueError(f"Target '{dataset.target}' has {target_missing} missing values")

    n_rows = len(dataset)
    strata = _strata_for(dataset, strata_column, n_bins)
    rng = np.random.default_rng(seed)

    test_parts = []
    for label in np.unique(strata):
        members = np.flatnonzero(strata == label)
        n_test = int(np.floor(test_fraction * len(members) + 0.5))
        if n_test:
            test_parts.append(rng.choice(members, size=n_test, replace=False))

    test_rows = np.sort(np.concatenate(test_parts)) if test_parts else np.array([], dtype=int)
    train_rows = np.setdiff1d(np.arange(n_rows), test_rows)

    if len(test_rows) == 0 or len(train_rows) == 0:
        raise InsufficientRows(
            f"Splitting {n_rows} rows with test_fraction={test_fraction} leaves an empty partition"
        )

    logger.info(
        f"Train/Test split: {len(train_rows)} train rows, {len(test_rows)} test rows "
        f"({len(np.unique(strata))} strata on '{strata_column}')"
    )

    return Split(
        train=dataset.subset(train_rows),
        test=dataset.subset(test_rows),
        train_rows=_frozen(train_rows),
        test_rows=_frozen(test_rows)
    )


def fold(
    train: Dataset,
    strata_column: Optional[str],
    k: int = 10,
    seed: Optional[int] = None,
    n_bins: int = DEFAULT_STRATA_BINS
) -> FoldSet:
    """
    Partition a training dataset into k stratified cross-validation folds.

    Args:
        train: Training Dataset (never the test partition)
        strata_column: Column whose distribution is preserved in every fold
        k: Number of folds
        seed: Random seed for shuffling within strata
        n_bins: Number of quantile bins for a numeric strata column

    Returns:
        FoldSet with k folds in order

    Raises:
        InsufficientRows: If any stratum bin has fewer than k rows
    """
    if k < 2:
        raise ValueError(f"k must be at least 2, got {k}")

    strata = _strata_for(train, strata_column, n_bins)
    labels, counts = np.unique(strata, return_counts=True)
    small = {int(label): int(count) for label, count in zip(labels, counts) if count < k}
    if small:
        raise InsufficientRows(
            f"Stratum bins {small} on '{strata_column}' have fewer rows than k={k}"
        )

    splitter = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
    folds = tuple(
        Fold(
            fold_id=fold_id,
            analysis_rows=_frozen(np.sort(analysis_idx)),
            assessment_rows=_frozen(np.sort(assessment_idx))
        )
        for fold_id, (analysis_idx, assessment_idx) in enumerate(
            splitter.split(np.zeros((len(train), 1)), strata), start=1
        )
    )

    logger.info(
        f"Created {k} stratified folds over {len(train)} rows "
        f"(assessment sizes: {[len(f.assessment_rows) for f in folds]})"
    )

    return FoldSet(data=train, folds=folds)
