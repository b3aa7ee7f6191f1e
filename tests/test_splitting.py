"""
Test Suite for Splitting Module
===============================

Tests for stratified train/test splits and k-fold resampling.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tabtune.data_loader import Dataset
from tabtune.errors import InvalidFraction, InsufficientRows, UnknownColumn
from tabtune.splitting import make_strata, split, fold


def make_dataset(n_samples=200, seed=0):
    rng = np.random.RandomState(seed)
    return Dataset(pd.DataFrame({
        'x': rng.randn(n_samples),
        'group': np.array(['north', 'south', 'east', 'west'])[np.arange(n_samples) % 4],
        'y': rng.exponential(scale=10.0, size=n_samples)
    }), target='y')


class TestMakeStrata:
    """Tests for stratum labelling."""

    def test_numeric_deciles(self):
        values = pd.Series(np.arange(100, dtype=float), name='v')
        labels = make_strata(values, n_bins=10)

        assert sorted(np.unique(labels)) == list(range(10))
        assert all(np.bincount(labels) == 10)

    def test_tied_edges_collapse(self):
        values = pd.Series([0.0] * 80 + list(np.arange(20, dtype=float)), name='v')
        labels = make_strata(values, n_bins=10)

        assert len(np.unique(labels)) < 10

    def test_categorical_one_stratum_per_level(self):
        values = pd.Series(['b', 'a', 'c', 'a', 'b'], name='v')
        labels = make_strata(values)

        np.testing.assert_array_equal(labels, [1, 0, 2, 0, 1])

    def test_missing_numeric_values_rejected(self):
        values = pd.Series([1.0, np.nan, 3.0], name='v')
        with pytest.raises(ValueError, match="missing"):
            make_strata(values)


class TestSplit:
    """Tests for the stratified train/test split."""

    @pytest.fixture
    def dataset(self):
        return make_dataset()

    def test_partitions_are_disjoint_and_cover(self, dataset):
        result = split(dataset, 'y', test_fraction=0.25, seed=1)

        assert set(result.train_rows).isdisjoint(result.test_rows)
        assert sorted(np.concatenate([result.train_rows, result.test_rows])) == list(range(len(dataset)))
        assert len(result.train) == len(result.train_rows)
        assert len(result.test) == len(result.test_rows)

    def test_per_bin_fraction(self, dataset):
        result = split(dataset, 'y', test_fraction=0.25, seed=1)
        strata = make_strata(dataset.column('y'))
        test_set = set(result.test_rows)

        for label in np.unique(strata):
            members = np.flatnonzero(strata == label)
            n_test = sum(1 for row in members if row in test_set)
            assert abs(n_test - 0.25 * len(members)) <= 1

    def test_same_seed_same_split(self, dataset):
        first = split(dataset, 'y', seed=123)
        second = split(dataset, 'y', seed=123)

        np.testing.assert_array_equal(first.test_rows, second.test_rows)
        pd.testing.assert_frame_equal(first.train.frame, second.train.frame)

    def test_different_seed_different_split(self, dataset):
        first = split(dataset, 'y', seed=1)
        second = split(dataset, 'y', seed=2)

        assert not np.array_equal(first.test_rows, second.test_rows)

    def test_test_fraction_property(self, dataset):
        result = split(dataset, 'y', test_fraction=0.25, seed=1)

        assert result.test_fraction == pytest.approx(0.25, abs=0.05)

    @pytest.mark.parametrize("fraction", [0.0, 1.0, -0.1, 1.5])
    def test_invalid_fraction(self, dataset, fraction):
        with pytest.raises(InvalidFraction):
            split(dataset, 'y', test_fraction=fraction)

    def test_empty_partition_rejected(self):
        tiny = make_dataset(n_samples=3)
        with pytest.raises(InsufficientRows):
            split(tiny, None, test_fraction=0.1, seed=0)

    def test_unknown_strata_column(self, dataset):
        with pytest.raises(UnknownColumn):
            split(dataset, 'not_a_column', seed=0)

    def test_categorical_strata_preserves_levels(self, dataset):
        result = split(dataset, 'group', test_fraction=0.25, seed=5)
        counts = result.test.column('group').value_counts()

        assert set(counts.index) == {'north', 'south', 'east', 'west'}
        assert (counts == 12).all() or (counts == 13).all()

    def test_missing_target_rejected(self):
        frame = make_dataset().frame
        frame.loc[0, 'y'] = np.nan
        with pytest.raises(ValueError, match="missing"):
            split(Dataset(frame, target='y'), 'y', seed=0)

    def test_split_rows_are_read_only(self, dataset):
        result = split(dataset, 'y', seed=0)
        with pytest.raises(ValueError):
            result.test_rows[0] = 0


class TestFold:
    """Tests for stratified k-fold resampling."""

    @pytest.fixture
    def train(self):
        return split(make_dataset(), 'y', test_fraction=0.25, seed=3).train

    def test_fold_ids_in_order(self, train):
        folds = fold(train, 'y', k=5, seed=0)

        assert [f.fold_id for f in folds] == [1, 2, 3, 4, 5]
        assert len(folds) == 5

    def test_each_row_assessed_exactly_once(self, train):
        folds = fold(train, 'y', k=5, seed=0)
        assessed = np.concatenate([f.assessment_rows for f in folds])

        assert sorted(assessed) == list(range(len(train)))

    def test_each_row_in_k_minus_one_analysis_sets(self, train):
        folds = fold(train, 'y', k=5, seed=0)
        counts = np.zeros(len(train), dtype=int)
        for f in folds:
            counts[f.analysis_rows] += 1

        assert (counts == 4).all()

    def test_analysis_and_assessment_disjoint(self, train):
        for f in fold(train, 'y', k=5, seed=0):
            assert set(f.analysis_rows).isdisjoint(f.assessment_rows)

    def test_bins_balanced_across_folds(self, train):
        folds = fold(train, 'y', k=5, seed=0)
        strata = make_strata(train.column('y'))

        for label in np.unique(strata):
            per_fold = [int(np.sum(strata[f.assessment_rows] == label)) for f in folds]
            assert max(per_fold) - min(per_fold) <= 1

    def test_fold_datasets(self, train):
        folds = fold(train, 'y', k=5, seed=0)
        first = folds[0]

        assert len(folds.analysis(first)) == len(first.analysis_rows)
        assert len(folds.assessment(first)) == len(first.assessment_rows)

    def test_same_seed_same_folds(self, train):
        first = fold(train, 'y', k=5, seed=9)
        second = fold(train, 'y', k=5, seed=9)

        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.assessment_rows, b.assessment_rows)

    def test_small_bins_rejected(self):
        train = make_dataset(n_samples=40)
        with pytest.raises(InsufficientRows):
            fold(train, 'y', k=10, seed=0)

    def test_k_must_be_at_least_two(self, train):
        with pytest.raises(ValueError):
            fold(train, 'y', k=1)

    def test_unknown_strata_column(self, train):
        with pytest.raises(UnknownColumn):
            fold(train, 'nope', k=5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
