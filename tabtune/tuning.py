"""
Hyperparameter Tuning Module
============================

Grid search scored by cross-validation.

Every (grid point, fold) pair is an independent task: a workflow configured
with the grid point is fit on the fold's analysis rows and scored on its
assessment rows. Tasks run sequentially or on a joblib worker pool; results
are reduced per grid point in fold order, so the aggregate does not depend
on the order tasks finish in.

Functions:
    - grid_regular: Regular grid over declared hyperparameter ranges
    - grid_from_config: Grid from the ``tuning.grid`` configuration section
    - tune: Evaluate every grid point on every fold
    - save_tuning_results: Persist the tuning table as JSON
"""

import itertools
import json
import logging
import math
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .errors import TuningCancelled
from .evaluation import get_metric, score
from .model import HyperParameter, RegressionModel
from .splitting import Fold, FoldSet
from .workflow import Workflow

logger = logging.getLogger(__name__)

TIE_TOLERANCE = 1e-12


@dataclass(frozen=True)
class GridPoint:
    """One candidate configuration, identified by its enumeration position."""

    config_id: str
    index: int
    values: Tuple[Tuple[str, Any], ...]

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.values)


def make_grid(configurations: Iterable[Mapping[str, Any]]) -> List[GridPoint]:
    """Wrap explicit configurations, in the given order, as grid points."""
    return [
        GridPoint(config_id=f"config_{index + 1:03d}", index=index, values=tuple(config.items()))
        for index, config in enumerate(configurations)
    ]


def grid_regular(
    parameters: Sequence[HyperParameter],
    levels: Union[int, Mapping[str, int]] = 3,
    ranges: Optional[Mapping[str, Tuple[Optional[float], Optional[float]]]] = None
) -> List[GridPoint]:
    """
    Regular grid over hyperparameter ranges.

    Each parameter is discretized into ``levels`` evenly spaced values (log
    spaced for log-scaled parameters) between its bounds. Points are
    enumerated lexicographically in declaration order: the first parameter
    varies slowest.

    Args:
        parameters: Hyperparameters to vary, in enumeration order
        levels: Number of values per parameter, or a per-name mapping
        ranges: Optional (lower, upper) per name, narrowing the declared range

    Returns:
        Grid points in enumeration order
    """
    ranges = ranges or {}
    axes = []
    for param in parameters:
        n_levels = levels.get(param.name, 3) if isinstance(levels, Mapping) else levels
        lower, upper = ranges.get(param.name, (None, None))
        axes.append(param.discretize(n_levels, lower, upper))

    names = [param.name for param in parameters]
    return make_grid(dict(zip(names, combo)) for combo in itertools.product(*axes))


def grid_from_config(
    model: RegressionModel,
    grid_config: Mapping[str, Mapping[str, Any]],
    default_levels: int = 3
) -> List[GridPoint]:
    """
    Build a regular grid from configuration.

    Args:
        model: Model whose declared hyperparameters are searched
        grid_config: Mapping name -> {lower, upper, levels}, in enumeration order
        default_levels: Levels for entries that omit ``levels``

    Returns:
        Grid points in enumeration order
    """
    parameters = [model.parameter(name) for name in grid_config]
    levels = {name: spec.get('levels', default_levels) for name, spec in grid_config.items()}
    ranges = {name: (spec.get('lower'), spec.get('upper')) for name, spec in grid_config.items()}
    return grid_regular(parameters, levels, ranges)


@dataclass(frozen=True)
class FoldResult:
    """Outcome of one (grid point, fold) task."""

    config_id: str
    fold_id: int
    metrics: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> Dict[str, Any]:
        return {
            'config_id': self.config_id,
            'fold_id': self.fold_id,
            'metrics': dict(self.metrics),
            'error': self.error
        }


def iter_tasks(grid: Sequence[GridPoint], folds: FoldSet) -> Iterator[Tuple[GridPoint, Fold]]:
    """All (grid point, fold) pairs, grid-major. Restartable: call again for a fresh pass."""
    return itertools.product(grid, folds)


def evaluate_task(
    workflow: Workflow,
    point: GridPoint,
    folds: FoldSet,
    fold: Fold,
    metric_names: Sequence[str],
    cancel_event: Optional[threading.Event] = None,
    selection_metric: Optional[str] = None
) -> Optional[FoldResult]:
    """
    Fit a configured workflow on one fold's analysis rows and score its assessment rows.

    Returns None without doing any work when ``cancel_event`` is set. Any
    failure while fitting or scoring is recorded on the result instead of
    raised, so one degenerate fold cannot abort the search. A non-finite
    selection metric (the first of ``metric_names`` unless given) fails the
    fold; other non-finite metrics are kept as NaN, e.g. R² on a
    single-row assessment set.
    """
    selection_metric = selection_metric or metric_names[0]
    if cancel_event is not None and cancel_event.is_set():
        return None

    try:
        fitted = workflow.fit(folds.analysis(fold))
        assessment = folds.assessment(fold)
        metrics = score(fitted.predict(assessment), assessment.target_values, metric_names)
    except Exception as e:
        logger.warning(f"{point.config_id} fold {fold.fold_id} failed: {type(e).__name__}: {e}")
        return FoldResult(point.config_id, fold.fold_id, error=f"{type(e).__name__}: {e}")

    if not np.isfinite(metrics[selection_metric]):
        logger.warning(f"{point.config_id} fold {fold.fold_id} produced non-finite {selection_metric}")
        return FoldResult(point.config_id, fold.fold_id, error=f"non-finite {selection_metric}")

    undefined = sorted(name for name, value in metrics.items() if not np.isfinite(value))
    if undefined:
        logger.debug(f"{point.config_id} fold {fold.fold_id}: undefined {undefined} recorded as NaN")
        metrics = {name: (float(value) if np.isfinite(value) else np.nan) for name, value in metrics.items()}

    logger.debug(f"{point.config_id} fold {fold.fold_id}: {metrics}")
    return FoldResult(point.config_id, fold.fold_id, metrics=metrics)


def aggregate(
    grid: Sequence[GridPoint],
    fold_results: Iterable[FoldResult],
    metric_names: Sequence[str]
) -> pd.DataFrame:
    """
    Mean of each metric per grid point over its successful folds.

    Folds are reduced in fold-id order. Each metric is averaged over the
    successful folds where it is defined, so ``n`` counts successful folds
    and a metric undefined on every fold is NaN. A point without any
    successful fold gets NaN (missing), never 0.

    Returns:
        DataFrame with one row per grid point in enumeration order:
        config_id, hyperparameters, n, n_failed, mean_<metric>, std_err_<metric>
    """
    by_config: Dict[str, List[FoldResult]] = defaultdict(list)
    for result in fold_results:
        by_config[result.config_id].append(result)

    rows = []
    for point in grid:
        results = sorted(by_config.get(point.config_id, []), key=lambda r: r.fold_id)
        succeeded = [r for r in results if r.ok]
        row: Dict[str, Any] = {'config_id': point.config_id, **point.params}
        row['n'] = len(succeeded)
        row['n_failed'] = len(results) - len(succeeded)
        for name in metric_names:
            values = np.array([r.metrics[name] for r in succeeded], dtype=float)
            values = values[np.isfinite(values)]
            row[f'mean_{name}'] = float(np.mean(values)) if len(values) else np.nan
            row[f'std_err_{name}'] = (
                float(np.std(values, ddof=1) / np.sqrt(len(values))) if len(values) > 1 else np.nan
            )
        rows.append(row)

    return pd.DataFrame(rows)


def select_best(
    grid: Sequence[GridPoint],
    table: pd.DataFrame,
    metric: str,
    tie_breaker: Optional[str] = None
) -> GridPoint:
    """
    Best grid point under a metric.

    Error metrics are minimized and R² is maximized. Among points whose
    aggregate equals the best within floating tolerance, the smallest value
    of ``tie_breaker`` wins when one is given, then the first enumerated.

    Raises:
        ValueError: If no grid point has a defined aggregate
    """
    direction = get_metric(metric)
    means = dict(zip(table['config_id'], table[f'mean_{metric}']))
    candidates = [(point, means[point.config_id]) for point in grid
                  if np.isfinite(means.get(point.config_id, np.nan))]
    if not candidates:
        raise ValueError(f"No grid point has a defined mean {metric}: every fold failed")

    values = [value for _, value in candidates]
    best_value = min(values) if direction.minimize else max(values)
    tied = [point for point, value in candidates
            if math.isclose(value, best_value, rel_tol=1e-9, abs_tol=TIE_TOLERANCE)]

    if tie_breaker is not None and len(tied) > 1:
        tied = sorted(tied, key=lambda p: p.params.get(tie_breaker, 0))
    return tied[0]


@dataclass(frozen=True)
class TuningResult:
    """Aggregated cross-validation scores for every grid point plus the selected one."""

    metric: str
    metric_names: Tuple[str, ...]
    grid: Tuple[GridPoint, ...]
    fold_results: Tuple[FoldResult, ...]
    table: pd.DataFrame
    best: GridPoint
    tie_breaker: Optional[str] = None

    def select_best(self) -> Dict[str, Any]:
        return self.best.params

    def collect_metrics(self) -> pd.DataFrame:
        """Long format: one row per (grid point, metric) with mean, n and std_err."""
        param_cols = [c for c in self.table.columns
                      if c not in ('config_id', 'n', 'n_failed')
                      and not c.startswith(('mean_', 'std_err_'))]
        frames = []
        for name in self.metric_names:
            part = self.table[['config_id'] + param_cols + ['n']].copy()
            part['metric'] = name
            part['mean'] = self.table[f'mean_{name}']
            part['std_err'] = self.table[f'std_err_{name}']
            frames.append(part)
        return pd.concat(frames, ignore_index=True)

    def show_best(self, n: int = 5, metric: Optional[str] = None) -> pd.DataFrame:
        """Top ``n`` grid points by a metric; points with a missing aggregate come last."""
        metric = metric or self.metric
        ascending = get_metric(metric).minimize
        return (self.table
                .sort_values(f'mean_{metric}', ascending=ascending, na_position='last', kind='mergesort')
                .head(n)
                .reset_index(drop=True))

    def failures(self) -> List[FoldResult]:
        return [r for r in self.fold_results if not r.ok]


def tune(
    workflow: Workflow,
    folds: FoldSet,
    grid: Union[Sequence[GridPoint], Sequence[Mapping[str, Any]]],
    metric: str = 'rmse',
    metrics: Optional[Sequence[str]] = None,
    tie_breaker: Optional[str] = None,
    n_jobs: int = 1,
    cancel_event: Optional[threading.Event] = None
) -> TuningResult:
    """
    Evaluate every grid point on every fold and select the best configuration.

    Args:
        workflow: Workflow template; its model is reconfigured per grid point
        folds: Cross-validation folds over the training data
        grid: Grid points, or plain configuration mappings in enumeration order
        metric: Metric used for selection
        metrics: All metrics to record (default: rmse, mae, rsq)
        tie_breaker: Hyperparameter whose smallest value wins ties
        n_jobs: Worker count; 1 runs sequentially, -1 uses all cores
        cancel_event: When set, pending tasks are skipped and TuningCancelled raised

    Returns:
        TuningResult

    Raises:
        ConfigOutOfRange: If a grid point is outside its declared ranges
        TuningCancelled: If cancel_event was set before all tasks ran
    """
    grid = list(grid)
    if not all(isinstance(p, GridPoint) for p in grid):
        if any(isinstance(p, GridPoint) for p in grid):
            raise TypeError("grid must hold either GridPoints or configuration mappings, not both")
        grid = make_grid(grid)
    if len({p.config_id for p in grid}) != len(grid):
        raise ValueError("grid points must have unique config_ids")
    metric_names = tuple(dict.fromkeys([metric] + list(metrics or ('rmse', 'mae', 'rsq'))))
    for name in metric_names:
        get_metric(name)
    if tie_breaker is not None:
        workflow.model.parameter(tie_breaker)
    if not grid:
        raise ValueError("Cannot tune over an empty grid")

    # Configuring validates every point before any task runs.
    configured = {point.config_id: workflow.finalize(point.params) for point in grid}

    start_time = datetime.now()
    logger.info("=" * 60)
    logger.info("STARTING HYPERPARAMETER TUNING")
    logger.info("=" * 60)
    logger.info(
        f"{len(grid)} grid points × {len(folds)} folds = {len(grid) * len(folds)} fits "
        f"(metric={metric}, n_jobs={n_jobs})"
    )

    tasks = (
        delayed(evaluate_task)(
            configured[point.config_id], point, folds, fold, metric_names, cancel_event, metric
        )
        for point, fold in iter_tasks(grid, folds)
    )
    if n_jobs == 1:
        outcomes = [func(*args, **kwargs) for func, args, kwargs in tasks]
    else:
        outcomes = Parallel(n_jobs=n_jobs, prefer="threads")(tasks)

    completed = [r for r in outcomes if r is not None]
    n_pending = len(outcomes) - len(completed)
    if n_pending:
        logger.warning(f"Tuning cancelled: {len(completed)} tasks completed, {n_pending} skipped")
        raise TuningCancelled([r.as_dict() for r in completed], n_pending)

    table = aggregate(grid, completed, metric_names)
    undefined = table.loc[table['n'] == 0, 'config_id'].tolist()
    if undefined:
        logger.warning(f"Every fold failed for {undefined}; their aggregates are missing")

    best = select_best(grid, table, metric, tie_breaker)
    duration = (datetime.now() - start_time).total_seconds()

    logger.info("=" * 60)
    logger.info(f"TUNING COMPLETE in {duration:.2f} seconds")
    logger.info(f"  Best {best.config_id}: {best.params}")
    logger.info(f"  Mean {metric}: {table.set_index('config_id').loc[best.config_id, f'mean_{metric}']:.6f}")
    logger.info("=" * 60)

    return TuningResult(
        metric=metric,
        metric_names=metric_names,
        grid=tuple(grid),
        fold_results=tuple(completed),
        table=table,
        best=best,
        tie_breaker=tie_breaker
    )


def save_tuning_results(result: TuningResult, path: str) -> str:
    """
    Save the tuning table, failures and selected configuration to JSON.

    Args:
        result: TuningResult from tune
        path: Output file path

    Returns:
        Path to the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        'metric': result.metric,
        'best': {'config_id': result.best.config_id, **result.best.params},
        'table': json.loads(result.table.to_json(orient='records')),
        'failures': [r.as_dict() for r in result.failures()]
    }
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2)
    logger.info(f"Tuning results saved to {path}")
    return str(path)


def print_tuning_summary(result: TuningResult, n: int = 5) -> None:
    """
    Print the best grid points to console.

    Args:
        result: TuningResult from tune
        n: Number of grid points to show
    """
    print("\n" + "=" * 70)
    print("HYPERPARAMETER TUNING SUMMARY")
    print("=" * 70)
    print(f"Grid points: {len(result.grid)} | Metric: {result.metric}")
    print(f"\nTop {n} configurations:")
    print("-" * 70)
    print(result.show_best(n).to_string(index=False))
    print("-" * 70)
    print(f"\nSelected {result.best.config_id}: {result.best.params}")
    failures = result.failures()
    if failures:
        print(f"⚠️  {len(failures)} fold fits failed and were excluded from the aggregates")
    print("=" * 70 + "\n")
