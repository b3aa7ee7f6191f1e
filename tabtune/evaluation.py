"""
Model Evaluation Module
=======================

Error metrics between predictions and ground truth.

Features:
    - RMSE, MAE and R² via scikit-learn
    - Metric registry with optimization direction (used by tuning)
    - Metrics persistence and console report
"""

import logging
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import numpy as np
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .errors import ShapeMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Metric:
    """A scoring function and whether lower values are better."""

    name: str
    function: Callable[[np.ndarray, np.ndarray], float]
    minimize: bool


def _rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def _mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(mean_absolute_error(y_true, y_pred))


def _rsq(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(r2_score(y_true, y_pred))


METRICS: Dict[str, Metric] = {
    'rmse': Metric('rmse', _rmse, minimize=True),
    'mae': Metric('mae', _mae, minimize=True),
    'rsq': Metric('rsq', _rsq, minimize=False),
}

DEFAULT_METRICS = ('rmse', 'mae', 'rsq')


def get_metric(name: str) -> Metric:
    if name not in METRICS:
        raise ValueError(f"Unknown metric: {name}. Choose from: {sorted(METRICS)}")
    return METRICS[name]


def score(
    predictions: np.ndarray,
    truth: np.ndarray,
    metrics: Optional[Iterable[str]] = None
) -> Dict[str, float]:
    """
    Calculate error metrics for one prediction/truth pair.

    rmse = sqrt(mean((pred - truth)^2)), mae = mean(|pred - truth|),
    rsq = 1 - SS_res / SS_tot.

    Args:
        predictions: Predicted values of shape (n_samples,)
        truth: Ground truth values of shape (n_samples,)
        metrics: Metric names to compute (default: rmse, mae, rsq)

    Returns:
        Dictionary mapping metric name to value

    Raises:
        ShapeMismatch: If predictions and truth differ in length
    """
    y_pred = np.asarray(predictions, dtype=float).ravel()
    y_true = np.asarray(truth, dtype=float).ravel()

    if y_pred.shape != y_true.shape:
        raise ShapeMismatch(
            f"Got {y_pred.shape[0]} predictions for {y_true.shape[0]} truth values"
        )
    if y_true.size == 0:
        raise ValueError("Cannot score an empty prediction set")

    names = list(metrics) if metrics is not None else list(DEFAULT_METRICS)
    return {name: get_metric(name).function(y_true, y_pred) for name in names}


def save_metrics(metrics: Dict[str, float], path: str) -> str:
    """
    Save a metrics mapping to JSON.

    Args:
        metrics: Metrics dictionary from score
        path: Output file path

    Returns:
        Path to the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Metrics saved to {path}")
    return str(path)


def print_evaluation_report(metrics: Dict[str, float], title: str = "MODEL EVALUATION REPORT") -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics dictionary from score
        title: Report heading
    """
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)

    for name, value in metrics.items():
        print(f"  • {name.upper():<6} {value:.6f}")

    rsq = metrics.get('rsq')
    if rsq is not None:
        print("\nInterpretation:")
        if rsq > 0.9:
            print("  ✓ Excellent model performance (R² > 0.9)")
        elif rsq > 0.7:
            print("  ✓ Good model performance (R² > 0.7)")
        elif rsq > 0.5:
            print("  ⚠ Moderate model performance (R² > 0.5)")
        else:
            print("  ✗ Poor model performance (R² < 0.5) - consider different approach")

    print("=" * 70 + "\n")
