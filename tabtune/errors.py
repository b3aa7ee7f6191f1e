"""
Error Kinds
===========

Exceptions raised by the splitting, preprocessing, modeling and tuning modules.

All validation errors derive from ValueError so callers that already guard
against bad input with ``except ValueError`` keep working.
"""

from typing import Any, Dict, List, Optional


class TabTuneError(ValueError):
    """Base class for all workflow errors."""


class InvalidFraction(TabTuneError):
    """Test fraction outside the open interval (0, 1)."""


class InsufficientRows(TabTuneError):
    """A stratum bin holds too few rows for the requested partition."""


class ZeroVariance(TabTuneError):
    """A column selected for normalization has zero (or undefined) standard deviation."""


class ShapeMismatch(TabTuneError):
    """Predictions and ground truth differ in length."""


class UnknownColumn(TabTuneError):
    """A selector or column reference matches no column of the dataset."""


class ConfigOutOfRange(TabTuneError):
    """A hyperparameter value lies outside its declared bounds."""


class NotFittedError(TabTuneError):
    """An operation needs a fitted recipe, model or workflow."""


class TuningCancelled(RuntimeError):
    """
    Raised when a tuning run is aborted before every task completed.

    The completed per-fold results are attached so they can be reported,
    but they are never aggregated into a final tuning result.
    """

    def __init__(self, completed: Optional[List[Dict[str, Any]]] = None, n_pending: int = 0):
        self.completed = list(completed or [])
        self.n_pending = n_pending
        super().__init__(
            f"Tuning cancelled with {len(self.completed)} completed and "
            f"{n_pending} pending (grid point, fold) tasks"
        )
