"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion and the in-memory Dataset type.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load CSV data into a Dataset
    - validate_data: Check data quality constraints
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, List, Sequence

import pandas as pd
import numpy as np
import yaml

from .errors import UnknownColumn

logger = logging.getLogger(__name__)


def is_numeric_column(series: pd.Series) -> bool:
    """Numeric columns are real-valued; booleans count as categorical."""
    return pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series)


class Dataset:
    """
    Immutable table of typed columns with one designated numeric target.

    The wrapped DataFrame is copied on the way in and on every access, so
    neither callers nor downstream steps can change the rows a recipe or a
    split was computed from.
    """

    def __init__(self, frame: pd.DataFrame, target: str):
        if target not in frame.columns:
            raise UnknownColumn(f"Target column '{target}' not found. Columns: {list(frame.columns)}")
        if not is_numeric_column(frame[target]):
            raise ValueError(f"Target column '{target}' must be numeric, got {frame[target].dtype}")
        if frame.columns.duplicated().any():
            raise ValueError(f"Duplicate column names: {list(frame.columns[frame.columns.duplicated()])}")

        self._frame = frame.copy()
        self._target = target

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    @property
    def target(self) -> str:
        return self._target

    @property
    def columns(self) -> List[str]:
        return list(self._frame.columns)

    @property
    def predictors(self) -> List[str]:
        return [c for c in self._frame.columns if c != self._target]

    @property
    def numeric_predictors(self) -> List[str]:
        return [c for c in self.predictors if is_numeric_column(self._frame[c])]

    @property
    def nominal_predictors(self) -> List[str]:
        return [c for c in self.predictors if not is_numeric_column(self._frame[c])]

    @property
    def target_values(self) -> np.ndarray:
        return self._frame[self._target].to_numpy(dtype=float, copy=True)

    def column(self, name: str) -> pd.Series:
        if name not in self._frame.columns:
            raise UnknownColumn(f"Column '{name}' not found")
        return self._frame[name].copy()

    def subset(self, rows: Sequence[int]) -> 'Dataset':
        """Return a new Dataset holding the given positional rows, in order."""
        return Dataset(self._frame.iloc[np.asarray(rows, dtype=int)], self._target)

    @property
    def shape(self) -> Tuple[int, int]:
        return self._frame.shape

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return (
            f"Dataset(rows={len(self)}, predictors={len(self.predictors)}, "
            f"target='{self._target}')"
        )


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_data(
    file_path: str,
    target: str,
    index_col: Optional[int] = None,
    categorical_columns: Optional[List[str]] = None,
    require_target: bool = True
) -> Dataset:
    """
    Load CSV data into a Dataset.

    Args:
        file_path: Path to the CSV file
        target: Name of the numeric target column
        index_col: Column to use as index (optional)
        categorical_columns: Columns to force to categorical even when numeric-looking
        require_target: If False, a missing target column is added as all-missing
            (rows to predict)

    Returns:
        Dataset wrapping the loaded data

    Raises:
        FileNotFoundError: If data file doesn't exist
        UnknownColumn: If the target column is missing
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    df = pd.read_csv(file_path, index_col=index_col)
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    for col in categorical_columns or []:
        if col not in df.columns:
            raise UnknownColumn(f"Categorical column '{col}' not found in {file_path}")
        df[col] = df[col].astype(str).where(df[col].notna())

    if not require_target and target not in df.columns:
        logger.info(f"No '{target}' column in {file_path}; rows are treated as unlabeled")
        df[target] = np.nan

    return Dataset(df, target)


def validate_data(dataset: Dataset, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for supervised regression.

    Checks:
        - Target has no missing values
        - Missing values in predictors
        - Duplicate rows
        - Predictors with a single distinct value

    Args:
        dataset: Dataset to validate
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    df = dataset.frame
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "target": dataset.target,
        "numeric_predictors": dataset.numeric_predictors,
        "nominal_predictors": dataset.nominal_predictors,
        "issues": []
    }

    # Check 1: target completeness
    missing_target = int(df[dataset.target].isnull().sum())
    if missing_target > 0:
        issue = f"Target '{dataset.target}' has {missing_target} missing values"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 2: Missing values in predictors
    missing_counts = df[dataset.predictors].isnull().sum()
    total_missing = int(missing_counts.sum())
    if total_missing > 0:
        issue = f"Missing predictor values: {total_missing}"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    # Check 3: Duplicate rows
    duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 4: Constant predictors
    constant = [c for c in dataset.predictors if df[c].nunique(dropna=False) <= 1]
    if constant:
        issue = f"Constant predictors: {constant}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(dataset: Dataset) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        dataset: Dataset to summarize

    Returns:
        Dictionary containing summary statistics
    """
    df = dataset.frame
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "target": dataset.target,
        "dtypes": df.dtypes.astype(str).to_dict(),
        "statistics": {},
        "levels": {}
    }

    for col in dataset.numeric_predictors + [dataset.target]:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max())
        }

    for col in dataset.nominal_predictors:
        summary["levels"][col] = int(df[col].nunique())

    return summary


def print_data_summary(dataset: Dataset) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        dataset: Dataset to summarize
    """
    df = dataset.frame
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Target: {dataset.target}")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        kind = "target" if col == dataset.target else (
            "numeric" if col in dataset.numeric_predictors else "categorical"
        )
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {kind} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("=" * 60 + "\n")
