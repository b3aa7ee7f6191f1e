"""
Prediction Module
=================

Generates predictions for new rows with a fitted workflow.

Features:
    - Predictions aligned with the input rows
    - Prediction intervals from held-out RMSE
    - Export predictions to CSV
    - Prediction report generation
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime

import numpy as np
import pandas as pd

from .data_loader import Dataset
from .workflow import FittedWorkflow

logger = logging.getLogger(__name__)

Z_SCORES = {0.80: 1.2816, 0.90: 1.6449, 0.95: 1.9600, 0.99: 2.5758}


def predict_dataset(fitted: FittedWorkflow, dataset: Dataset) -> pd.DataFrame:
    """
    Predict every row of a raw Dataset.

    Args:
        fitted: Fitted workflow
        dataset: Raw Dataset with the columns seen during fit

    Returns:
        DataFrame indexed like the dataset with a ``.pred`` column and, for
        labeled rows, the observed target alongside it
    """
    frame = dataset.frame
    result = pd.DataFrame({'.pred': fitted.predict(dataset)}, index=frame.index)
    if frame[dataset.target].notna().any():
        result[dataset.target] = frame[dataset.target]
    return result


def calculate_prediction_intervals(
    predictions: np.ndarray,
    rmse: float,
    confidence_level: float = 0.95
) -> pd.DataFrame:
    """
    Normal-approximation intervals around each prediction based on held-out RMSE.

    Args:
        predictions: Predicted values
        rmse: RMSE from evaluation on held-out data
        confidence_level: One of 0.80, 0.90, 0.95, 0.99

    Returns:
        DataFrame with .pred, .pred_lower, .pred_upper columns
    """
    if confidence_level not in Z_SCORES:
        raise ValueError(f"Unsupported confidence level {confidence_level}. Choose from: {sorted(Z_SCORES)}")

    margin = Z_SCORES[confidence_level] * rmse
    predictions = np.asarray(predictions, dtype=float).ravel()
    return pd.DataFrame({
        '.pred': predictions,
        '.pred_lower': predictions - margin,
        '.pred_upper': predictions + margin
    })


def export_predictions(
    predictions: pd.DataFrame,
    output_path: str,
    include_timestamp: bool = True
) -> str:
    """
    Export predictions to CSV file.

    Args:
        predictions: DataFrame from predict_dataset
        output_path: Directory to save the file
        include_timestamp: Whether to add timestamp to filename

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)

    if include_timestamp:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"predictions_{timestamp}.csv"
    else:
        filename = "predictions.csv"

    filepath = output_path / filename
    predictions.to_csv(filepath, index_label='row_index')

    logger.info(f"Predictions exported to {filepath}")
    return str(filepath)


def generate_prediction_report(
    predictions: pd.DataFrame,
    fitted: FittedWorkflow,
    metrics: Optional[Dict[str, float]] = None,
    output_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    Generate a prediction report.

    Args:
        predictions: DataFrame from predict_dataset
        fitted: Workflow that produced the predictions
        metrics: Held-out evaluation metrics (optional)
        output_path: Path to save the report (optional)

    Returns:
        Report dictionary
    """
    values = predictions['.pred']
    report = {
        'generated_at': datetime.now().isoformat(),
        'model_family': fitted.fitted_model.family,
        'hyperparameters': fitted.hyperparameters,
        'n_features': len(fitted.recipe.output_columns),
        'summary': {
            'n_predictions': int(len(values)),
            'mean': float(values.mean()),
            'min': float(values.min()),
            'max': float(values.max())
        }
    }

    if metrics:
        report['held_out_metrics'] = dict(metrics)

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
        logger.info(f"Prediction report saved to {output_path}")

    return report


def run_prediction(
    fitted: FittedWorkflow,
    dataset: Dataset,
    metrics: Optional[Dict[str, float]] = None,
    output_dir: str = "data/predictions/",
    confidence_level: float = 0.95
) -> Dict[str, Any]:
    """
    Predict new rows and write the CSV export and JSON report.

    Args:
        fitted: Fitted workflow
        dataset: Rows to predict
        metrics: Held-out metrics; their RMSE sizes the prediction intervals
        output_dir: Directory for output files
        confidence_level: Interval confidence level

    Returns:
        Dictionary containing predictions and file paths
    """
    logger.info("=" * 60)
    logger.info("STARTING PREDICTION")
    logger.info("=" * 60)

    predictions = predict_dataset(fitted, dataset)

    if metrics and 'rmse' in metrics:
        intervals = calculate_prediction_intervals(
            predictions['.pred'].to_numpy(), metrics['rmse'], confidence_level
        )
        predictions['.pred_lower'] = intervals['.pred_lower'].to_numpy()
        predictions['.pred_upper'] = intervals['.pred_upper'].to_numpy()

    csv_path = export_predictions(predictions, output_dir)
    report_path = Path(output_dir) / "prediction_report.json"
    report = generate_prediction_report(predictions, fitted, metrics, output_path=str(report_path))

    logger.info("=" * 60)
    logger.info("PREDICTION COMPLETE")
    logger.info(f"  Rows: {len(predictions)}")
    logger.info(f"  Output: {csv_path}")
    logger.info("=" * 60)

    return {
        'predictions': predictions,
        'csv_path': csv_path,
        'report_path': str(report_path),
        'report': report
    }


def print_prediction_results(result: Dict[str, Any], n: int = 10) -> None:
    """
    Print the first predictions to console.

    Args:
        result: Result dictionary from run_prediction
        n: Number of rows to show
    """
    print("\n" + "=" * 70)
    print("PREDICTION RESULTS")
    print("=" * 70)
    print(result['predictions'].head(n).to_string())
    print("-" * 70)
    print(f"\nPredictions exported to: {result['csv_path']}")
    print(f"Full report saved to: {result['report_path']}")
    print("=" * 70 + "\n")
