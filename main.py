#!/usr/bin/env python3
"""
Tabular Regression Tuning - Main Pipeline
=========================================

Orchestrates the complete workflow for tabular regression with tuning.

Phases:
    1. Split - Stratified train/test split and cross-validation folds
    2. Tune - Grid search over model hyperparameters by cross-validation
    3. Evaluate - Final fit on the training split, metrics on the test split
    4. Predict - Predictions for new rows with the saved workflow

Usage:
    # Run complete pipeline
    python main.py --data data/raw/dataset.csv

    # Run specific phase
    python main.py --data data/raw/dataset.csv --phase tune

    # Predict new rows with the saved workflow
    python main.py --data data/raw/new_rows.csv --phase predict

    # Run with custom config
    python main.py --data data/raw/dataset.csv --config config/config.yaml
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from tabtune.data_loader import Dataset, load_config, load_data, validate_data, print_data_summary
from tabtune.splitting import Split, FoldSet, split, fold
from tabtune.preprocessing import build_recipe
from tabtune.model import build_model, print_model_summary
from tabtune.workflow import Workflow, FittedWorkflow, LastFitResult, last_fit
from tabtune.tuning import TuningResult, tune, grid_from_config, save_tuning_results, print_tuning_summary
from tabtune.evaluation import save_metrics, print_evaluation_report
from tabtune.prediction import run_prediction, print_prediction_results


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def build_workflow(config: Dict[str, Any]) -> Workflow:
    """
    Build the unfitted workflow described by the configuration.

    Args:
        config: Configuration dictionary

    Returns:
        Workflow with the standard recipe and the configured model family
    """
    model_config = config.get('model', {})
    model = build_model(
        model_config.get('family', 'random_forest'),
        random_state=model_config.get('random_state', 42),
        n_jobs=model_config.get('n_jobs', 1),
        **model_config.get('params', {})
    )
    return Workflow(build_recipe(config.get('recipe', {})), model)


def run_split(dataset: Dataset, config: Dict[str, Any]) -> Tuple[Split, FoldSet]:
    """
    Execute Phase 1: train/test split and cross-validation folds.

    Args:
        dataset: Full dataset
        config: Configuration dictionary

    Returns:
        Tuple of (split, folds over the training split)
    """
    print("\n" + "=" * 70)
    print("PHASE 1: DATA SPLITTING")
    print("=" * 70)

    split_config = config.get('split', {})
    strata = split_config.get('stratify_by', dataset.target)
    seed = split_config.get('seed', 42)
    n_bins = split_config.get('strata_bins', 10)

    data_split = split(
        dataset,
        strata_column=strata,
        test_fraction=split_config.get('test_fraction', 0.25),
        seed=seed,
        n_bins=n_bins
    )
    folds = fold(
        data_split.train,
        strata_column=strata,
        k=split_config.get('k_folds', 10),
        seed=seed,
        n_bins=n_bins
    )

    print(f"Training rows: {len(data_split.train)}")
    print(f"Test rows: {len(data_split.test)}")
    print(f"Cross-validation folds: {len(folds)}")

    return data_split, folds


def run_tuning(
    workflow: Workflow,
    folds: FoldSet,
    config: Dict[str, Any]
) -> TuningResult:
    """
    Execute Phase 2: grid search by cross-validation.

    Args:
        workflow: Workflow template
        folds: Cross-validation folds
        config: Configuration dictionary

    Returns:
        Tuning result
    """
    print("\n" + "=" * 70)
    print("PHASE 2: HYPERPARAMETER TUNING")
    print("=" * 70)

    tuning_config = config.get('tuning', {})
    grid = grid_from_config(
        workflow.model,
        tuning_config.get('grid', {}),
        default_levels=tuning_config.get('levels', 3)
    )

    result = tune(
        workflow,
        folds,
        grid,
        metric=tuning_config.get('metric', 'rmse'),
        tie_breaker=tuning_config.get('tie_breaker'),
        n_jobs=tuning_config.get('n_jobs', 1)
    )

    print_tuning_summary(result)

    results_path = config.get('output', {}).get('tuning_path')
    if results_path:
        save_tuning_results(result, results_path)

    return result


def run_evaluation(
    workflow: Workflow,
    data_split: Split,
    config: Dict[str, Any]
) -> LastFitResult:
    """
    Execute Phase 3: final fit on the training split and test-set evaluation.

    Args:
        workflow: Finalized workflow
        data_split: Train/test split
        config: Configuration dictionary

    Returns:
        Final fit result
    """
    print("\n" + "=" * 70)
    print("PHASE 3: FINAL FIT AND EVALUATION")
    print("=" * 70)

    output_config = config.get('output', {})
    result = last_fit(workflow, data_split)

    print_model_summary(result.workflow.fitted_model)
    print_evaluation_report(result.metrics, title="TEST SET EVALUATION")

    result.workflow.save(output_config.get('model_path', 'models/workflow.joblib'))
    save_metrics(result.metrics, output_config.get('metrics_path', 'reports/metrics/test_metrics.json'))

    return result


def run_prediction_phase(
    fitted: FittedWorkflow,
    dataset: Dataset,
    config: Dict[str, Any],
    metrics: Optional[Dict[str, float]] = None
) -> Dict[str, Any]:
    """
    Execute Phase 4: predictions for new rows.

    Args:
        fitted: Fitted workflow
        dataset: Rows to predict
        config: Configuration dictionary
        metrics: Held-out metrics for prediction intervals

    Returns:
        Prediction result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: PREDICTION")
    print("=" * 70)

    output_dir = config.get('data', {}).get('predictions_path', 'data/predictions/')
    result = run_prediction(fitted, dataset, metrics=metrics, output_dir=output_dir)

    print_prediction_results(result)

    return result


def _load_dataset(data_path: str, config: Dict[str, Any], require_target: bool = True) -> Dataset:
    data_config = config.get('data', {})
    if 'target' not in data_config:
        raise ValueError("Configuration must name the target column under data.target")
    return load_data(
        data_path,
        target=data_config['target'],
        categorical_columns=data_config.get('categorical_columns'),
        require_target=require_target
    )


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml"
) -> Dict[str, Any]:
    """
    Execute the complete pipeline: split, tune, evaluate.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("TABULAR REGRESSION TUNING PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(config.get('logging', {}).get('level', 'INFO'))

    print("\n📊 Loading data...")
    dataset = _load_dataset(data_path, config)
    print_data_summary(dataset)

    is_valid, validation_report = validate_data(dataset, strict=False)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Proceeding anyway...")

    results = {
        'config': config,
        'data_shape': dataset.shape
    }

    workflow = build_workflow(config)

    results['split'], results['folds'] = run_split(dataset, config)
    results['tuning'] = run_tuning(workflow, results['folds'], config)

    final_workflow = workflow.finalize(results['tuning'].select_best())
    results['evaluation'] = run_evaluation(final_workflow, results['split'], config)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {dataset.shape[0]} rows × {dataset.shape[1]} columns")
    print(f"  • Best configuration: {results['tuning'].select_best()}")
    for name, value in results['evaluation'].metrics.items():
        print(f"  • Test {name}: {value:.4f}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_single_phase(
    phase: str,
    data_path: str,
    config_path: str = "config/config.yaml"
) -> Dict[str, Any]:
    """
    Execute a single phase of the pipeline.

    Args:
        phase: Phase to run ('split', 'tune', 'evaluate', 'predict')
        data_path: Path to input CSV file
        config_path: Path to configuration file

    Returns:
        Phase result dictionary
    """
    config = load_config(config_path)
    setup_logging(config.get('logging', {}).get('level', 'INFO'))

    dataset = _load_dataset(data_path, config, require_target=(phase != 'predict'))

    if phase == 'split':
        data_split, folds = run_split(dataset, config)
        return {'split': data_split, 'folds': folds}

    elif phase == 'tune':
        data_split, folds = run_split(dataset, config)
        return {'tuning': run_tuning(build_workflow(config), folds, config)}

    elif phase == 'evaluate':
        # Uses the configured hyperparameters without tuning
        data_split, _ = run_split(dataset, config)
        return {'evaluation': run_evaluation(build_workflow(config), data_split, config)}

    elif phase == 'predict':
        output_config = config.get('output', {})
        fitted = FittedWorkflow.load(output_config.get('model_path', 'models/workflow.joblib'))
        metrics_path = Path(output_config.get('metrics_path', 'reports/metrics/test_metrics.json'))
        metrics = None
        if metrics_path.exists():
            with open(metrics_path, 'r') as f:
                metrics = json.load(f)
        return run_prediction_phase(fitted, dataset, config, metrics=metrics)

    else:
        raise ValueError(f"Unknown phase: {phase}. Choose from: split, tune, evaluate, predict")


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Tabular Regression Pipeline with Cross-Validated Grid Search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/dataset.csv
  python main.py --data data/raw/dataset.csv --phase tune
  python main.py --data data/raw/dataset.csv --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input CSV file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=['split', 'tune', 'evaluate', 'predict', 'all'],
        default='all',
        help='Phase to run (default: all)'
    )

    args = parser.parse_args()

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        sys.exit(1)

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    try:
        if args.phase == 'all':
            run_full_pipeline(args.data, args.config)
        else:
            run_single_phase(args.phase, args.data, args.config)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
