"""
Tabular Regression Tuning
=========================

A machine learning pipeline for tabular regression with leakage-safe
preprocessing and cross-validated hyperparameter search.

Modules:
    - data_loader: Dataset type, CSV ingestion and configuration
    - splitting: Stratified train/test split and k-fold resampling
    - preprocessing: Declarative recipes fit on training data only
    - model: Random forest and gradient boosting model families
    - workflow: Recipe + model fit/predict unit and final fit
    - evaluation: RMSE, MAE and R² metrics
    - tuning: Grid search scored by cross-validation
    - prediction: Predictions for new rows and export
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
