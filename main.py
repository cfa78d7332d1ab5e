#!/usr/bin/env python3
"""
Extended Length-of-Stay Prediction Pipeline
===========================================

Healthcare Analytics Project
Predicting Hospital Stays Longer Than 7 Days from Intake Data

This script orchestrates the complete ML pipeline:
1. Data loading from a SPARCS discharge extract
2. Feature preparation (label, insurance flags, complete cases, redundancy screen)
3. Exploratory data analysis and PCA side study
4. Stratified 70/30 train-test split
5. Cross-validated tuning of three model families
6. Model selection by cross-validated ROC-AUC
7. Held-out evaluation (confusion matrix, ROC curve)

Clinical Goal:
--------------
Flag discharges likely to exceed a week at admission, so discharge planning,
bed management and care coordination can start early.

Usage:
------
    python main.py --data discharges.csv              # Run full pipeline
    python main.py --data discharges.csv --quick      # Small grids, 5 folds
    python main.py --data discharges.csv --n-jobs -1  # Parallel grid search
    python main.py --data discharges.csv --skip-eda   # Skip EDA and PCA
"""

import argparse
from pathlib import Path
from datetime import datetime
from typing import Optional

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from extended_stay import config
from extended_stay.data_loader import load_discharge_data, save_processed_data
from extended_stay.preprocessing import prepare_features
from extended_stay.eda import run_eda, generate_eda_report
from extended_stay.exploration import run_pca
from extended_stay.model import split_data, train_model
from extended_stay.selection import select_best_model
from extended_stay.evaluation import (
    evaluate_model,
    plot_decision_tree,
    plot_variable_importance
)

QUICK_GRIDS = {
    'logistic': [{}],
    'elastic_net': {'l1_ratio': [0.0, 0.5, 1.0], 'lambda': [0.001, 0.01, 0.1]},
    'decision_tree': {'ccp_alpha': [0.001, 0.011, 0.021, 0.051]},
}


def print_header():
    """Print pipeline header."""

    header = """
╔══════════════════════════════════════════════════════════════════════════════╗
║                 EXTENDED LENGTH-OF-STAY PREDICTION PIPELINE                   ║
║                                                                               ║
║           Healthcare Analytics: Inpatient Stays Longer Than 7 Days            ║
╚══════════════════════════════════════════════════════════════════════════════╝
    """
    print(header)
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("="*80 + "\n")


def print_section(title: str):
    """Print section separator."""
    print("\n" + "="*80)
    print(f"  {title}")
    print("="*80 + "\n")


def main(
    data_path: str,
    output_dir: str = "outputs",
    seed: int = config.RANDOM_SEED,
    train_ratio: float = config.TRAIN_RATIO,
    n_folds: int = config.N_FOLDS,
    correlation_cutoff: float = config.CORRELATION_CUTOFF,
    extended_stay_days: float = config.EXTENDED_STAY_DAYS,
    threshold: float = config.CLASSIFICATION_THRESHOLD,
    quick: bool = False,
    skip_eda: bool = False,
    n_jobs: int = 1,
    nrows: Optional[int] = None
):
    """
    Run the complete extended-stay prediction pipeline.

    Parameters
    ----------
    data_path : str
        Delimited discharge extract.
    output_dir : str
        Root directory for tables and plots.
    quick : bool
        Use small grids and 5 folds for a fast run.
    skip_eda : bool
        Skip EDA visualizations and the PCA side study.
    n_jobs : int
        Parallel cross-validation jobs (-1 = all cores).
    """

    print_header()
    output_path = Path(output_dir)

    # =========================================================================
    # STEP 1: DATA LOADING
    # =========================================================================
    print_section("STEP 1: DATA LOADING")

    raw = load_discharge_data(data_path, nrows=nrows)

    # =========================================================================
    # STEP 2: FEATURE PREPARATION
    # =========================================================================
    print_section("STEP 2: FEATURE PREPARATION")

    prepared, removed_features = prepare_features(
        raw,
        extended_stay_days=extended_stay_days,
        correlation_cutoff=correlation_cutoff
    )

    save_processed_data(
        prepared,
        output_path / "data" / "prepared_data.csv",
        removed_features=removed_features
    )

    # =========================================================================
    # STEP 3: EXPLORATORY DATA ANALYSIS
    # =========================================================================
    if not skip_eda:
        print_section("STEP 3: EXPLORATORY DATA ANALYSIS")

        run_eda(prepared, output_dir=str(output_path / "eda"))
        generate_eda_report(
            prepared, removed_features,
            output_path=str(output_path / "eda" / "eda_report.txt")
        )

        pca_results = run_pca(prepared)
        pca_results['loadings'].to_csv(output_path / "eda" / "pca_loadings.csv")
        plt.close('all')
    else:
        print_section("STEP 3: EXPLORATORY DATA ANALYSIS (SKIPPED)")

    # =========================================================================
    # STEP 4: TRAIN-TEST SPLIT
    # =========================================================================
    print_section("STEP 4: TRAIN-TEST SPLIT")

    train, test = split_data(prepared, seed=seed, ratio=train_ratio)

    # =========================================================================
    # STEP 5: MODEL TRAINING
    # =========================================================================
    print_section("STEP 5: MODEL TRAINING")

    if quick:
        n_folds = min(n_folds, 5)
        print(f"Quick mode: reduced grids, {n_folds}-fold cross-validation\n")

    models_dir = output_path / "models"
    models_dir.mkdir(parents=True, exist_ok=True)

    models = []
    for family in config.MODEL_FAMILIES:
        model = train_model(
            train,
            family,
            grid=QUICK_GRIDS[family] if quick else None,
            n_folds=n_folds,
            random_state=seed,
            threshold=threshold,
            n_jobs=n_jobs
        )
        model.cv_results.to_csv(models_dir / f"{family}_cv_results.csv", index=False)
        model.fold_results.to_csv(models_dir / f"{family}_fold_results.csv", index=False)
        models.append(model)

    # =========================================================================
    # STEP 6: MODEL SELECTION
    # =========================================================================
    print_section("STEP 6: MODEL SELECTION")

    best_model, comparison = select_best_model(models)
    comparison.to_csv(models_dir / "model_comparison.csv", index=False)

    print(f"Selected model: {best_model.label}")
    print(f"Selected parameters: {best_model.params or '(defaults)'}")

    # =========================================================================
    # STEP 7: MODEL EVALUATION
    # =========================================================================
    print_section("STEP 7: MODEL EVALUATION")

    evaluation_dir = output_path / "evaluation"
    eval_results = evaluate_model(
        best_model, test,
        threshold=threshold,
        output_dir=str(evaluation_dir)
    )
    eval_results['roc_curve'].to_csv(evaluation_dir / "roc_curve.csv", index=False)
    eval_results['threshold_analysis'].to_csv(evaluation_dir / "threshold_analysis.csv", index=False)

    for model in models:
        plot_variable_importance(
            model.variable_importance(),
            title=f'Variable Importance - {model.label}',
            save_path=evaluation_dir / f"{model.family}_importance.png"
        )
        if model.family == 'decision_tree':
            plot_decision_tree(model, save_path=evaluation_dir / "decision_tree.png")
    plt.close('all')

    # =========================================================================
    # PIPELINE COMPLETE
    # =========================================================================
    print("\n" + "="*80)
    print("  PIPELINE COMPLETE")
    print("="*80)

    print(f"""
Summary:
--------
• {len(prepared):,} complete discharges ({len(train):,} train / {len(test):,} test)
• Removed for redundancy: {', '.join(removed_features) or 'none'}
• Selected model: {best_model.label} (CV AUC {best_model.cv_auc:.3f})

Held-out Results (threshold {threshold}):
-----------------------------------------
• AUC-ROC:     {eval_results['auc_roc']:.3f}
• Sensitivity: {eval_results['sensitivity']:.3f}
• Specificity: {eval_results['specificity']:.3f}
• PPV:         {eval_results['ppv']:.3f}
• NPV:         {eval_results['npv']:.3f}

Output Files:
-------------
• Prepared Data: {output_path / 'data'}
• CV Tables & Comparison: {models_dir}
• Evaluation Plots: {evaluation_dir}

Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}
    """)

    return {
        'prepared': prepared,
        'removed_features': removed_features,
        'models': models,
        'best_model': best_model,
        'comparison': comparison,
        'eval_results': eval_results
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Extended Length-of-Stay Prediction Pipeline"
    )

    parser.add_argument('--data', required=True, help='Path to the discharge extract (CSV)')
    parser.add_argument('--output-dir', default='outputs', help='Directory for tables and plots')
    parser.add_argument('--seed', type=int, default=config.RANDOM_SEED, help='Random seed')
    parser.add_argument('--train-ratio', type=float, default=config.TRAIN_RATIO,
                        help='Proportion of records in the training partition')
    parser.add_argument('--folds', type=int, default=config.N_FOLDS,
                        help='Number of cross-validation folds')
    parser.add_argument('--correlation-cutoff', type=float, default=config.CORRELATION_CUTOFF,
                        help='Absolute correlation above which a numeric pair is redundant')
    parser.add_argument('--extended-stay-days', type=float, default=config.EXTENDED_STAY_DAYS,
                        help='Stays longer than this many days are extended')
    parser.add_argument('--threshold', type=float, default=config.CLASSIFICATION_THRESHOLD,
                        help='Probability threshold for sensitivity/specificity')
    parser.add_argument('--quick', action='store_true',
                        help='Small hyperparameter grids and 5-fold CV')
    parser.add_argument('--skip-eda', action='store_true',
                        help='Skip EDA visualizations and the PCA side study')
    parser.add_argument('--n-jobs', type=int, default=1,
                        help='Parallel cross-validation jobs (-1 = all cores)')
    parser.add_argument('--nrows', type=int, default=None,
                        help='Read only the first N records')

    args = parser.parse_args()

    results = main(
        data_path=args.data,
        output_dir=args.output_dir,
        seed=args.seed,
        train_ratio=args.train_ratio,
        n_folds=args.folds,
        correlation_cutoff=args.correlation_cutoff,
        extended_stay_days=args.extended_stay_days,
        threshold=args.threshold,
        quick=args.quick,
        skip_eda=args.skip_eda,
        n_jobs=args.n_jobs,
        nrows=args.nrows
    )
