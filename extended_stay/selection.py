"""
Model Selection Module
======================

Picks one model out of the tuned families. Selection uses the
cross-validated ROC-AUC only, so the test partition stays untouched until
the final evaluation.

AUC says nothing about the operating point, so when two families tie on
AUC the one whose sensitivity and specificity are closer together (the
better-balanced classifier at the 0.5 threshold) is preferred.
"""

import numpy as np
import pandas as pd
from typing import List, Sequence, Tuple

from .model import TrainedModel


AUC_TIE_TOLERANCE = 1e-12


def compare_models(models: Sequence[TrainedModel]) -> pd.DataFrame:
    """
    Side-by-side cross-validated performance of the tuned families.

    Returns
    -------
    pd.DataFrame
        One row per model in input order: model, family, cv_auc,
        cv_sensitivity, cv_specificity, balance_gap
        (|sensitivity - specificity|) and the selected hyperparameters.
    """

    rows = []
    for model in models:
        rows.append({
            'model': model.label,
            'family': model.family,
            'cv_auc': model.cv_auc,
            'cv_sensitivity': model.cv_sensitivity,
            'cv_specificity': model.cv_specificity,
            'balance_gap': abs(model.cv_sensitivity - model.cv_specificity),
            'resample_policy': model.resample_policy or 'none',
            'params': model.params
        })

    return pd.DataFrame(rows)


def select_best_model(models: Sequence[TrainedModel]) -> Tuple[TrainedModel, pd.DataFrame]:
    """
    Select the model with the highest cross-validated ROC-AUC.

    Ties on AUC go to the smaller sensitivity/specificity gap, then to the
    earlier model in ``models``.

    Returns
    -------
    best : TrainedModel
        The selected model.
    comparison : pd.DataFrame
        ``compare_models`` table with a boolean ``selected`` column.
    """

    models: List[TrainedModel] = list(models)
    if not models:
        raise ValueError("No trained models to select from")

    comparison = compare_models(models)

    best_auc = comparison['cv_auc'].max()
    tied = comparison[np.isclose(comparison['cv_auc'], best_auc, rtol=0, atol=AUC_TIE_TOLERANCE)]
    winner = int(tied['balance_gap'].idxmin())

    comparison['selected'] = comparison.index == winner

    print("="*60)
    print("MODEL COMPARISON (cross-validated)")
    print("="*60)
    for _, row in comparison.iterrows():
        marker = "✓" if row['selected'] else " "
        print(f"  {marker} {row['model']:<35} AUC={row['cv_auc']:.3f}  "
              f"Sens={row['cv_sensitivity']:.3f}  Spec={row['cv_specificity']:.3f}")
    if len(tied) > 1:
        print(f"\n  {len(tied)} models tied on AUC; chose the smallest sensitivity/specificity gap")
    print("="*60 + "\n")

    return models[winner], comparison
