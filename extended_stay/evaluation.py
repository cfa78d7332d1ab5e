"""
Model Evaluation Module
=======================

Clinical Context:
-----------------
Roughly one discharge in five has an extended stay, so accuracy alone is
misleading: predicting "No" for everyone is already ~80% accurate.
We therefore report:

1. Sensitivity (True Positive Rate)
   - Measures: What % of extended stays did we flag?
   - Cost of error: Discharge planning starts too late

2. Specificity (True Negative Rate)
   - Measures: What % of short stays were left alone?
   - Cost of error: Care-management effort spent on routine patients

3. Positive / Negative Predictive Value
   - Measures: How trustworthy is a "Yes" / "No" flag on the ward?

4. AUC-ROC: Threshold-free discrimination
   - Interpretation: Probability that a random extended stay is ranked
     above a random short stay. 0.5 is no better than chance.

Metrics whose denominator is zero are reported as NaN (undefined), never
as zero.
"""

import warnings
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Dict, Tuple, Optional, Sequence
from pathlib import Path

from sklearn.metrics import confusion_matrix, roc_curve, auc
from sklearn.tree import plot_tree

from .config import CLASSIFICATION_THRESHOLD, NEGATIVE_LABEL, POSITIVE_LABEL
from .preprocessing import split_features_target


class UndefinedMetricWarning(UserWarning):
    """A metric could not be computed because its denominator is zero."""


def evaluate_model(
    model,
    test: pd.DataFrame,
    threshold: float = CLASSIFICATION_THRESHOLD,
    output_dir: Optional[str] = None
) -> Dict:
    """
    Evaluate the selected model on the held-out test partition.

    Parameters
    ----------
    model : TrainedModel
        Any object with ``predict_proba(X)`` returning class probabilities
        ordered [No, Yes].
    test : pd.DataFrame
        Prepared test partition including the ``extended_stay`` label.
    threshold : float, default=0.5
        Probability at or above which a stay is predicted extended.
    output_dir : str, optional
        If given, confusion-matrix and ROC plots are written there.

    Returns
    -------
    dict
        Confusion-matrix counts, accuracy, sensitivity, specificity, ppv,
        npv, auc_roc, roc_curve (DataFrame), threshold_analysis (DataFrame),
        predictions (DataFrame) and undefined_metrics (list).

    Clinical Note:
    --------------
    The 0.5 threshold is a reporting convention. The threshold table shows
    how sensitivity and specificity trade off if a ward prefers another
    operating point; it never changes the reported metrics.
    """

    X_test, y_test = split_features_target(test)

    print("="*60)
    print("MODEL EVALUATION")
    print("="*60)

    y_pred_proba = np.asarray(model.predict_proba(X_test))[:, 1]
    y_pred = (y_pred_proba >= threshold).astype(int)

    results = compute_classification_metrics(y_test, y_pred)
    results['threshold'] = threshold

    # 1. Confusion Matrix
    print("\n1. CONFUSION MATRIX (positive class = 'Yes')")
    print("-"*40)
    print(f"   TP: {results['tp']:,}   FN: {results['fn']:,}")
    print(f"   FP: {results['fp']:,}   TN: {results['tn']:,}")

    # 2. Threshold metrics
    print("\n2. CLASSIFICATION METRICS")
    print("-"*40)
    for name in ['accuracy', 'sensitivity', 'specificity', 'ppv', 'npv']:
        print(f"   {name.upper():<12} {_format_metric(results[name])}")

    # 3. AUC-ROC
    roc_df, roc_auc = compute_roc_curve(y_test, y_pred_proba)
    results['roc_curve'] = roc_df
    results['auc_roc'] = roc_auc
    if np.isnan(roc_auc):
        results['undefined_metrics'].append('auc_roc')

    print(f"\n3. AUC-ROC: {_format_metric(roc_auc)}")

    # 4. Threshold analysis
    results['threshold_analysis'] = threshold_analysis(y_test, y_pred_proba)

    results['predictions'] = pd.DataFrame({
        'actual': np.where(y_test.to_numpy() == 1, POSITIVE_LABEL, NEGATIVE_LABEL),
        'predicted': np.where(y_pred == 1, POSITIVE_LABEL, NEGATIVE_LABEL),
        'probability': y_pred_proba
    }, index=test.index)

    if output_dir is not None:
        print("\n4. GENERATING EVALUATION PLOTS...")
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        results['confusion_matrix_plot'] = plot_confusion_matrix(
            results, save_path=output_path / "confusion_matrix.png"
        )
        results['roc_curve_plot'] = plot_roc_curve(
            roc_df, roc_auc, save_path=output_path / "roc_curve.png"
        )

    if results['undefined_metrics']:
        print(f"\n   ⚠ Undefined metrics: {', '.join(results['undefined_metrics'])}")

    print("="*60 + "\n")

    return results


def compute_confusion_counts(y_true, y_pred) -> Dict[str, int]:
    """Confusion-matrix counts with 1 ('Yes') as the positive class."""

    cm = confusion_matrix(np.asarray(y_true), np.asarray(y_pred), labels=[0, 1])
    tn, fp, fn, tp = cm.ravel()
    return {'tp': int(tp), 'fp': int(fp), 'tn': int(tn), 'fn': int(fn)}


def compute_classification_metrics(
    y_true,
    y_pred,
    warn: bool = True
) -> Dict:
    """
    Threshold metrics from true and predicted 0/1 labels.

    Any ratio with a zero denominator is NaN and its name is listed under
    ``undefined_metrics``. With ``warn=True`` an UndefinedMetricWarning is
    also emitted.
    """

    counts = compute_confusion_counts(y_true, y_pred)
    tp, fp, tn, fn = counts['tp'], counts['fp'], counts['tn'], counts['fn']

    ratios = {
        'accuracy': (tp + tn, tp + tn + fp + fn),
        'sensitivity': (tp, tp + fn),
        'specificity': (tn, tn + fp),
        'ppv': (tp, tp + fp),
        'npv': (tn, tn + fn),
    }

    results: Dict = dict(counts)
    results['undefined_metrics'] = []

    for name, (numerator, denominator) in ratios.items():
        if denominator == 0:
            results[name] = float('nan')
            results['undefined_metrics'].append(name)
        else:
            results[name] = numerator / denominator

    if warn and results['undefined_metrics']:
        warnings.warn(
            f"Undefined metrics (zero denominator): {results['undefined_metrics']} "
            f"for counts {counts}",
            UndefinedMetricWarning
        )

    return results


def compute_roc_curve(y_true, y_pred_proba) -> Tuple[pd.DataFrame, float]:
    """
    ROC curve from a full threshold sweep and its trapezoidal area.

    Uses the same curve construction as ``sklearn.metrics.roc_auc_score``,
    so the test AUC is comparable with the cross-validated AUC.
    Returns a NaN area when only one class is present.
    """

    y_true = np.asarray(y_true)
    y_pred_proba = np.asarray(y_pred_proba)

    if np.unique(y_true).size < 2:
        warnings.warn(
            "ROC curve undefined: test labels contain a single class",
            UndefinedMetricWarning
        )
        return pd.DataFrame(columns=['fpr', 'tpr', 'threshold']), float('nan')

    fpr, tpr, thresholds = roc_curve(y_true, y_pred_proba, drop_intermediate=False)
    roc_df = pd.DataFrame({
        'fpr': fpr,
        'tpr': tpr,
        'threshold': np.clip(thresholds, 0.0, 1.0)
    })

    return roc_df, float(auc(fpr, tpr))


def threshold_analysis(
    y_true,
    y_pred_proba,
    thresholds: Optional[Sequence[float]] = None
) -> pd.DataFrame:
    """
    Sensitivity, specificity and predictive values over a grid of thresholds.

    Parameters
    ----------
    y_true : array-like
        True 0/1 labels.
    y_pred_proba : array-like
        Predicted probability of an extended stay.
    thresholds : sequence of float, optional
        Defaults to 0.10, 0.15, ..., 0.90.

    Returns
    -------
    pd.DataFrame
        One row per threshold, plus Youden's J (sensitivity + specificity - 1).
    """

    if thresholds is None:
        thresholds = np.round(np.arange(0.1, 0.91, 0.05), 2)

    y_pred_proba = np.asarray(y_pred_proba)
    rows = []

    for thresh in thresholds:
        y_pred = (y_pred_proba >= thresh).astype(int)
        metrics = compute_classification_metrics(y_true, y_pred, warn=False)
        rows.append({
            'threshold': thresh,
            'sensitivity': metrics['sensitivity'],
            'specificity': metrics['specificity'],
            'ppv': metrics['ppv'],
            'npv': metrics['npv'],
            'youden_j': metrics['sensitivity'] + metrics['specificity'] - 1
        })

    return pd.DataFrame(rows)


def plot_confusion_matrix(
    counts: Dict,
    save_path: Optional[Path] = None,
    figsize: Tuple[int, int] = (8, 7)
) -> plt.Figure:
    """
    Plot the confusion matrix with 'Yes' as the positive class.

    Clinical Context:
    -----------------
    - True Positives (TP): Extended stays flagged early → discharge planning starts on admission
    - False Negatives (FN): Missed extended stays → planning starts late
    - False Positives (FP): Routine stays flagged → wasted care-management effort
    - True Negatives (TN): Routine stays left on the standard pathway
    """

    cm = np.array([
        [counts['tn'], counts['fp']],
        [counts['fn'], counts['tp']]
    ])

    fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        cm,
        annot=True,
        fmt='d',
        cmap='Blues',
        ax=ax,
        annot_kws={'size': 16},
        square=True
    )

    ax.set_xlabel('Predicted Label', fontsize=14)
    ax.set_ylabel('True Label', fontsize=14)
    ax.set_title('Confusion Matrix\nExtended Length of Stay (> 7 days)', fontsize=16, fontweight='bold')
    ax.set_xticklabels([NEGATIVE_LABEL, POSITIVE_LABEL], fontsize=12)
    ax.set_yticklabels([NEGATIVE_LABEL, POSITIVE_LABEL], fontsize=12, rotation=0)

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"   Saved: {save_path}")

    return fig


def plot_roc_curve(
    roc_df: pd.DataFrame,
    roc_auc: float,
    save_path: Optional[Path] = None,
    figsize: Tuple[int, int] = (9, 8)
) -> plt.Figure:
    """
    Plot the ROC curve with its AUC.

    AUC Interpretation:
    - 0.5: No discrimination (random guessing)
    - 0.7-0.8: Acceptable discrimination
    - 0.8-0.9: Good discrimination
    - >0.9: Excellent discrimination
    """

    fig, ax = plt.subplots(figsize=figsize)

    ax.plot(roc_df['fpr'], roc_df['tpr'], color='#3498db', lw=3,
            label=f'ROC Curve (AUC = {roc_auc:.3f})')
    ax.plot([0, 1], [0, 1], color='gray', lw=2, linestyle='--',
            label='Random Classifier (AUC = 0.5)')
    ax.fill_between(roc_df['fpr'], roc_df['tpr'], alpha=0.3, color='#3498db')

    ax.set_xlim([0.0, 1.0])
    ax.set_ylim([0.0, 1.05])
    ax.set_xlabel('False Positive Rate (1 - Specificity)', fontsize=14)
    ax.set_ylabel('True Positive Rate (Sensitivity)', fontsize=14)
    ax.set_title('ROC Curve - Extended Stay Model', fontsize=16, fontweight='bold')
    ax.legend(loc='lower right', fontsize=12)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"   Saved: {save_path}")

    return fig


def plot_variable_importance(
    importance: pd.DataFrame,
    top_n: int = 15,
    title: str = 'Variable Importance',
    save_path: Optional[Path] = None,
    figsize: Tuple[int, int] = (10, 8)
) -> plt.Figure:
    """Horizontal bar chart of the ``top_n`` most important features."""

    top = importance.head(top_n).iloc[::-1]

    fig, ax = plt.subplots(figsize=figsize)
    ax.barh(top['feature'], top['importance'], color='#2ecc71', edgecolor='black')
    ax.set_xlabel('Importance', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"   Saved: {save_path}")

    return fig


def plot_decision_tree(
    model,
    max_depth: Optional[int] = 4,
    save_path: Optional[Path] = None,
    figsize: Tuple[int, int] = (20, 10)
) -> plt.Figure:
    """
    Render a fitted decision-tree model.

    Parameters
    ----------
    model : TrainedModel
        Artifact of the ``decision_tree`` family.
    max_depth : int, optional
        Depth shown in the diagram; deeper nodes are elided.
    """

    if model.family != 'decision_tree':
        raise ValueError(f"Cannot draw a tree for model family '{model.family}'")

    classifier = model.estimator.named_steps['classifier']
    feature_names = model.estimator.named_steps['preprocessor'].get_feature_names_out()

    fig, ax = plt.subplots(figsize=figsize)
    plot_tree(
        classifier,
        feature_names=list(feature_names),
        class_names=[NEGATIVE_LABEL, POSITIVE_LABEL],
        filled=True,
        rounded=True,
        max_depth=max_depth,
        fontsize=9,
        ax=ax
    )
    ax.set_title('Decision Tree - Extended Length of Stay', fontsize=16, fontweight='bold')

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"   Saved: {save_path}")

    return fig


def _format_metric(value: float) -> str:
    return 'undefined' if np.isnan(value) else f'{value:.3f}'
