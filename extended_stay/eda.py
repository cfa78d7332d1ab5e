"""
Exploratory Data Analysis Module
================================

Clinical Context:
-----------------
EDA on discharge data is used to:
1. Confirm the extended-stay prevalence (the class imbalance the models face)
2. Spot redundant numeric measures (charges vs costs)
3. See how extended stays distribute across severity, admission type and payer
"""

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Optional, Tuple
from pathlib import Path

from .config import INSURANCE_TYPES, NEGATIVE_LABEL, POSITIVE_LABEL, TARGET_COLUMN


# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def run_eda(
    prepared: pd.DataFrame,
    output_dir: str = "outputs/eda",
    save_plots: bool = True
) -> dict:
    """
    Run descriptive analysis of the prepared dataset.

    Parameters
    ----------
    prepared : pd.DataFrame
        Output of ``prepare_features``.
    output_dir : str
        Directory to save plots.
    save_plots : bool
        Whether to save plots to files.

    Returns
    -------
    dict
        Prevalence, categorical breakdown table and figures.
    """

    output_path = Path(output_dir)
    if save_plots:
        output_path.mkdir(parents=True, exist_ok=True)

    results = {}

    print("="*60)
    print("EXPLORATORY DATA ANALYSIS")
    print("="*60)

    # 1. Basic Statistics
    print("\n1. Dataset Overview")
    print(f"   Total discharges: {len(prepared):,}")
    print(f"   Total columns: {prepared.shape[1]}")
    results['n_samples'] = len(prepared)
    results['n_features'] = prepared.shape[1] - 1

    # 2. Target Distribution
    print("\n2. Target Variable Distribution")
    extended_rate = (prepared[TARGET_COLUMN] == POSITIVE_LABEL).mean() * 100
    print(f"   Extended stay rate (> 7 days): {extended_rate:.2f}%")
    results['extended_stay_rate'] = extended_rate

    # 3. Breakdown by category
    print("\n3. Extended-stay rate by category")
    breakdown = categorical_breakdown(prepared)
    results['categorical_breakdown'] = breakdown
    if save_plots:
        breakdown.to_csv(output_path / "categorical_breakdown.csv", index=False)

    # 4. Plots
    print("\n4. Generating Visualizations...")
    results['distribution_plot'] = plot_extended_stay_distribution(
        prepared[TARGET_COLUMN],
        save_path=output_path / "extended_stay_distribution.png" if save_plots else None
    )
    results['correlation_plot'] = plot_correlation_heatmap(
        prepared,
        save_path=output_path / "correlation_heatmap.png" if save_plots else None
    )

    print("\n" + "="*60)
    print("EDA Complete! Plots saved to:", output_path if save_plots else "Not saved")
    print("="*60)

    return results


def categorical_breakdown(prepared: pd.DataFrame) -> pd.DataFrame:
    """
    Count and extended-stay rate for every level of every categorical column.

    Returns
    -------
    pd.DataFrame
        Columns ``variable``, ``level``, ``n``, ``extended_stay_rate``.
    """

    is_extended = (prepared[TARGET_COLUMN] == POSITIVE_LABEL).astype(float)
    categorical_cols = [
        col for col in prepared.select_dtypes(include=['category', 'object']).columns
        if col != TARGET_COLUMN
    ]

    frames = []
    for col in categorical_cols:
        grouped = is_extended.groupby(prepared[col], observed=True).agg(['size', 'mean'])
        frames.append(pd.DataFrame({
            'variable': col,
            'level': grouped.index.astype(str),
            'n': grouped['size'].to_numpy(),
            'extended_stay_rate': grouped['mean'].to_numpy()
        }))

    if not frames:
        return pd.DataFrame(columns=['variable', 'level', 'n', 'extended_stay_rate'])

    return pd.concat(frames, ignore_index=True)


def plot_extended_stay_distribution(
    target: pd.Series,
    save_path: Optional[Path] = None,
    figsize: Tuple[int, int] = (10, 6)
) -> plt.Figure:
    """
    Bar chart and pie chart of extended vs routine stays.

    Clinical Context:
    -----------------
    Highlights the class imbalance that motivates down-sampling and
    AUC-based model selection.
    """

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    counts = target.value_counts().reindex([NEGATIVE_LABEL, POSITIVE_LABEL], fill_value=0)
    colors = ['#2ecc71', '#e74c3c']
    labels = ['Routine Stay\n(<= 7 days)', 'Extended Stay\n(> 7 days)']

    ax1 = axes[0]
    bars = ax1.bar(labels, counts.values, color=colors, edgecolor='black', linewidth=1.5)
    ax1.set_ylabel('Number of Discharges', fontsize=12)
    ax1.set_title('Length of Stay Distribution', fontsize=14, fontweight='bold')

    for bar, count in zip(bars, counts.values):
        ax1.text(bar.get_x() + bar.get_width()/2, bar.get_height(),
                 f'{count:,}', ha='center', va='bottom', fontsize=11, fontweight='bold')

    ax2 = axes[1]
    ax2.pie(
        counts.values,
        labels=['Routine', 'Extended'],
        autopct='%1.1f%%',
        colors=colors,
        explode=(0, 0.05),
        startangle=90,
        textprops={'fontsize': 11}
    )
    ax2.set_title('Extended Stay Rate', fontsize=14, fontweight='bold')

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"   Saved: {save_path}")

    return fig


def plot_correlation_heatmap(
    prepared: pd.DataFrame,
    save_path: Optional[Path] = None,
    figsize: Tuple[int, int] = (10, 8)
) -> plt.Figure:
    """
    Correlation heatmap of numeric features, insurance flags and the label.

    Yes/No columns are shown as 0/1 so payer mix can be read next to cost.
    """

    numeric = prepared.select_dtypes(include=[np.number]).copy()
    for col in list(INSURANCE_TYPES) + [TARGET_COLUMN]:
        if col in prepared.columns:
            numeric[col] = (prepared[col] == POSITIVE_LABEL).astype(int)

    correlation_matrix = numeric.corr()

    fig, ax = plt.subplots(figsize=figsize)
    mask = np.triu(np.ones_like(correlation_matrix, dtype=bool), k=1)

    sns.heatmap(
        correlation_matrix,
        mask=mask,
        annot=True,
        fmt='.2f',
        cmap='RdBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        ax=ax,
        cbar_kws={'label': 'Correlation Coefficient', 'shrink': 0.8},
        annot_kws={'size': 9}
    )

    ax.set_title('Feature Correlation Heatmap', fontsize=14, fontweight='bold', pad=20)
    plt.xticks(rotation=45, ha='right')
    plt.yticks(rotation=0)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"   Saved: {save_path}")

    return fig


def generate_eda_report(
    prepared: pd.DataFrame,
    removed_features: list,
    output_path: str = "outputs/eda/eda_report.txt"
) -> str:
    """
    Generate a text-based EDA report.

    Returns
    -------
    str
        Formatted EDA report.
    """

    is_extended = prepared[TARGET_COLUMN] == POSITIVE_LABEL
    rate = is_extended.mean()

    report_lines = [
        "=" * 70,
        "EXPLORATORY DATA ANALYSIS REPORT",
        "Hospital Inpatient Discharges: Extended Length of Stay",
        "=" * 70,
        "",
        "1. DATASET OVERVIEW",
        "-" * 40,
        f"   Complete discharges: {len(prepared):,}",
        f"   Predictors: {prepared.shape[1] - 1}",
        f"   Removed for redundancy: {', '.join(removed_features) or 'none'}",
        "",
        "2. TARGET VARIABLE ANALYSIS",
        "-" * 40,
        f"   Extended stays (> 7 days): {is_extended.sum():,} ({rate*100:.2f}%)",
        f"   Routine stays: {(~is_extended).sum():,} ({(1 - rate)*100:.2f}%)",
        f"   Class imbalance ratio: 1:{(1 - rate) / rate:.1f}" if rate > 0 else "   Class imbalance ratio: undefined",
        "",
        "3. PAYER MIX",
        "-" * 40,
    ]

    for name in INSURANCE_TYPES:
        if name in prepared.columns:
            share = (prepared[name] == POSITIVE_LABEL).mean()
            report_lines.append(f"   {name}: {share*100:.1f}% of discharges")

    report_lines.extend([
        "",
        "4. RECOMMENDATIONS",
        "-" * 40,
        "   - Rank models by ROC-AUC, not accuracy",
        "   - Down-sample the majority class inside each training fold",
        "",
        "=" * 70,
    ])

    report = "\n".join(report_lines)

    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        f.write(report)

    print(f"EDA report saved to: {output_path}")

    return report
