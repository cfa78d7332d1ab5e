"""
Data Loading Module for SPARCS Hospital Inpatient Discharges
=============================================================

Clinical Context:
-----------------
The New York State SPARCS de-identified discharge file holds one row per
inpatient discharge with demographics, admission details, APR-DRG severity
and mortality-risk categories, charges, costs and up to three payment sources.

The goal is to predict an extended length of stay (more than 7 days), because:
1. Long stays drive a disproportionate share of inpatient cost
2. Early identification supports discharge planning and bed management
3. Payers and care managers can intervene before the stay extends

Source: https://health.data.ny.gov (Hospital Inpatient Discharges, SPARCS De-Identified)
"""

import re
import pandas as pd
from pathlib import Path
from typing import List, Optional

from .config import POSITIVE_LABEL, TARGET_COLUMN


def load_discharge_data(
    data_path: str,
    sep: Optional[str] = None,
    nrows: Optional[int] = None
) -> pd.DataFrame:
    """
    Load a SPARCS discharge extract and normalize its column names.

    Parameters
    ----------
    data_path : str
        Path to a delimited file (CSV, TSV, ...).
    sep : str, optional
        Field delimiter. If None, pandas sniffs it from the file.
    nrows : int, optional
        Read only the first ``nrows`` records (useful for quick runs).

    Returns
    -------
    pd.DataFrame
        Raw discharge table with snake_case column names. Categorical
        values are kept exactly as their label strings.
    """

    path = Path(data_path)
    if not path.exists():
        raise FileNotFoundError(f"Discharge data not found: {path}")

    print(f"Loading data from local file: {path}")

    df = pd.read_csv(
        path,
        sep=sep,
        engine='python' if sep is None else 'c',
        nrows=nrows,
        dtype=str,
        keep_default_na=True
    )
    df = normalize_column_names(df)

    _print_data_summary(df)

    return df


def normalize_column_names(df: pd.DataFrame) -> pd.DataFrame:
    """
    Convert column names to snake_case.

    'APR Severity of Illness Description' -> 'apr_severity_of_illness_description'
    'Payment Typology 1'                  -> 'payment_typology_1'
    """

    df = df.copy()
    df.columns = [_to_snake_case(col) for col in df.columns]
    return df


def _to_snake_case(name: str) -> str:
    name = re.sub(r'[^0-9a-zA-Z]+', '_', str(name).strip())
    return name.strip('_').lower()


def _print_data_summary(df: pd.DataFrame) -> None:
    """Print a summary of the loaded dataset."""

    print("\n" + "="*60)
    print("DATASET SUMMARY")
    print("="*60)
    print(f"Total discharges: {len(df):,}")
    print(f"Total columns: {df.shape[1]}")
    print(f"Memory usage: {df.memory_usage(deep=True).sum() / 1e6:.2f} MB")

    if 'length_of_stay' in df.columns:
        los = pd.to_numeric(
            df['length_of_stay'].astype(str).str.replace('+', '', regex=False).str.strip(),
            errors='coerce'
        )
        print(f"\nMedian length of stay: {los.median():.1f} days")
        print(f"Stays longer than 7 days: {(los > 7).mean()*100:.2f}%")

    print("="*60 + "\n")


def save_processed_data(
    prepared: pd.DataFrame,
    output_path: str,
    removed_features: Optional[List[str]] = None
) -> Path:
    """
    Write the prepared discharge table to CSV.

    The printed note records the label balance and any cost feature removed
    for redundancy, so the saved file can be matched to the run that made it.

    Returns
    -------
    Path
        Location of the written file.
    """

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    prepared.to_csv(output_path, index=False)
    print(f"Saved prepared discharges: {output_path}")
    print(f"   {len(prepared):,} discharges x {prepared.shape[1]} columns")

    if TARGET_COLUMN in prepared.columns:
        rate = (prepared[TARGET_COLUMN] == POSITIVE_LABEL).mean()
        print(f"   Extended stay rate: {rate*100:.2f}%")
    if removed_features is not None:
        print(f"   Removed for redundancy: {', '.join(removed_features) or 'none'}")

    return output_path
