"""
Feature Preparation Module
==========================

Clinical Context:
-----------------
Administrative discharge data needs a few careful transformations before
modeling:
1. Length of stay is the outcome, so it is turned into a binary label and removed
2. Up to three payment sources per discharge are collapsed into insurance flags
3. Charges and costs measure almost the same thing and must not both be kept

Key Preparation Steps:
1. Validate and select the intake columns
2. Create binary target (length of stay > 7 days)
3. Derive six non-exclusive insurance indicators from the payment typologies
4. Drop incomplete records (complete-case analysis)
5. Remove redundant numeric predictors with a correlation screen
"""

import numpy as np
import pandas as pd
from typing import Tuple, List, Optional

from .config import (
    CATEGORICAL_COLUMNS,
    COST_COLUMNS,
    CORRELATION_CUTOFF,
    EXTENDED_STAY_DAYS,
    INSURANCE_TYPES,
    LENGTH_OF_STAY_COLUMN,
    NEGATIVE_LABEL,
    PAYMENT_TYPOLOGY_COLUMNS,
    POSITIVE_LABEL,
    REQUIRED_COLUMNS,
    TARGET_COLUMN,
)


class DataValidationError(ValueError):
    """Raised when the raw discharge table cannot be prepared for modeling."""


def prepare_features(
    raw: pd.DataFrame,
    extended_stay_days: float = EXTENDED_STAY_DAYS,
    correlation_cutoff: float = CORRELATION_CUTOFF,
    drop_features: Optional[List[str]] = None
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Complete feature preparation for extended-stay prediction.

    Parameters
    ----------
    raw : pd.DataFrame
        Raw discharge table with snake_case column names.
    extended_stay_days : float, default=7
        Stays strictly longer than this are labelled 'Yes'.
    correlation_cutoff : float, default=0.4
        Absolute Pearson correlation above which a numeric pair is redundant.
    drop_features : list, optional
        Reviewed, explicit list of numeric features to remove. If None, the
        features flagged by the correlation screen are removed.

    Returns
    -------
    prepared : pd.DataFrame
        Complete-case table: categorical intake fields, insurance indicators,
        the surviving cost column(s) and the ``extended_stay`` label.
    removed_features : list
        Numeric features removed for redundancy.

    Clinical Note:
    --------------
    Total charges and total costs are almost perfectly correlated in SPARCS.
    Keeping both would split one signal over two coefficients in the linear
    models and make the coefficients unstable.
    """

    print("Step 1: Validating intake columns...")
    validate_columns(raw)

    df = raw[REQUIRED_COLUMNS].copy()
    df = df.replace(r'^\s*$', np.nan, regex=True)

    for col in CATEGORICAL_COLUMNS + PAYMENT_TYPOLOGY_COLUMNS:
        check_label_strings(df[col], col)

    print("Step 2: Creating binary target variable...")
    length_of_stay = parse_numeric(df[LENGTH_OF_STAY_COLUMN], LENGTH_OF_STAY_COLUMN)
    target = create_binary_target(length_of_stay, extended_stay_days)

    print("Step 3: Deriving insurance indicators...")
    indicators = encode_insurance_indicators(df[PAYMENT_TYPOLOGY_COLUMNS])

    prepared = pd.DataFrame(index=df.index)
    for col in CATEGORICAL_COLUMNS:
        prepared[col] = _strip_strings(df[col]).astype('category')
    for col in COST_COLUMNS:
        prepared[col] = parse_numeric(df[col], col)
    prepared = pd.concat([prepared, indicators], axis=1)
    prepared[TARGET_COLUMN] = target

    empty_columns = [col for col in prepared.columns if prepared[col].isna().all()]
    if empty_columns:
        raise DataValidationError(
            f"Columns contain no values at all: {empty_columns}"
        )

    print("Step 4: Dropping incomplete records...")
    n_before = len(prepared)
    prepared = prepared.dropna().reset_index(drop=True)
    print(f"   Dropped {n_before - len(prepared):,} of {n_before:,} records with missing values")

    if prepared.empty:
        raise DataValidationError("No complete records remain after dropping missing values")

    print("Step 5: Screening numeric features for redundancy...")
    screened = find_correlated_features(prepared, cutoff=correlation_cutoff)

    if drop_features is None:
        removed_features = screened
    else:
        unknown = [f for f in drop_features if f not in prepared.columns]
        if unknown:
            raise DataValidationError(f"Cannot drop unknown features: {unknown}")
        removed_features = list(drop_features)
        if set(removed_features) != set(screened):
            print(f"   Note: explicit removal {removed_features} differs from screen {screened}")

    prepared = prepared.drop(columns=removed_features)

    print(f"\nPreparation complete!")
    print(f"Final dataset shape: {prepared.shape}")
    print(f"Removed for redundancy: {removed_features}")

    return prepared, removed_features


def validate_columns(raw: pd.DataFrame) -> None:
    """Fail fast when intake columns are missing."""

    missing = [col for col in REQUIRED_COLUMNS if col not in raw.columns]
    if missing:
        raise DataValidationError(
            f"Missing required columns: {missing}. "
            f"Available columns: {raw.columns.tolist()}"
        )


def check_label_strings(values: pd.Series, column: str) -> None:
    """
    Categorical fields must hold label strings.

    A number where a label is expected (e.g. 3.75 as an illness severity)
    cannot be mapped to a category level and raises DataValidationError.
    """

    invalid = values.notna() & ~values.map(lambda v: isinstance(v, str))
    if invalid.any():
        examples = values[invalid].unique()[:5].tolist()
        raise DataValidationError(
            f"Column '{column}' has {invalid.sum()} unparseable categorical values, e.g. {examples}"
        )


def parse_numeric(values: pd.Series, column: str) -> pd.Series:
    """
    Parse a numeric column that may hold SPARCS formatting.

    Currency symbols, thousands separators and the open-ended '120 +'
    length-of-stay form are stripped. Missing values stay missing; any
    other unparseable value raises DataValidationError.
    """

    cleaned = values.astype(str).str.replace(r'[$,+\s]', '', regex=True)
    parsed = pd.to_numeric(cleaned, errors='coerce').astype(float)

    unparseable = parsed.isna() & values.notna()
    if unparseable.any():
        examples = values[unparseable].unique()[:5].tolist()
        raise DataValidationError(
            f"Column '{column}' has {unparseable.sum()} unparseable values, e.g. {examples}"
        )

    return parsed


def create_binary_target(
    length_of_stay: pd.Series,
    threshold_days: float = EXTENDED_STAY_DAYS
) -> pd.Series:
    """
    Convert length of stay to the extended-stay label.

    Parameters
    ----------
    length_of_stay : pd.Series
        Length of stay in days (missing values allowed).
    threshold_days : float, default=7
        Stays strictly longer than this are extended.

    Returns
    -------
    pd.Series
        Categorical 'Yes' / 'No'; missing where the length of stay is missing.
    """

    labels = np.where(length_of_stay > threshold_days, POSITIVE_LABEL, NEGATIVE_LABEL)
    target = pd.Series(
        pd.Categorical(labels, categories=[NEGATIVE_LABEL, POSITIVE_LABEL]),
        index=length_of_stay.index,
        name=TARGET_COLUMN
    )
    target[length_of_stay.isna()] = np.nan

    positive_rate = (target == POSITIVE_LABEL).sum() / max(target.notna().sum(), 1) * 100
    print(f"Positive class (stay > {threshold_days:g} days): {positive_rate:.2f}%")

    return target


def encode_insurance_indicators(typology: pd.DataFrame) -> pd.DataFrame:
    """
    Derive multi-hot insurance indicators from payment typology fields.

    A discharge is 'Yes' for an insurance type when any of its typology
    fields equals that type. Missing typology values never match, and a
    record may be 'Yes' for several types at once.
    """

    typology = typology.apply(_strip_strings)

    indicators = pd.DataFrame(index=typology.index)
    for name, label in INSURANCE_TYPES.items():
        matches = typology.eq(label).any(axis=1)
        indicators[name] = pd.Categorical(
            np.where(matches, POSITIVE_LABEL, NEGATIVE_LABEL),
            categories=[NEGATIVE_LABEL, POSITIVE_LABEL]
        )

    return indicators


def find_correlated_pairs(
    df: pd.DataFrame,
    cutoff: float = CORRELATION_CUTOFF
) -> pd.DataFrame:
    """
    List numeric feature pairs whose absolute correlation exceeds the cutoff.

    Returns
    -------
    pd.DataFrame
        Columns ``feature_a``, ``feature_b``, ``correlation`` sorted by
        decreasing absolute correlation (ties keep column order).
    """

    corr = _numeric_correlation(df)
    columns = corr.columns.tolist()

    pairs = []
    for i, a in enumerate(columns):
        for b in columns[i + 1:]:
            value = corr.loc[a, b]
            if abs(value) > cutoff:
                pairs.append({'feature_a': a, 'feature_b': b, 'correlation': value})

    pairs_df = pd.DataFrame(pairs, columns=['feature_a', 'feature_b', 'correlation'])
    if not pairs_df.empty:
        order = np.argsort(-pairs_df['correlation'].abs().to_numpy(), kind='stable')
        pairs_df = pairs_df.iloc[order].reset_index(drop=True)

    return pairs_df


def find_correlated_features(
    df: pd.DataFrame,
    cutoff: float = CORRELATION_CUTOFF
) -> List[str]:
    """
    Greedy redundancy screen over numeric features.

    Pairs above the cutoff are visited from the strongest correlation down.
    While both members are still kept, the one with the higher mean absolute
    correlation to every other numeric feature is removed; on a tie the
    later column goes. The result only depends on the data and column order.
    """

    corr = _numeric_correlation(df).abs()
    pairs = find_correlated_pairs(df, cutoff)

    for _, row in pairs.iterrows():
        print(f"   |r| = {abs(row['correlation']):.3f}: {row['feature_a']} ~ {row['feature_b']}")

    removed: List[str] = []
    for _, row in pairs.iterrows():
        a, b = row['feature_a'], row['feature_b']
        if a in removed or b in removed:
            continue
        mean_a = _mean_off_diagonal(corr, a)
        mean_b = _mean_off_diagonal(corr, b)
        removed.append(a if mean_a > mean_b else b)

    return removed


def split_features_target(df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Separate predictors from the label.

    Returns
    -------
    X : pd.DataFrame
        Every column except ``extended_stay``.
    y : pd.Series
        1 for an extended stay, 0 otherwise.
    """

    if TARGET_COLUMN not in df.columns:
        raise DataValidationError(f"Target column '{TARGET_COLUMN}' not found")

    X = df.drop(columns=[TARGET_COLUMN])
    y = (df[TARGET_COLUMN] == POSITIVE_LABEL).astype(int).rename(TARGET_COLUMN)
    return X, y


def _numeric_correlation(df: pd.DataFrame) -> pd.DataFrame:
    numeric = df.select_dtypes(include=[np.number]).dropna()
    return numeric.corr().fillna(0.0)


def _mean_off_diagonal(corr: pd.DataFrame, feature: str) -> float:
    others = corr.loc[feature].drop(feature)
    return float(others.mean()) if len(others) else 0.0


def _strip_strings(values: pd.Series) -> pd.Series:
    return values.map(lambda v: v.strip() if isinstance(v, str) else v)
