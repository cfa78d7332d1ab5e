"""
Dimensionality Reduction Side Study
===================================

A principal component analysis of the prepared discharges, kept apart from
the predictive pipeline. PCA needs numbers, so severity, mortality risk and
age group are given their natural order (Minor < Moderate < Major < Extreme).
That ordinal coding is a modeling assumption that suits exploration but not
the final classifiers, which use one-hot encoding instead. Nothing in the
modeling modules imports this one.
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional

from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .config import NEGATIVE_LABEL, POSITIVE_LABEL, TARGET_COLUMN


SEVERITY_ORDER: Dict[str, int] = {
    'Minor': 1,
    'Moderate': 2,
    'Major': 3,
    'Extreme': 4,
}

AGE_GROUP_ORDER: Dict[str, int] = {
    '0 to 17': 1,
    '18 to 29': 2,
    '30 to 49': 3,
    '50 to 69': 4,
    '70 or Older': 5,
}

ORDINAL_COLUMNS: Dict[str, Dict[str, int]] = {
    'apr_severity_of_illness_description': SEVERITY_ORDER,
    'apr_risk_of_mortality': SEVERITY_ORDER,
    'age_group': AGE_GROUP_ORDER,
}


def encode_ordinal(prepared: pd.DataFrame) -> pd.DataFrame:
    """
    Numeric view of the prepared table for PCA.

    Ordered categories become their rank, Yes/No flags become 1/0, numeric
    columns are kept and every other categorical column is left out. Rows
    with a level missing from the ordinal maps are dropped.
    """

    numeric = prepared.select_dtypes(include=[np.number]).copy()

    for col, order in ORDINAL_COLUMNS.items():
        if col in prepared.columns:
            numeric[col] = prepared[col].astype(str).map(order)

    for col in prepared.columns:
        if col == TARGET_COLUMN or col in numeric.columns:
            continue
        levels = set(prepared[col].astype(str).unique())
        if levels <= {POSITIVE_LABEL, NEGATIVE_LABEL}:
            numeric[col] = (prepared[col] == POSITIVE_LABEL).astype(int)

    return numeric.dropna()


def run_pca(prepared: pd.DataFrame, n_components: Optional[int] = None) -> Dict:
    """
    Standardize the ordinal-encoded table and run PCA.

    Returns
    -------
    dict
        explained_variance_ratio (Series), cumulative_variance (Series),
        loadings (DataFrame: features x components) and scores (DataFrame).
    """

    encoded = encode_ordinal(prepared)
    if encoded.shape[1] < 2:
        raise ValueError("PCA needs at least two numeric or ordinal columns")

    scaled = StandardScaler().fit_transform(encoded)
    pca = PCA(n_components=n_components)
    scores = pca.fit_transform(scaled)

    components = [f'PC{i + 1}' for i in range(pca.n_components_)]
    explained = pd.Series(pca.explained_variance_ratio_, index=components)

    print("="*60)
    print("PCA SIDE STUDY (excluded from the predictive model)")
    print("="*60)
    for name, share in explained.head(5).items():
        print(f"   {name}: {share*100:.1f}% of variance")
    print("="*60 + "\n")

    return {
        'explained_variance_ratio': explained,
        'cumulative_variance': explained.cumsum(),
        'loadings': pd.DataFrame(pca.components_.T, index=encoded.columns, columns=components),
        'scores': pd.DataFrame(scores, index=encoded.index, columns=components),
    }
