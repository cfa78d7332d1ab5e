import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest

from extended_stay.preprocessing import prepare_features
from extended_stay.model import split_data, train_model


SEVERITY_LEVELS = ['Minor', 'Moderate', 'Major', 'Extreme']
AGE_GROUPS = ['0 to 17', '18 to 29', '30 to 49', '50 to 69', '70 or Older']
PAYERS = [
    'Medicare',
    'Medicaid',
    'Private Health Insurance',
    'Blue Cross/Blue Shield',
    'Self-Pay',
    'Federal/State/Local/VA',
    'Managed Care, Unspecified',
    'Miscellaneous/Other',
]

SMALL_GRIDS = {
    'logistic': [{}],
    'elastic_net': [
        {'l1_ratio': 0.5, 'lambda': 0.01},
        {'l1_ratio': 1.0, 'lambda': 0.05},
    ],
    'decision_tree': [
        {'ccp_alpha': 0.001},
        {'ccp_alpha': 0.011},
        {'ccp_alpha': 0.291},
    ],
}


def make_raw_discharges(n=1000, positive_rate=0.2, seed=0):
    """
    Synthetic SPARCS-style discharge table.

    Exactly ``round(n * positive_rate)`` stays are longer than 7 days; the
    longest stays are the ones with the highest latent risk, which depends on
    severity plus noise. Total costs track total charges almost perfectly.
    """

    rng = np.random.default_rng(seed)

    severity = rng.choice(SEVERITY_LEVELS, size=n, p=[0.35, 0.35, 0.2, 0.1])
    severity_score = pd.Series(severity).map({s: i for i, s in enumerate(SEVERITY_LEVELS)}).to_numpy()
    admission = rng.choice(['Emergency', 'Elective', 'Urgent'], size=n, p=[0.6, 0.25, 0.15])

    risk = severity_score + 0.5 * (admission == 'Emergency') + rng.normal(0, 1.0, n)
    n_positive = int(round(n * positive_rate))
    positive = np.zeros(n, dtype=bool)
    positive[np.argsort(-risk, kind='stable')[:n_positive]] = True

    length_of_stay = np.where(positive, rng.integers(8, 40, n), rng.integers(1, 8, n))
    charges = np.clip(20000 + 300 * length_of_stay + rng.normal(0, 6000, n), 500, None)
    costs = 0.4 * charges + rng.normal(0, 500, n)

    payment_2 = rng.choice(PAYERS, size=n).astype(object)
    payment_2[rng.random(n) < 0.5] = np.nan
    payment_3 = rng.choice(PAYERS, size=n).astype(object)
    payment_3[rng.random(n) < 0.8] = np.nan

    return pd.DataFrame({
        'age_group': rng.choice(AGE_GROUPS, size=n),
        'gender': rng.choice(['F', 'M'], size=n),
        'race': rng.choice(['White', 'Black/African American', 'Other Race'], size=n),
        'ethnicity': rng.choice(['Not Span/Hispanic', 'Spanish/Hispanic'], size=n, p=[0.8, 0.2]),
        'type_of_admission': admission,
        'apr_severity_of_illness_description': severity,
        'apr_risk_of_mortality': rng.choice(SEVERITY_LEVELS, size=n),
        'apr_medical_surgical_description': rng.choice(['Medical', 'Surgical'], size=n, p=[0.7, 0.3]),
        'total_charges': np.round(charges, 2),
        'total_costs': np.round(costs, 2),
        'payment_typology_1': rng.choice(PAYERS, size=n),
        'payment_typology_2': payment_2,
        'payment_typology_3': payment_3,
        'length_of_stay': length_of_stay,
    })


class ConstantModel:
    """Predicts the same probability of an extended stay for every record."""

    def __init__(self, probability):
        self.probability = probability

    def predict_proba(self, X):
        n = len(X)
        return np.column_stack([np.full(n, 1 - self.probability), np.full(n, self.probability)])


@pytest.fixture(scope='session')
def raw_discharges():
    return make_raw_discharges()


@pytest.fixture
def raw_factory():
    return make_raw_discharges


@pytest.fixture(scope='session')
def prepared(raw_discharges):
    prepared_df, _ = prepare_features(raw_discharges)
    return prepared_df


@pytest.fixture(scope='session')
def train_test(prepared):
    return split_data(prepared, seed=42, ratio=0.7)


@pytest.fixture(scope='session')
def trained_models(train_test):
    train, _ = train_test
    return {
        family: train_model(train, family, grid=grid, n_folds=10, random_state=42)
        for family, grid in SMALL_GRIDS.items()
    }
