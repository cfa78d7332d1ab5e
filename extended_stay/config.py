"""
Pipeline Configuration
======================

Default settings for the extended length-of-stay pipeline. Every value here
can be overridden through function arguments or the command line in main.py.
"""

import numpy as np
from typing import Dict, List, Optional


# Reproducibility and partitioning
RANDOM_SEED = 42
TRAIN_RATIO = 0.7
N_FOLDS = 10

# Feature preparation
EXTENDED_STAY_DAYS = 7
CORRELATION_CUTOFF = 0.4

# Operating point for sensitivity / specificity reporting.
# A policy choice, not a tuned optimum.
CLASSIFICATION_THRESHOLD = 0.5

TARGET_COLUMN = 'extended_stay'
POSITIVE_LABEL = 'Yes'
NEGATIVE_LABEL = 'No'

CATEGORICAL_COLUMNS: List[str] = [
    'age_group',
    'gender',
    'race',
    'ethnicity',
    'type_of_admission',
    'apr_severity_of_illness_description',
    'apr_risk_of_mortality',
    'apr_medical_surgical_description',
]

COST_COLUMNS: List[str] = ['total_charges', 'total_costs']

PAYMENT_TYPOLOGY_COLUMNS: List[str] = [
    'payment_typology_1',
    'payment_typology_2',
    'payment_typology_3',
]

LENGTH_OF_STAY_COLUMN = 'length_of_stay'

# Insurance indicator -> SPARCS payment typology label
INSURANCE_TYPES: Dict[str, str] = {
    'medicare': 'Medicare',
    'medicaid': 'Medicaid',
    'private': 'Private Health Insurance',
    'blue_cross': 'Blue Cross/Blue Shield',
    'self_pay': 'Self-Pay',
    'government': 'Federal/State/Local/VA',
}

REQUIRED_COLUMNS: List[str] = (
    CATEGORICAL_COLUMNS
    + COST_COLUMNS
    + PAYMENT_TYPOLOGY_COLUMNS
    + [LENGTH_OF_STAY_COLUMN]
)

# =============================================================================
# Model families
# =============================================================================

MODEL_FAMILIES: List[str] = ['logistic', 'elastic_net', 'decision_tree']

# None = train on the fold as-is, 'down' = down-sample the majority class
DEFAULT_RESAMPLE_POLICY: Dict[str, Optional[str]] = {
    'logistic': None,
    'elastic_net': 'down',
    'decision_tree': 'down',
}

ELASTIC_NET_L1_RATIOS = np.linspace(0.0, 1.0, 10)
ELASTIC_NET_LAMBDAS = np.logspace(-4, 0, 10)

DECISION_TREE_CCP_ALPHAS = np.arange(0.001, 0.3, 0.01)

FAMILY_LABELS: Dict[str, str] = {
    'logistic': 'Logistic Regression (baseline)',
    'elastic_net': 'Elastic-Net Logistic Regression',
    'decision_tree': 'Decision Tree',
}
