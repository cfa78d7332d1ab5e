"""
Model Training Module
=====================

Clinical Context:
-----------------
Three model families are compared for extended-stay prediction:
1. Logistic regression: the transparent baseline every clinician can read
2. Elastic-net logistic regression: shrinks and selects among many dummies
3. Decision tree: explicit if-then rules and a variable-importance ranking

Key Consideration: Class Imbalance
----------------------------------
Only about one discharge in five has an extended stay. The regularized and
tree models are trained on down-sampled data (the majority class is reduced
to the size of the minority class) so they do not learn to answer "No" for
everyone. Down-sampling happens inside each cross-validation fold, on the
fitting part only; held-out folds keep the true prevalence.

The baseline is trained without resampling on purpose, to show the effect
of imbalance.

Model Selection Within a Family
-------------------------------
Every hyperparameter configuration is scored with stratified 10-fold
cross-validation, ranked by mean ROC-AUC (not accuracy), and the winning
configuration is refit on the full training partition.
"""

import re
import warnings
import numpy as np
import pandas as pd
from typing import Any, Dict, List, Optional, Tuple, Union

from joblib import Parallel, delayed
from imblearn.under_sampling import RandomUnderSampler
import sklearn
from sklearn.compose import ColumnTransformer, make_column_selector
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import roc_auc_score
from sklearn.model_selection import ParameterGrid, StratifiedKFold, train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler
from sklearn.tree import DecisionTreeClassifier

from .config import (
    CLASSIFICATION_THRESHOLD,
    DECISION_TREE_CCP_ALPHAS,
    DEFAULT_RESAMPLE_POLICY,
    ELASTIC_NET_L1_RATIOS,
    ELASTIC_NET_LAMBDAS,
    FAMILY_LABELS,
    MODEL_FAMILIES,
    N_FOLDS,
    POSITIVE_LABEL,
    RANDOM_SEED,
    TARGET_COLUMN,
    TRAIN_RATIO,
)
from .evaluation import compute_classification_metrics
from .preprocessing import split_features_target


RESAMPLE_POLICIES = (None, 'down')

# Marker for "use the family's default resampling policy"
DEFAULT = 'default'


class InsufficientClassSupportError(ValueError):
    """A class has too few records to stratify the requested split or folds."""


class NoValidConfigurationError(RuntimeError):
    """Every hyperparameter configuration failed during cross-validation."""


# =============================================================================
# Partitioning
# =============================================================================

def split_data(
    prepared: pd.DataFrame,
    seed: int = RANDOM_SEED,
    ratio: float = TRAIN_RATIO
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Stratified train/test split of the prepared dataset.

    Parameters
    ----------
    prepared : pd.DataFrame
        Output of ``prepare_features``.
    seed : int, default=42
        Random seed. Same seed and same input order give the same split.
    ratio : float, default=0.7
        Proportion of records placed in the training partition.

    Returns
    -------
    train, test : pd.DataFrame
        Disjoint partitions covering every record; original index preserved.
    """

    if not 0 < ratio < 1:
        raise ValueError(f"Split ratio must lie strictly between 0 and 1, got {ratio}")

    counts = prepared[TARGET_COLUMN].value_counts()
    counts = counts[counts > 0]
    if len(counts) < 2:
        raise InsufficientClassSupportError(
            "Insufficient class support: the prepared data holds a single class"
        )
    if counts.min() < 2:
        raise InsufficientClassSupportError(
            f"Insufficient class support: class '{counts.idxmin()}' has "
            f"{counts.min()} record(s), at least 2 are needed to stratify"
        )

    n_train = int(np.floor(ratio * len(prepared)))
    n_test = len(prepared) - n_train
    if min(n_train, n_test) < len(counts):
        raise InsufficientClassSupportError(
            f"Insufficient class support: a {ratio:.0%} split of {len(prepared)} "
            f"records cannot hold every class in both partitions"
        )

    print(f"Splitting data ({ratio:.0%}/{1 - ratio:.0%}, stratified, seed={seed})...")

    train, test = train_test_split(
        prepared,
        train_size=ratio,
        random_state=seed,
        stratify=prepared[TARGET_COLUMN]
    )

    print(f"   Training set: {len(train):,} samples")
    print(f"   Test set: {len(test):,} samples")
    print(f"   Training positive rate: {_positive_rate(train)*100:.2f}%")
    print(f"   Test positive rate: {_positive_rate(test)*100:.2f}%")

    return train, test


# =============================================================================
# Hyperparameter grids and estimators
# =============================================================================

def build_param_grid(family: str) -> List[Dict[str, float]]:
    """
    Default hyperparameter grid of a model family, as a list of configurations.

    - logistic: a single configuration (no tuning)
    - elastic_net: 10 mixing values ``l1_ratio`` in [0, 1] x 10 penalty
      strengths ``lambda`` on a log scale = 100 configurations
    - decision_tree: cost-complexity ``ccp_alpha`` from 0.001 to 0.291 by 0.01
    """

    _check_family(family)

    if family == 'logistic':
        return [{}]

    if family == 'elastic_net':
        return [
            {'l1_ratio': round(float(l1_ratio), 6), 'lambda': float(lam)}
            for l1_ratio in ELASTIC_NET_L1_RATIOS
            for lam in ELASTIC_NET_LAMBDAS
        ]

    return [{'ccp_alpha': round(float(alpha), 3)} for alpha in DECISION_TREE_CCP_ALPHAS]


def build_estimator(
    family: str,
    params: Dict[str, Any],
    n_samples: int,
    random_state: int = RANDOM_SEED
) -> Pipeline:
    """
    Unfitted preprocessing + classifier pipeline for one configuration.

    Categorical columns are one-hot encoded and (for the linear families)
    numeric columns are centered and scaled. Every statistic is learned
    when the pipeline is fitted, so only the fitting partition is used.

    Parameters
    ----------
    family : str
        'logistic', 'elastic_net' or 'decision_tree'.
    params : dict
        One configuration from the family's grid.
    n_samples : int
        Number of records the pipeline will be fitted on. The elastic-net
        penalty ``lambda`` is per-record, so scikit-learn's inverse
        strength is C = 1 / (n_samples * lambda).
    random_state : int
        Seed for the solver / tree tie-breaking.
    """

    _check_family(family)

    if family == 'decision_tree':
        preprocessor = _build_preprocessor(drop_first=False, scale_numeric=False)
        # Minimum node sizes follow the classic CART defaults (split 20, leaf 7)
        classifier = DecisionTreeClassifier(
            ccp_alpha=params.get('ccp_alpha', 0.01),
            min_samples_split=20,
            min_samples_leaf=7,
            random_state=random_state
        )
    elif family == 'elastic_net':
        preprocessor = _build_preprocessor(drop_first=True, scale_numeric=True)
        lam = params.get('lambda', 0.01)
        if lam <= 0:
            raise ValueError(f"Elastic-net lambda must be positive, got {lam}")
        penalty_args = {} if _l1_ratio_sets_penalty() else {'penalty': 'elasticnet'}
        classifier = LogisticRegression(
            solver='saga',
            l1_ratio=params.get('l1_ratio', 0.5),
            C=1.0 / (n_samples * lam),
            max_iter=5000,
            random_state=random_state,
            **penalty_args
        )
    else:
        preprocessor = _build_preprocessor(drop_first=True, scale_numeric=True)
        # Very weak ridge term: effectively an unpenalized maximum-likelihood fit
        classifier = LogisticRegression(C=1e6, max_iter=1000)

    return Pipeline([
        ('preprocessor', preprocessor),
        ('classifier', classifier)
    ])


def _l1_ratio_sets_penalty() -> bool:
    # scikit-learn 1.8 deprecated `penalty`; l1_ratio alone selects the mix
    major, minor = (int(part) for part in re.findall(r'\d+', sklearn.__version__)[:2])
    return (major, minor) >= (1, 8)


def _build_preprocessor(drop_first: bool, scale_numeric: bool) -> ColumnTransformer:
    categorical = OneHotEncoder(
        drop='first' if drop_first else None,
        handle_unknown='ignore',
        sparse_output=False
    )
    numeric = StandardScaler() if scale_numeric else 'passthrough'

    return ColumnTransformer(
        transformers=[
            ('categorical', categorical, make_column_selector(dtype_include=['category', 'object'])),
            ('numeric', numeric, make_column_selector(dtype_include=np.number))
        ],
        verbose_feature_names_out=False
    )


# =============================================================================
# Resampling
# =============================================================================

def downsample_majority(
    X: pd.DataFrame,
    y: pd.Series,
    random_state: int = RANDOM_SEED
) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Randomly drop majority-class records until both classes are equal in size.

    Only record positions are passed to the sampler, so column dtypes
    (categories in particular) come back untouched.
    """

    sampler = RandomUnderSampler(sampling_strategy='auto', random_state=random_state)
    positions = np.arange(len(y)).reshape(-1, 1)
    sampler.fit_resample(positions, np.asarray(y))
    keep = np.sort(sampler.sample_indices_)

    return X.iloc[keep], y.iloc[keep]


def _resample(X, y, policy, random_state):
    if policy == 'down':
        return downsample_majority(X, y, random_state)
    return X, y


# =============================================================================
# Cross-validation
# =============================================================================

def check_class_support(y: pd.Series, n_folds: int = N_FOLDS) -> None:
    """Fail fast when stratified k-fold cross-validation is impossible."""

    if n_folds < 2:
        raise ValueError(f"At least 2 folds are required, got {n_folds}")

    counts = y.value_counts()
    if len(counts) < 2:
        raise InsufficientClassSupportError(
            "Insufficient class support: training data holds a single class"
        )
    if counts.min() < n_folds:
        raise InsufficientClassSupportError(
            f"Insufficient class support: class {counts.idxmin()} has "
            f"{counts.min()} record(s), fewer than the {n_folds} folds requested"
        )


def fit_and_score(
    family: str,
    params: Dict[str, Any],
    X: pd.DataFrame,
    y: pd.Series,
    fit_index: np.ndarray,
    eval_index: np.ndarray,
    resample_policy: Optional[str] = None,
    random_state: int = RANDOM_SEED,
    threshold: float = CLASSIFICATION_THRESHOLD,
    config_index: int = 0,
    fold: int = 0
) -> Dict[str, Any]:
    """
    Fit one configuration on one fold and score it on the held-out part.

    This is the single unit of work of every grid search, whatever the
    family. Non-convergence and numerical failures are returned in the
    ``error`` field instead of being raised.

    Returns
    -------
    dict
        config_index, fold, auc, sensitivity, specificity, the class counts
        the model was actually fitted on, and error (None on success).
    """

    X_fit, y_fit = _resample(X.iloc[fit_index], y.iloc[fit_index], resample_policy, random_state)
    X_eval, y_eval = X.iloc[eval_index], y.iloc[eval_index]

    record = {
        'config_index': config_index,
        'fold': fold,
        'n_fit_positive': int((y_fit == 1).sum()),
        'n_fit_negative': int((y_fit == 0).sum()),
        'n_eval': len(y_eval),
        'auc': np.nan,
        'sensitivity': np.nan,
        'specificity': np.nan,
        'error': None
    }

    try:
        with warnings.catch_warnings():
            warnings.simplefilter('error', ConvergenceWarning)
            estimator = build_estimator(family, params, len(y_fit), random_state)
            estimator.fit(X_fit, y_fit)
            y_pred_proba = estimator.predict_proba(X_eval)[:, 1]
    except (ValueError, FloatingPointError, ConvergenceWarning) as e:
        record['error'] = f"{type(e).__name__}: {e}"
        return record

    if not np.all(np.isfinite(y_pred_proba)):
        record['error'] = "FloatingPointError: non-finite predicted probabilities"
        return record

    metrics = compute_classification_metrics(
        y_eval, (y_pred_proba >= threshold).astype(int), warn=False
    )
    record['auc'] = roc_auc_score(y_eval, y_pred_proba)
    record['sensitivity'] = metrics['sensitivity']
    record['specificity'] = metrics['specificity']

    return record


def cross_validate_grid(
    X: pd.DataFrame,
    y: pd.Series,
    family: str,
    grid: List[Dict[str, Any]],
    resample_policy: Optional[str] = None,
    n_folds: int = N_FOLDS,
    random_state: int = RANDOM_SEED,
    threshold: float = CLASSIFICATION_THRESHOLD,
    n_jobs: int = 1
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Score every configuration of a grid with stratified k-fold CV.

    The (configuration, fold) jobs are independent and run through joblib.
    Results are ordered by (config_index, fold) whatever the completion
    order, and fold ``f`` always down-samples with seed ``random_state + f``.

    Returns
    -------
    cv_results : pd.DataFrame
        One row per configuration: parameters, mean/std AUC, mean
        sensitivity and specificity, and the first error if any fold failed.
    fold_results : pd.DataFrame
        One row per (configuration, fold).
    """

    check_class_support(y, n_folds)

    cv = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=random_state)
    folds = list(cv.split(X, y))

    jobs = (
        delayed(fit_and_score)(
            family, params, X, y, fit_index, eval_index,
            resample_policy=resample_policy,
            random_state=random_state + fold,
            threshold=threshold,
            config_index=config_index,
            fold=fold
        )
        for config_index, params in enumerate(grid)
        for fold, (fit_index, eval_index) in enumerate(folds)
    )
    records = Parallel(n_jobs=n_jobs)(jobs)

    fold_results = (
        pd.DataFrame(records)
        .sort_values(['config_index', 'fold'])
        .reset_index(drop=True)
    )

    summary = []
    for config_index, params in enumerate(grid):
        folds_df = fold_results[fold_results['config_index'] == config_index]
        errors = folds_df['error'].dropna()
        failed = len(errors) > 0

        row = {'config_index': config_index}
        row.update(params)
        row.update({
            'mean_auc': np.nan if failed else folds_df['auc'].mean(),
            'std_auc': np.nan if failed else folds_df['auc'].std(),
            'mean_sensitivity': np.nan if failed else folds_df['sensitivity'].mean(),
            'mean_specificity': np.nan if failed else folds_df['specificity'].mean(),
            'n_failed_folds': len(errors),
            'error': errors.iloc[0] if failed else None
        })
        summary.append(row)

    cv_results = pd.DataFrame(summary)

    return cv_results, fold_results


# =============================================================================
# Trained model artifact
# =============================================================================

class TrainedModel:
    """
    Best configuration of one model family, refit on the full training set.

    Attributes
    ----------
    family : str
        'logistic', 'elastic_net' or 'decision_tree'.
    estimator : sklearn.pipeline.Pipeline
        Fitted preprocessing + classifier.
    params : dict
        Selected hyperparameters.
    resample_policy : str or None
        'down' or None.
    cv_results, fold_results : pd.DataFrame
        Cross-validation tables (see ``cross_validate_grid``).
    cv_auc, cv_sensitivity, cv_specificity : float
        Cross-validated performance of the selected configuration.
    training_metrics : dict
        Resubstitution metrics on the full training partition.
    """

    def __init__(
        self,
        family: str,
        estimator: Pipeline,
        params: Dict[str, Any],
        resample_policy: Optional[str],
        cv_results: pd.DataFrame,
        fold_results: pd.DataFrame,
        feature_columns: List[str],
        training_metrics: Dict[str, float]
    ):
        self.family = family
        self.estimator = estimator
        self.params = params
        self.resample_policy = resample_policy
        self.cv_results = cv_results
        self.fold_results = fold_results
        self.feature_columns = feature_columns
        self.training_metrics = training_metrics

        best = cv_results.loc[cv_results['mean_auc'].idxmax()]
        self.cv_auc = float(best['mean_auc'])
        self.cv_sensitivity = float(best['mean_sensitivity'])
        self.cv_specificity = float(best['mean_specificity'])

    @property
    def label(self) -> str:
        return FAMILY_LABELS.get(self.family, self.family)

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        """Class probabilities ordered [No, Yes]."""
        return self.estimator.predict_proba(X[self.feature_columns])

    def variable_importance(self) -> pd.DataFrame:
        """
        Rank encoded features by importance.

        Decision tree: total impurity reduction attributable to each feature
        across all splits (normalized to sum to 1). Linear families: absolute
        coefficient on the standardized scale.
        """

        classifier = self.estimator.named_steps['classifier']
        names = self.estimator.named_steps['preprocessor'].get_feature_names_out()

        if self.family == 'decision_tree':
            importance = classifier.feature_importances_
        else:
            importance = np.abs(classifier.coef_[0])

        return (
            pd.DataFrame({'feature': names, 'importance': importance})
            .sort_values('importance', ascending=False, kind='stable')
            .reset_index(drop=True)
        )

    def summary(self) -> Dict[str, Any]:
        return {
            'model': self.label,
            'family': self.family,
            'params': dict(self.params),
            'resample_policy': self.resample_policy,
            'cv_auc': self.cv_auc,
            'cv_sensitivity': self.cv_sensitivity,
            'cv_specificity': self.cv_specificity,
        }

    def __repr__(self) -> str:
        return (
            f"TrainedModel(family={self.family!r}, params={self.params!r}, "
            f"cv_auc={self.cv_auc:.3f})"
        )


# =============================================================================
# Training
# =============================================================================

def train_model(
    train: pd.DataFrame,
    family: str,
    grid: Optional[Union[List[Dict[str, Any]], Dict[str, List[Any]]]] = None,
    resample_policy: Optional[str] = DEFAULT,
    n_folds: int = N_FOLDS,
    random_state: int = RANDOM_SEED,
    threshold: float = CLASSIFICATION_THRESHOLD,
    n_jobs: int = 1
) -> TrainedModel:
    """
    Tune, select and refit one model family.

    Parameters
    ----------
    train : pd.DataFrame
        Prepared training partition including the ``extended_stay`` label.
    family : str
        'logistic', 'elastic_net' or 'decision_tree'.
    grid : list of dict or dict of lists, optional
        Candidate configurations. A dict of lists is expanded like
        scikit-learn's ``ParameterGrid``. None uses ``build_param_grid``;
        an empty grid means one configuration with default parameters.
    resample_policy : {'default', None, 'down'}
        'default' uses the family's policy (baseline: none, others: down).
    n_folds : int, default=10
        Number of stratified cross-validation folds.
    random_state : int, default=42
        Seed for fold assignment, down-sampling and the estimators.
    threshold : float, default=0.5
        Operating point for the reported sensitivity / specificity.
    n_jobs : int, default=1
        Parallel (configuration, fold) jobs. Results do not depend on it.

    Returns
    -------
    TrainedModel
        Best configuration by mean cross-validated ROC-AUC, refit on all of
        ``train`` (down-sampled first when the policy says so).

    Clinical Note:
    --------------
    ROC-AUC is the ranking metric because accuracy would be dominated by the
    ~80% of routine stays.
    """

    _check_family(family)

    if resample_policy == DEFAULT:
        resample_policy = DEFAULT_RESAMPLE_POLICY[family]
    if resample_policy not in RESAMPLE_POLICIES:
        raise ValueError(
            f"Unknown resample policy {resample_policy!r}; expected one of {RESAMPLE_POLICIES}"
        )

    if grid is None:
        grid = build_param_grid(family)
    elif isinstance(grid, dict):
        grid = list(ParameterGrid(grid))
    else:
        grid = [dict(params) for params in grid]
    if not grid:
        grid = [{}]

    X, y = split_features_target(train)

    print("="*60)
    print(f"MODEL TRAINING: {FAMILY_LABELS[family]}")
    print("="*60)
    print(f"\n1. {n_folds}-fold stratified cross-validation over {len(grid)} configuration(s)")
    print(f"   Resampling: {resample_policy or 'none'}")
    print(f"   Class distribution: {int((y == 0).sum()):,} negative, {int(y.sum()):,} positive")

    cv_results, fold_results = cross_validate_grid(
        X, y, family, grid,
        resample_policy=resample_policy,
        n_folds=n_folds,
        random_state=random_state,
        threshold=threshold,
        n_jobs=n_jobs
    )

    failed = cv_results[cv_results['error'].notna()]
    for _, row in failed.iterrows():
        warnings.warn(
            f"{family} configuration {grid[int(row['config_index'])]} excluded: {row['error']}",
            RuntimeWarning
        )

    if len(failed) == len(cv_results):
        raise NoValidConfigurationError(
            f"All {len(grid)} {family} configuration(s) failed during cross-validation"
        )

    best_index = int(cv_results['mean_auc'].idxmax())
    best_params = grid[cv_results.loc[best_index, 'config_index']]
    best_row = cv_results.loc[best_index]

    print(f"   Excluded configurations: {len(failed)}")
    print(f"   Best parameters: {best_params or '(defaults)'}")
    print(f"   CV AUC-ROC: {best_row['mean_auc']:.3f} (+/- {best_row['std_auc']*2:.3f})")
    print(f"   CV Sensitivity: {best_row['mean_sensitivity']:.3f}")
    print(f"   CV Specificity: {best_row['mean_specificity']:.3f}")

    print("\n2. Refitting best configuration on the full training set...")
    X_fit, y_fit = _resample(X, y, resample_policy, random_state)
    estimator = build_estimator(family, best_params, len(y_fit), random_state)
    estimator.fit(X_fit, y_fit)

    y_train_proba = estimator.predict_proba(X)[:, 1]
    training_metrics = compute_classification_metrics(
        y, (y_train_proba >= threshold).astype(int), warn=False
    )
    training_metrics['auc'] = roc_auc_score(y, y_train_proba)

    print(f"   Training AUC-ROC (resubstitution): {training_metrics['auc']:.3f}")
    print("\n" + "="*60)

    return TrainedModel(
        family=family,
        estimator=estimator,
        params=dict(best_params),
        resample_policy=resample_policy,
        cv_results=cv_results,
        fold_results=fold_results,
        feature_columns=X.columns.tolist(),
        training_metrics=training_metrics
    )


def _check_family(family: str) -> None:
    if family not in MODEL_FAMILIES:
        raise ValueError(f"Unknown model family {family!r}; expected one of {MODEL_FAMILIES}")


def _positive_rate(df: pd.DataFrame) -> float:
    return float((df[TARGET_COLUMN] == POSITIVE_LABEL).mean())
