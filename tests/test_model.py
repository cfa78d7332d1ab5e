import warnings

import numpy as np
import pandas as pd
import pytest
from sklearn.model_selection import StratifiedKFold

from extended_stay.config import (
    DECISION_TREE_CCP_ALPHAS,
    DEFAULT_RESAMPLE_POLICY,
    MODEL_FAMILIES,
    TARGET_COLUMN,
)
from extended_stay.model import (
    InsufficientClassSupportError,
    NoValidConfigurationError,
    build_estimator,
    build_param_grid,
    cross_validate_grid,
    downsample_majority,
    fit_and_score,
    split_data,
    train_model,
)
import extended_stay.model as model_module
from extended_stay.preprocessing import split_features_target

from conftest import SMALL_GRIDS


# =============================================================================
# Partitioning
# =============================================================================

def test_split_is_disjoint_and_covers_every_record(prepared, train_test):
    train, test = train_test

    assert set(train.index).isdisjoint(test.index)
    assert set(train.index) | set(test.index) == set(prepared.index)
    assert len(train) == 700
    assert len(test) == 300


def test_split_preserves_class_proportions(prepared, train_test):
    train, test = train_test
    overall = (prepared[TARGET_COLUMN] == 'Yes').mean()

    for part in (train, test):
        rate = (part[TARGET_COLUMN] == 'Yes').mean()
        assert abs(rate - overall) <= 0.02

    n_train_positive = (train[TARGET_COLUMN] == 'Yes').sum()
    n_test_positive = (test[TARGET_COLUMN] == 'Yes').sum()
    assert 0.18 * 700 <= n_train_positive <= 0.22 * 700
    assert 0.18 * 300 <= n_test_positive <= 0.22 * 300


def test_split_is_deterministic_for_a_seed(prepared):
    first_train, first_test = split_data(prepared, seed=7)
    second_train, second_test = split_data(prepared, seed=7)

    assert first_train.index.equals(second_train.index)
    assert first_test.index.equals(second_test.index)


def test_split_differs_between_seeds(prepared):
    train_a, _ = split_data(prepared, seed=1)
    train_b, _ = split_data(prepared, seed=2)

    assert not train_a.index.sort_values().equals(train_b.index.sort_values())


def test_split_rejects_a_single_class(prepared):
    only_short = prepared[prepared[TARGET_COLUMN] == 'No']

    with pytest.raises(InsufficientClassSupportError):
        split_data(only_short)


def test_split_rejects_a_class_with_one_record(prepared):
    one_positive = pd.concat([
        prepared[prepared[TARGET_COLUMN] == 'No'],
        prepared[prepared[TARGET_COLUMN] == 'Yes'].head(1)
    ])

    with pytest.raises(InsufficientClassSupportError):
        split_data(one_positive)


@pytest.mark.parametrize('ratio', [0, 1, 1.5])
def test_split_rejects_bad_ratio(prepared, ratio):
    with pytest.raises(ValueError):
        split_data(prepared, ratio=ratio)


# =============================================================================
# Grids and estimators
# =============================================================================

def test_default_grids():
    assert build_param_grid('logistic') == [{}]

    elastic = build_param_grid('elastic_net')
    assert len(elastic) >= 100
    assert {p['l1_ratio'] for p in elastic} >= {0.0, 1.0}
    assert all(p['lambda'] > 0 for p in elastic)

    tree = build_param_grid('decision_tree')
    alphas = [p['ccp_alpha'] for p in tree]
    assert len(tree) == len(DECISION_TREE_CCP_ALPHAS)
    assert min(alphas) == pytest.approx(0.001)
    assert max(alphas) <= 0.3


def test_unknown_family_raises():
    with pytest.raises(ValueError, match='gradient_boosting'):
        build_param_grid('gradient_boosting')


def test_elastic_net_rejects_non_positive_lambda():
    with pytest.raises(ValueError, match='lambda'):
        build_estimator('elastic_net', {'l1_ratio': 0.5, 'lambda': 0.0}, n_samples=100)


def test_elastic_net_strength_is_scaled_by_sample_size():
    estimator = build_estimator('elastic_net', {'l1_ratio': 0.3, 'lambda': 0.01}, n_samples=200)
    classifier = estimator.named_steps['classifier']

    assert classifier.C == pytest.approx(0.5)
    assert classifier.l1_ratio == 0.3


def test_elastic_net_fit_raises_no_penalty_deprecation(train_test):
    train, _ = train_test
    X, y = split_features_target(train)
    estimator = build_estimator('elastic_net', {'l1_ratio': 0.5, 'lambda': 0.01}, n_samples=len(y))

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        estimator.fit(X, y)

    assert not [w for w in caught if 'penalty' in str(w.message)]


# =============================================================================
# Resampling
# =============================================================================

def test_downsampling_balances_the_classes(train_test):
    train, _ = train_test
    X, y = split_features_target(train)

    X_down, y_down = downsample_majority(X, y, random_state=0)

    assert (y_down == 1).sum() == (y_down == 0).sum() == (y == 1).sum()
    assert X_down.index.equals(y_down.index)
    assert (X_down.dtypes == X.dtypes).all()


def test_downsampled_folds_fit_on_balanced_data(train_test):
    train, _ = train_test
    X, y = split_features_target(train)
    fit_index, eval_index = next(StratifiedKFold(n_splits=10, shuffle=True, random_state=0).split(X, y))

    record = fit_and_score(
        'decision_tree', {'ccp_alpha': 0.011}, X, y, fit_index, eval_index,
        resample_policy='down'
    )

    assert record['error'] is None
    assert record['n_fit_positive'] == record['n_fit_negative']
    assert record['n_eval'] == len(eval_index)
    # held-out fold keeps its prevalence
    assert y.iloc[eval_index].sum() < len(eval_index) / 2


def test_baseline_fits_on_imbalanced_data(train_test):
    train, _ = train_test
    X, y = split_features_target(train)
    fit_index, eval_index = next(StratifiedKFold(n_splits=10, shuffle=True, random_state=0).split(X, y))

    record = fit_and_score('logistic', {}, X, y, fit_index, eval_index, resample_policy=None)

    assert record['error'] is None
    assert record['n_fit_negative'] > 3 * record['n_fit_positive']


# =============================================================================
# Cross-validation
# =============================================================================

def test_cv_auc_is_a_probability_for_every_configuration(trained_models):
    for model in trained_models.values():
        assert model.cv_results['mean_auc'].between(0, 1).all()
        assert model.fold_results['auc'].between(0, 1).all()
        assert len(model.fold_results) == 10 * len(model.cv_results)


def test_cross_validation_does_not_depend_on_n_jobs(train_test):
    train, _ = train_test
    X, y = split_features_target(train)
    grid = SMALL_GRIDS['decision_tree'][:2]

    serial, _ = cross_validate_grid(X, y, 'decision_tree', grid, resample_policy='down', n_folds=5, n_jobs=1)
    parallel, _ = cross_validate_grid(X, y, 'decision_tree', grid, resample_policy='down', n_folds=5, n_jobs=2)

    pd.testing.assert_frame_equal(serial, parallel)


def test_too_few_minority_records_for_the_folds(train_test):
    train, _ = train_test
    scarce = pd.concat([
        train[train[TARGET_COLUMN] == 'No'],
        train[train[TARGET_COLUMN] == 'Yes'].head(5)
    ])

    with pytest.raises(InsufficientClassSupportError):
        train_model(scarce, 'decision_tree', grid=SMALL_GRIDS['decision_tree'], n_folds=10)


def test_failing_configuration_is_excluded(train_test):
    train, _ = train_test
    grid = [{'l1_ratio': 0.5, 'lambda': -1.0}, {'l1_ratio': 0.5, 'lambda': 0.01}]

    with pytest.warns(RuntimeWarning, match='excluded'):
        model = train_model(train, 'elastic_net', grid=grid, n_folds=5)

    assert model.params == {'l1_ratio': 0.5, 'lambda': 0.01}
    failed = model.cv_results.loc[0]
    assert np.isnan(failed['mean_auc'])
    assert failed['n_failed_folds'] == 5
    assert 'lambda' in failed['error']


def test_non_converging_configuration_is_excluded(train_test, monkeypatch):
    train, _ = train_test
    build = model_module.build_estimator

    def build_with_iteration_cap(family, params, n_samples, random_state=42):
        estimator = build(family, {}, n_samples, random_state)
        return estimator.set_params(classifier__max_iter=params['max_iter'])

    monkeypatch.setattr(model_module, 'build_estimator', build_with_iteration_cap)

    with pytest.warns(RuntimeWarning, match='excluded'):
        model = train_model(train, 'logistic', grid=[{'max_iter': 1}, {'max_iter': 1000}], n_folds=5)

    assert model.params == {'max_iter': 1000}
    capped = model.cv_results.loc[0]
    assert np.isnan(capped['mean_auc'])
    assert capped['error'].startswith('ConvergenceWarning')


def test_all_configurations_failing_raises(train_test):
    train, _ = train_test

    with pytest.warns(RuntimeWarning):
        with pytest.raises(NoValidConfigurationError):
            train_model(train, 'elastic_net', grid=[{'l1_ratio': 0.5, 'lambda': -1.0}], n_folds=5)


# =============================================================================
# Trained models
# =============================================================================

def test_every_family_is_trained(trained_models):
    assert set(trained_models) == set(MODEL_FAMILIES)


def test_selected_params_come_from_the_grid(trained_models):
    for family, model in trained_models.items():
        assert model.params in SMALL_GRIDS[family]


def test_artifact_reports_the_best_cv_auc(trained_models):
    for model in trained_models.values():
        assert model.cv_auc == pytest.approx(model.cv_results['mean_auc'].max())


def test_default_resampling_policies(trained_models):
    for family, model in trained_models.items():
        assert model.resample_policy == DEFAULT_RESAMPLE_POLICY[family]
    assert trained_models['logistic'].resample_policy is None


def test_training_metrics_are_recorded(trained_models):
    for model in trained_models.values():
        metrics = model.training_metrics
        assert 0 <= metrics['auc'] <= 1
        assert metrics['tp'] + metrics['fp'] + metrics['tn'] + metrics['fn'] == 700


def test_models_discriminate_on_the_synthetic_risk(trained_models):
    for model in trained_models.values():
        assert model.cv_auc > 0.6


def test_tree_importance_sums_to_one(trained_models):
    importance = trained_models['decision_tree'].variable_importance()

    assert importance['importance'].sum() == pytest.approx(1.0)
    assert importance['importance'].is_monotonic_decreasing


def test_linear_importance_is_absolute_coefficient(trained_models):
    importance = trained_models['elastic_net'].variable_importance()

    assert (importance['importance'] >= 0).all()
    assert len(importance) > 0


def test_predict_proba_rows_sum_to_one(trained_models, train_test):
    _, test = train_test
    X_test, _ = split_features_target(test)

    proba = trained_models['logistic'].predict_proba(X_test)

    assert proba.shape == (len(test), 2)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)


def test_unknown_resample_policy_raises(train_test):
    train, _ = train_test

    with pytest.raises(ValueError, match='resample policy'):
        train_model(train, 'decision_tree', resample_policy='up')


def test_dict_grid_is_expanded(train_test):
    train, _ = train_test

    model = train_model(train, 'decision_tree', grid={'ccp_alpha': [0.001, 0.021]}, n_folds=5)

    assert len(model.cv_results) == 2
    assert model.params['ccp_alpha'] in (0.001, 0.021)


def test_empty_grid_uses_defaults(train_test):
    train, _ = train_test

    model = train_model(train, 'decision_tree', grid=[], n_folds=5)

    assert model.params == {}
    assert len(model.cv_results) == 1
