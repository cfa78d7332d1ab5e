import numpy as np
import pandas as pd
import pytest

from extended_stay.data_loader import load_discharge_data, normalize_column_names, save_processed_data
from extended_stay.eda import categorical_breakdown, generate_eda_report, run_eda
from extended_stay.exploration import encode_ordinal, run_pca

from main import main


SPARCS_HEADERS = {
    'age_group': 'Age Group',
    'gender': 'Gender',
    'race': 'Race',
    'ethnicity': 'Ethnicity',
    'type_of_admission': 'Type of Admission',
    'apr_severity_of_illness_description': 'APR Severity of Illness Description',
    'apr_risk_of_mortality': 'APR Risk of Mortality',
    'apr_medical_surgical_description': 'APR Medical Surgical Description',
    'total_charges': 'Total Charges',
    'total_costs': 'Total Costs',
    'payment_typology_1': 'Payment Typology 1',
    'payment_typology_2': 'Payment Typology 2',
    'payment_typology_3': 'Payment Typology 3',
    'length_of_stay': 'Length of Stay',
}


@pytest.fixture
def discharge_csv(tmp_path, raw_discharges):
    path = tmp_path / 'discharges.csv'
    raw_discharges.rename(columns=SPARCS_HEADERS).to_csv(path, index=False)
    return path


def test_column_names_are_normalized():
    df = pd.DataFrame(columns=['APR Severity of Illness Description', 'Payment Typology 1', ' Total Costs '])

    assert normalize_column_names(df).columns.tolist() == [
        'apr_severity_of_illness_description', 'payment_typology_1', 'total_costs'
    ]


def test_load_discharge_extract(discharge_csv, raw_discharges):
    raw = load_discharge_data(str(discharge_csv))

    assert set(SPARCS_HEADERS) <= set(raw.columns)
    assert len(raw) == len(raw_discharges)
    # labels are kept as strings
    assert raw['gender'].isin(['F', 'M']).all()
    assert raw['payment_typology_3'].isna().any()


def test_load_first_rows_only(discharge_csv):
    assert len(load_discharge_data(str(discharge_csv), nrows=50)) == 50


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_discharge_data(str(tmp_path / 'absent.csv'))


def test_save_prepared_table(prepared, tmp_path, capsys):
    path = save_processed_data(prepared, tmp_path / 'data' / 'prepared.csv', removed_features=['total_costs'])

    saved = pd.read_csv(path)
    assert saved.shape == prepared.shape
    assert 'total_costs' not in saved.columns
    output = capsys.readouterr().out
    assert 'Extended stay rate: 20.00%' in output
    assert 'Removed for redundancy: total_costs' in output


def test_categorical_breakdown(prepared):
    breakdown = categorical_breakdown(prepared)

    severity = breakdown[breakdown['variable'] == 'apr_severity_of_illness_description']
    assert severity['n'].sum() == len(prepared)
    assert severity['extended_stay_rate'].between(0, 1).all()
    assert 'extended_stay' not in breakdown['variable'].unique()


def test_run_eda_writes_outputs(prepared, tmp_path):
    results = run_eda(prepared, output_dir=str(tmp_path))
    report = generate_eda_report(prepared, ['total_costs'], output_path=str(tmp_path / 'eda_report.txt'))

    assert results['extended_stay_rate'] == pytest.approx(20.0)
    assert (tmp_path / 'extended_stay_distribution.png').exists()
    assert (tmp_path / 'correlation_heatmap.png').exists()
    assert 'total_costs' in report


def test_ordinal_encoding_follows_severity_order(prepared):
    encoded = encode_ordinal(prepared)

    assert encoded['apr_severity_of_illness_description'].between(1, 4).all()
    assert set(encoded['medicare'].unique()) <= {0, 1}
    assert 'gender' not in encoded.columns


def test_pca_side_study(prepared):
    results = run_pca(prepared)

    ratio = results['explained_variance_ratio']
    assert ratio.sum() == pytest.approx(1.0)
    assert ratio.is_monotonic_decreasing
    assert results['cumulative_variance'].iloc[-1] == pytest.approx(1.0)
    assert results['loadings'].shape[1] == len(ratio)


def test_pca_needs_two_columns(prepared):
    with pytest.raises(ValueError):
        run_pca(prepared[['gender', 'extended_stay']])


def test_end_to_end(discharge_csv, tmp_path):
    output_dir = tmp_path / 'outputs'

    results = main(str(discharge_csv), output_dir=str(output_dir), quick=True)

    models = results['models']
    best = results['best_model']
    assert len(models) == 3
    assert best.cv_auc == max(m.cv_auc for m in models)
    assert results['removed_features'] == ['total_costs']

    evaluation = results['eval_results']
    counts = evaluation['tp'] + evaluation['fp'] + evaluation['tn'] + evaluation['fn']
    assert counts == 300
    assert not np.isnan(evaluation['auc_roc'])

    assert (output_dir / 'models' / 'model_comparison.csv').exists()
    assert (output_dir / 'evaluation' / 'roc_curve.png').exists()
    assert (output_dir / 'eda' / 'pca_loadings.csv').exists()
