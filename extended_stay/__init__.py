# Healthcare Analytics: Extended Length-of-Stay Prediction
# Modular Machine Learning Pipeline

from .data_loader import load_discharge_data, normalize_column_names
from .preprocessing import (
    DataValidationError,
    prepare_features,
    create_binary_target,
    encode_insurance_indicators,
    find_correlated_features,
    split_features_target
)
from .model import (
    InsufficientClassSupportError,
    NoValidConfigurationError,
    TrainedModel,
    split_data,
    train_model,
    build_param_grid
)
from .selection import select_best_model, compare_models
from .evaluation import (
    evaluate_model,
    compute_classification_metrics,
    plot_confusion_matrix,
    plot_roc_curve
)

# Short names for the five pipeline stages
prepare = prepare_features
split = split_data
train = train_model
select = select_best_model
evaluate = evaluate_model

__version__ = "1.0.0"
