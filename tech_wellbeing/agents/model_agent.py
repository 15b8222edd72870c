# tech_wellbeing/agents/model_agent.py
import pandas as pd
import numpy as np
from contextlib import nullcontext
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
from datetime import datetime
import mlflow
import mlflow.sklearn
from sklearn.model_selection import train_test_split
from sklearn.metrics import (
    accuracy_score, precision_score, recall_score, f1_score,
    mean_squared_error, mean_absolute_error, r2_score
)
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression, LinearRegression
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from statsmodels.miscmodels.ordinal_model import OrderedModel

from tech_wellbeing.config import Config, MLFlowConfig, ModelTrainingConfig, get_config
from tech_wellbeing.exceptions import InsufficientDataError, SchemaError
from tech_wellbeing.schema import STRESS_SCORES
from tech_wellbeing.utils.logging_config import PipelineLogger

logger = logging.getLogger(__name__)

PREDICTORS = [
    'technology_usage_hours',
    'social_media_usage_hours',
    'gaming_hours',
    'screen_time_hours',
    'age',
    'sleep_hours',
    'physical_activity_hours',
    'support_index',
    'work_impact_score',
]

STRESS_TARGET = 'stress_level'
MENTAL_HEALTH_TARGET = 'mental_health_status'

MIN_TRAINING_ROWS = 10


def prepare_model_data(frame: pd.DataFrame, target: str,
                       predictors: Optional[List[str]] = None) -> Tuple[pd.DataFrame, pd.Series]:
    """Float predictor matrix and target, restricted to complete rows"""
    predictors = predictors or PREDICTORS

    missing = [col for col in predictors + [target] if col not in frame.columns]
    if missing:
        raise SchemaError(f"Columns required for modelling not found: {missing}")

    X = frame[predictors].apply(pd.to_numeric, errors='coerce').astype('float64')
    y = frame[target]

    complete = X.notna().all(axis=1) & y.notna()
    X, y = X[complete], y[complete]

    if len(X) < MIN_TRAINING_ROWS:
        raise InsufficientDataError(
            f"Only {len(X)} complete rows for target '{target}'; need at least {MIN_TRAINING_ROWS}"
        )

    return X, y


class ModelTrainer:
    """Fits the predictive models relating technology usage to wellbeing outcomes"""

    def __init__(self, config: Optional[ModelTrainingConfig] = None,
                 mlflow_config: Optional[MLFlowConfig] = None):
        cfg = get_config()
        self.config = config or cfg.training
        self.mlflow_config = mlflow_config or cfg.mlflow

    @property
    def models(self) -> Dict[str, Callable[[pd.DataFrame], Dict[str, Any]]]:
        return {
            'linear_regression': self.fit_linear_regression,
            'ordinal_logistic': self.fit_ordinal_logistic,
            'random_forest': self.fit_random_forest,
            'multinomial_logistic': self.fit_multinomial_logistic,
        }

    def train_all(self, frame: pd.DataFrame, experiment_name: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """Train every model; a failing model is recorded and does not stop the others"""
        if self.mlflow_config.ENABLED:
            mlflow.set_tracking_uri(self.mlflow_config.TRACKING_URI)
            mlflow.set_experiment(experiment_name or self.mlflow_config.EXPERIMENT_NAME)

        results = {}
        for model_name, fit in self.models.items():
            logger.info(f"Training {model_name}...")

            try:
                with PipelineLogger(f"model:{model_name}", logger) as step:
                    with self._tracking_run(model_name):
                        result = fit(frame)
                        result['mlflow_run_id'] = self._log_to_mlflow(model_name, result)

                    for metric_name, value in result['test_metrics'].items():
                        step.log_metric(metric_name, round(value, 4))

                results[model_name] = result

            except Exception as e:
                logger.error(f"{model_name} training failed: {str(e)}")
                results[model_name] = {
                    'status': 'failed',
                    'error': str(e)
                }

        return results

    def fit_linear_regression(self, frame: pd.DataFrame) -> Dict[str, Any]:
        """Ordinary least squares on the ordinal stress score (Low=1, Medium=2, High=3)"""
        X, y = prepare_model_data(frame, STRESS_TARGET)
        y = y.astype(object).map(STRESS_SCORES).astype('float64')

        X_train, X_test, y_train, y_test = self._split(X, y, stratify=False)

        model = LinearRegression()
        model.fit(X_train, y_train)
        predictions = model.predict(X_test)

        return self._result(
            model, STRESS_TARGET, X_train, X_test,
            test_metrics=self._regression_metrics(y_test, predictions),
            coefficients=dict(zip(X.columns, map(float, model.coef_))),
            intercept=float(model.intercept_)
        )

    def fit_ordinal_logistic(self, frame: pd.DataFrame) -> Dict[str, Any]:
        """Proportional-odds model of stress_level"""
        X, y = prepare_model_data(frame, STRESS_TARGET)
        y = self._ordered(y)

        X_train, X_test, y_train, y_test = self._split(X, y, stratify=True)
        y_train = y_train.cat.remove_unused_categories()

        model = OrderedModel(y_train, X_train, distr=self.config.ORDINAL_DISTRIBUTION)
        fitted = model.fit(method='bfgs', disp=False, maxiter=self.config.MAX_ITER)

        probabilities = np.asarray(fitted.predict(X_test))
        labels = np.asarray(y_train.cat.categories)
        predictions = labels[probabilities.argmax(axis=1)]

        return self._result(
            fitted, STRESS_TARGET, X_train, X_test,
            test_metrics={
                'accuracy': float(accuracy_score(y_test.astype(object), predictions)),
                'log_likelihood': float(fitted.llf),
                'aic': float(fitted.aic)
            },
            coefficients={name: float(fitted.params[name]) for name in X.columns},
            thresholds=[float(v) for v in fitted.params.drop(list(X.columns))]
        )

    def fit_random_forest(self, frame: pd.DataFrame) -> Dict[str, Any]:
        """Random forest classifier of mental_health_status"""
        X, y = prepare_model_data(frame, MENTAL_HEALTH_TARGET)
        y = y.astype(object)

        X_train, X_test, y_train, y_test = self._split(X, y, stratify=True)

        model = RandomForestClassifier(
            n_estimators=self.config.RF_N_ESTIMATORS,
            random_state=self.config.RANDOM_STATE,
            n_jobs=-1
        )
        model.fit(X_train, y_train)
        predictions = model.predict(X_test)

        importance = pd.Series(model.feature_importances_, index=X.columns).sort_values(ascending=False)

        return self._result(
            model, MENTAL_HEALTH_TARGET, X_train, X_test,
            test_metrics=self._classification_metrics(y_test, predictions),
            feature_importance={name: float(value) for name, value in importance.items()}
        )

    def fit_multinomial_logistic(self, frame: pd.DataFrame) -> Dict[str, Any]:
        """Multinomial logistic regression of mental_health_status on standardised predictors"""
        X, y = prepare_model_data(frame, MENTAL_HEALTH_TARGET)
        y = y.astype(object)

        X_train, X_test, y_train, y_test = self._split(X, y, stratify=True)

        model = make_pipeline(
            StandardScaler(),
            LogisticRegression(max_iter=self.config.MAX_ITER, random_state=self.config.RANDOM_STATE)
        )
        model.fit(X_train, y_train)
        predictions = model.predict(X_test)

        # Multi-class: mean of absolute coefficients across classes
        coef = model[-1].coef_
        importance = pd.Series(np.mean(np.abs(coef), axis=0), index=X.columns).sort_values(ascending=False)

        return self._result(
            model, MENTAL_HEALTH_TARGET, X_train, X_test,
            test_metrics=self._classification_metrics(y_test, predictions),
            coefficients={name: float(value) for name, value in importance.items()}
        )

    def _split(self, X: pd.DataFrame, y: pd.Series, stratify: bool):
        strata = None
        if stratify:
            counts = y.astype(object).value_counts()
            # stratification needs at least two members per class
            if len(counts) > 1 and counts.min() >= 2:
                strata = y.astype(object)

        return train_test_split(
            X, y, test_size=self.config.TEST_SIZE,
            random_state=self.config.RANDOM_STATE,
            stratify=strata
        )

    @staticmethod
    def _ordered(y: pd.Series) -> pd.Series:
        if isinstance(y.dtype, pd.CategoricalDtype) and y.cat.ordered:
            return y
        levels = sorted(STRESS_SCORES, key=STRESS_SCORES.get)
        return pd.Series(pd.Categorical(y.astype(object), categories=levels, ordered=True),
                         index=y.index, name=y.name)

    @staticmethod
    def _result(model, target: str, X_train: pd.DataFrame, X_test: pd.DataFrame, **details) -> Dict[str, Any]:
        result = {
            'status': 'success',
            'model': model,
            'target': target,
            'features': list(X_train.columns),
            'n_train': int(len(X_train)),
            'n_test': int(len(X_test)),
        }
        result.update(details)
        return result

    @staticmethod
    def _regression_metrics(y_true: pd.Series, y_pred: np.ndarray) -> Dict[str, float]:
        mse = mean_squared_error(y_true, y_pred)
        return {
            'mse': float(mse),
            'rmse': float(np.sqrt(mse)),
            'mae': float(mean_absolute_error(y_true, y_pred)),
            'r2': float(r2_score(y_true, y_pred))
        }

    @staticmethod
    def _classification_metrics(y_true: pd.Series, y_pred: np.ndarray) -> Dict[str, float]:
        return {
            'accuracy': float(accuracy_score(y_true, y_pred)),
            'precision': float(precision_score(y_true, y_pred, average='weighted', zero_division=0)),
            'recall': float(recall_score(y_true, y_pred, average='weighted', zero_division=0)),
            'f1': float(f1_score(y_true, y_pred, average='weighted', zero_division=0))
        }

    def _tracking_run(self, model_name: str):
        if not self.mlflow_config.ENABLED:
            return nullcontext()
        return mlflow.start_run(run_name=f"{model_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}")

    def _log_to_mlflow(self, model_name: str, result: Dict[str, Any]) -> Optional[str]:
        if not self.mlflow_config.ENABLED:
            return None

        mlflow.log_param("model_type", model_name)
        mlflow.log_param("target", result['target'])
        mlflow.log_param("n_features", len(result['features']))
        mlflow.log_param("n_train_samples", result['n_train'])
        mlflow.log_param("test_size", self.config.TEST_SIZE)
        mlflow.log_param("random_state", self.config.RANDOM_STATE)

        for metric_name, value in result['test_metrics'].items():
            mlflow.log_metric(f"test_{metric_name}", value)

        ranking = result.get('feature_importance') or result.get('coefficients') or {}
        for feature, value in ranking.items():
            mlflow.log_metric(f"weight_{feature}", value)

        if model_name != 'ordinal_logistic':
            mlflow.sklearn.log_model(result['model'], "model")

        return mlflow.active_run().info.run_id


class ModelTrainingAgent:
    """Agent responsible for training and comparing the predictive models"""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.trainer = ModelTrainer(self.config.training, self.config.mlflow)

    async def train_models(self, state: dict) -> dict:
        """Train all models on the analysis frame unless modelling is switched off"""
        if not state.get('run_models', True):
            logger.info("Model training skipped")
            return {
                'model_results': {},
                'current_step': 'model_training',
                'next_action': 'complete',
                'execution_log': ["Model training skipped"]
            }

        if state.get('errors'):
            logger.warning("Model training skipped after earlier errors")
            return {
                'current_step': 'model_training',
                'next_action': 'error',
                'execution_log': ["Model training skipped after earlier errors"]
            }

        logger.info("Starting model training")

        try:
            frame = state['analysis_data']
            project_name = state.get('project_name')
            experiment = f"{project_name}_model_training" if project_name else None

            results = self.trainer.train_all(frame, experiment)
            training_report = self._build_training_report(results)

        except Exception as e:
            logger.error(f"Model training failed: {str(e)}")
            return {
                'errors': [f"Model training error: {str(e)}"],
                'current_step': 'model_training',
                'next_action': 'error'
            }

        return {
            'model_results': results,
            'training_report': training_report,
            'current_step': 'model_training',
            'next_action': 'complete',
            'execution_log': [
                f"Model training completed: {training_report['successful_models']}/"
                f"{training_report['models_trained']} models successful"
            ]
        }

    def _build_training_report(self, results: Dict[str, Dict[str, Any]]) -> dict:
        successful = {name: r for name, r in results.items() if r.get('status') == 'success'}
        classifiers = {name: r for name, r in successful.items() if r['target'] == MENTAL_HEALTH_TARGET}

        best_classifier = None
        if classifiers:
            best_classifier = max(classifiers, key=lambda name: classifiers[name]['test_metrics']['accuracy'])

        return {
            'models_trained': len(results),
            'successful_models': len(successful),
            'failed_models': sorted(set(results) - set(successful)),
            'best_classifier': best_classifier,
            'metrics': {name: r['test_metrics'] for name, r in successful.items()}
        }
