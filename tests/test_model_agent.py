# tests/test_model_agent.py
import pytest
import numpy as np
from unittest import mock

from tech_wellbeing.agents.feature_agent import FeatureDeriver, build_analysis_frame
from tech_wellbeing.agents.model_agent import (
    PREDICTORS, ModelTrainer, ModelTrainingAgent, prepare_model_data
)
from tech_wellbeing.exceptions import InsufficientDataError, SchemaError


@pytest.fixture
def analysis_frame(normalized_survey):
    features, _ = FeatureDeriver().derive(normalized_survey)
    return build_analysis_frame(normalized_survey, features)


@pytest.fixture
def mock_mlflow():
    """Mock MLflow for testing"""
    with mock.patch('tech_wellbeing.agents.model_agent.mlflow') as mocked:
        mocked.active_run.return_value.info.run_id = 'test_run_id_123'
        yield mocked


class TestPrepareModelData:

    def test_complete_rows_only(self, analysis_frame):
        frame = analysis_frame.copy()
        frame.iloc[0, frame.columns.get_loc('sleep_hours')] = np.nan
        frame.iloc[1, frame.columns.get_loc('stress_level')] = np.nan

        X, y = prepare_model_data(frame, 'stress_level')

        assert len(X) == len(frame) - 2
        assert list(X.columns) == PREDICTORS
        assert (X.dtypes == np.float64).all()
        assert X.index.equals(y.index)

    def test_missing_columns(self, analysis_frame):
        with pytest.raises(SchemaError):
            prepare_model_data(analysis_frame.drop(columns=['support_index']), 'stress_level')

    def test_too_few_rows(self, analysis_frame):
        with pytest.raises(InsufficientDataError):
            prepare_model_data(analysis_frame.head(5), 'stress_level')


class TestModelTrainer:

    @pytest.fixture
    def trainer(self, config):
        return ModelTrainer(config.training, config.mlflow)

    def test_linear_regression(self, trainer, analysis_frame):
        result = trainer.fit_linear_regression(analysis_frame)

        assert result['status'] == 'success'
        assert result['target'] == 'stress_level'
        assert set(result['test_metrics']) == {'mse', 'rmse', 'mae', 'r2'}
        assert result['test_metrics']['rmse'] == pytest.approx(np.sqrt(result['test_metrics']['mse']))
        assert set(result['coefficients']) == set(PREDICTORS)
        assert result['n_train'] + result['n_test'] == len(analysis_frame)

    def test_ordinal_logistic(self, trainer, analysis_frame):
        result = trainer.fit_ordinal_logistic(analysis_frame)

        assert result['status'] == 'success'
        assert 0.0 <= result['test_metrics']['accuracy'] <= 1.0
        assert result['test_metrics']['log_likelihood'] < 0
        assert set(result['coefficients']) == set(PREDICTORS)
        # three stress levels -> two thresholds
        assert len(result['thresholds']) == 2

    def test_random_forest(self, trainer, analysis_frame):
        result = trainer.fit_random_forest(analysis_frame)

        assert result['target'] == 'mental_health_status'
        assert set(result['test_metrics']) == {'accuracy', 'precision', 'recall', 'f1'}
        assert sum(result['feature_importance'].values()) == pytest.approx(1.0)

    def test_multinomial_logistic(self, trainer, analysis_frame):
        result = trainer.fit_multinomial_logistic(analysis_frame)

        assert result['target'] == 'mental_health_status'
        assert 0.0 <= result['test_metrics']['accuracy'] <= 1.0
        assert all(value >= 0 for value in result['coefficients'].values())

    def test_train_all_without_tracking(self, trainer, analysis_frame):
        with mock.patch('tech_wellbeing.agents.model_agent.mlflow') as mocked:
            results = trainer.train_all(analysis_frame)

        assert set(results) == {'linear_regression', 'ordinal_logistic', 'random_forest', 'multinomial_logistic'}
        assert all(r['status'] == 'success' for r in results.values())
        assert all(r['mlflow_run_id'] is None for r in results.values())
        mocked.start_run.assert_not_called()

    def test_train_all_with_tracking(self, config, analysis_frame, mock_mlflow):
        config.mlflow.ENABLED = True
        trainer = ModelTrainer(config.training, config.mlflow)

        results = trainer.train_all(analysis_frame, experiment_name="unit_test")

        mock_mlflow.set_experiment.assert_called_once_with("unit_test")
        assert mock_mlflow.start_run.call_count == 4
        assert all(r['mlflow_run_id'] == 'test_run_id_123' for r in results.values())
        mock_mlflow.log_metric.assert_any_call("test_r2", results['linear_regression']['test_metrics']['r2'])

    def test_failed_model_does_not_stop_others(self, trainer, analysis_frame):
        with mock.patch.object(ModelTrainer, 'fit_random_forest', side_effect=ValueError("boom")):
            results = trainer.train_all(analysis_frame)

        assert results['random_forest'] == {'status': 'failed', 'error': 'boom'}
        assert results['linear_regression']['status'] == 'success'


class TestModelTrainingAgent:

    @pytest.mark.asyncio
    async def test_train_models(self, config, analysis_frame):
        agent = ModelTrainingAgent(config)

        result = await agent.train_models({'analysis_data': analysis_frame, 'run_models': True})

        report = result['training_report']
        assert result['next_action'] == 'complete'
        assert report['models_trained'] == 4
        assert report['successful_models'] == 4
        assert report['best_classifier'] in {'random_forest', 'multinomial_logistic'}

    @pytest.mark.asyncio
    async def test_skipped(self, config, analysis_frame):
        agent = ModelTrainingAgent(config)

        result = await agent.train_models({'analysis_data': analysis_frame, 'run_models': False})

        assert result['model_results'] == {}
        assert result['execution_log'] == ["Model training skipped"]

    @pytest.mark.asyncio
    async def test_skipped_after_errors(self, config, analysis_frame):
        agent = ModelTrainingAgent(config)

        with mock.patch.object(agent.trainer, 'train_all') as train_all:
            result = await agent.train_models({
                'analysis_data': analysis_frame,
                'run_models': True,
                'errors': ["Group summary error: boom"]
            })

        train_all.assert_not_called()
        assert result['next_action'] == 'error'
        assert 'model_results' not in result
