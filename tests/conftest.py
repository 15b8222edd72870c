# tests/conftest.py
import pytest

from tech_wellbeing.config import Config
from tech_wellbeing.agents.data_agent import SchemaNormalizer
from tech_wellbeing.utils.sample_data import generate_survey_dataset


@pytest.fixture
def config():
    """Default configuration with MLflow tracking switched off"""
    cfg = Config()
    cfg.mlflow.ENABLED = False
    cfg.training.RF_N_ESTIMATORS = 25
    return cfg


@pytest.fixture
def survey_data():
    """Raw synthetic survey as it would come out of the loader"""
    return generate_survey_dataset(n_samples=400, random_state=7).astype(str)


@pytest.fixture
def normalized_survey(survey_data):
    table, _ = SchemaNormalizer().normalize(survey_data)
    return table


@pytest.fixture
def survey_csv(tmp_path):
    """Synthetic survey written to disk, with a few zero-sleep respondents"""
    data = generate_survey_dataset(n_samples=300, random_state=11, zero_sleep_rows=3)
    path = tmp_path / "survey.csv"
    data.to_csv(path, index=False)
    return path


def make_record(**overrides):
    """A single well-formed respondent, with selected fields overridden"""
    record = {
        'user_id': 'USER-00001',
        'age': 30.0,
        'gender': 'Female',
        'technology_usage_hours': 5.0,
        'social_media_usage_hours': 3.0,
        'gaming_hours': 1.0,
        'screen_time_hours': 8.0,
        'mental_health_status': 'Good',
        'stress_level': 'Medium',
        'sleep_hours': 7.0,
        'physical_activity_hours': 2.0,
        'support_systems_access': 'Yes',
        'work_environment_impact': 'Neutral',
        'online_support_usage': 'No',
    }
    record.update(overrides)
    return record


@pytest.fixture
def record_factory():
    return make_record
