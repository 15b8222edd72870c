# tech_wellbeing/schema.py
"""Column declarations for the technology usage / mental health survey.

Column names are the canonical snake_case form produced by the loader, so the
public header ``Technology_Usage_Hours`` is addressed as
``technology_usage_hours``.
"""
from typing import Dict, List

NUMERIC = "numeric"
CATEGORICAL = "categorical"

ID_COLUMN = "user_id"

SURVEY_SCHEMA: Dict[str, str] = {
    'age': NUMERIC,
    'gender': CATEGORICAL,
    'technology_usage_hours': NUMERIC,
    'social_media_usage_hours': NUMERIC,
    'gaming_hours': NUMERIC,
    'screen_time_hours': NUMERIC,
    'mental_health_status': CATEGORICAL,
    'stress_level': CATEGORICAL,
    'sleep_hours': NUMERIC,
    'physical_activity_hours': NUMERIC,
    'support_systems_access': CATEGORICAL,
    'work_environment_impact': CATEGORICAL,
    'online_support_usage': CATEGORICAL,
}

# Ordinal columns list their levels from lowest to highest
CATEGORICAL_DOMAINS: Dict[str, List[str]] = {
    'gender': ['Male', 'Female', 'Other'],
    'mental_health_status': ['Poor', 'Fair', 'Good', 'Excellent'],
    'stress_level': ['Low', 'Medium', 'High'],
    'support_systems_access': ['Yes', 'No'],
    'work_environment_impact': ['Negative', 'Neutral', 'Positive'],
    'online_support_usage': ['Yes', 'No'],
}

ORDINAL_COLUMNS = ('mental_health_status', 'stress_level', 'work_environment_impact')

WORK_IMPACT_SCORES = {'Positive': 1, 'Neutral': 0, 'Negative': -1}

STRESS_SCORES = {'Low': 1, 'Medium': 2, 'High': 3}

# Semantic types of the columns added by the feature deriver
DERIVED_SCHEMA: Dict[str, str] = {
    'combined_tech_hours': NUMERIC,
    'screen_to_sleep_ratio': NUMERIC,
    'active_lifestyle': CATEGORICAL,
    'youth_category': CATEGORICAL,
    'tech_addiction_risk': CATEGORICAL,
    'support_index': CATEGORICAL,
    'work_impact_score': NUMERIC,
    'age_group': CATEGORICAL,
}

USAGE_COLUMNS = [
    'technology_usage_hours',
    'social_media_usage_hours',
    'gaming_hours',
    'screen_time_hours',
]


def analysis_schema() -> Dict[str, str]:
    """Survey columns plus derived columns, as used by the association tests"""
    schema = dict(SURVEY_SCHEMA)
    schema.update(DERIVED_SCHEMA)
    return schema


def normalize_header(name: str) -> str:
    """Map a raw CSV header onto the canonical column name"""
    return "_".join(str(name).strip().lower().split())
