# tech_wellbeing/agents/feature_agent.py
import pandas as pd
import numpy as np
from bisect import bisect_left
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

from tech_wellbeing.config import Config, FeatureDerivationConfig, get_config
from tech_wellbeing.exceptions import DerivationError, DivisionByZeroError
from tech_wellbeing.schema import ID_COLUMN, WORK_IMPACT_SCORES

logger = logging.getLogger(__name__)

DERIVED_COLUMNS = [
    'combined_tech_hours',
    'screen_to_sleep_ratio',
    'active_lifestyle',
    'youth_category',
    'tech_addiction_risk',
    'support_index',
    'work_impact_score',
    'age_group',
]

RATIO_FLAG = 'screen_to_sleep_undefined'


def _number(value: Any) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _flag(condition: bool, *inputs: Optional[float]) -> Optional[int]:
    if any(v is None for v in inputs):
        return None
    return 1 if condition else 0


def _rate(flags: pd.Series) -> Optional[float]:
    value = flags.mean()
    return None if pd.isna(value) else float(value)


def bucket_age(age: Optional[float], boundaries: List[float], labels: List[str]) -> Optional[str]:
    """Right-inclusive bucketing: a value equal to a boundary falls in the lower bucket"""
    if age is None:
        return None
    return labels[bisect_left(boundaries, age)]


def derive_record(record: Mapping[str, Any],
                  config: Optional[FeatureDerivationConfig] = None) -> Dict[str, Any]:
    """Derive the engineered features for a single respondent.

    Missing numeric inputs give missing (None) outputs. Raises
    DivisionByZeroError when sleep_hours is zero.
    """
    cfg = config or get_config().feature_derivation
    record_id = record.get(ID_COLUMN)

    tech = _number(record['technology_usage_hours'])
    social = _number(record['social_media_usage_hours'])
    gaming = _number(record['gaming_hours'])
    screen = _number(record['screen_time_hours'])
    sleep = _number(record['sleep_hours'])
    activity = _number(record['physical_activity_hours'])
    age = _number(record['age'])

    if sleep == 0:
        raise DivisionByZeroError(
            f"sleep_hours is 0 for record {record_id}; screen_to_sleep_ratio is undefined",
            record_id=record_id, feature='screen_to_sleep_ratio'
        )

    combined = None if None in (tech, social, gaming) else tech + social + gaming
    ratio = None if None in (screen, sleep) else screen / sleep

    support = record.get('support_systems_access')
    online = record.get('online_support_usage')
    impact = record.get('work_environment_impact')

    return {
        'combined_tech_hours': combined,
        'screen_to_sleep_ratio': ratio,
        'active_lifestyle': _flag(activity is not None and activity >= cfg.ACTIVE_LIFESTYLE_MIN_HOURS, activity),
        'youth_category': _flag(age is not None and age <= cfg.YOUTH_MAX_AGE, age),
        'tech_addiction_risk': _flag(combined is not None and combined >= cfg.TECH_RISK_MIN_HOURS, combined),
        'support_index': (1 if support == "Yes" else 0) + (1 if online == "Yes" else 0),
        'work_impact_score': WORK_IMPACT_SCORES.get(impact) if isinstance(impact, str) else None,
        'age_group': bucket_age(age, list(cfg.AGE_BOUNDARIES), list(cfg.AGE_LABELS)),
    }


class FeatureDeriver:
    """Vectorised form of derive_record over a normalized table.

    Produces the same values as applying derive_record to every record. A
    zero sleep_hours does not abort the run: the ratio is left missing, the
    record is flagged in ``screen_to_sleep_undefined`` and a DerivationError
    is collected for it.
    """

    def __init__(self, config: Optional[FeatureDerivationConfig] = None, id_column: str = ID_COLUMN):
        self.config = config or get_config().feature_derivation
        self.id_column = id_column

    def derive(self, table: pd.DataFrame) -> Tuple[pd.DataFrame, List[DerivationError]]:
        cfg = self.config
        frame = table.set_index(self.id_column) if self.id_column in table.columns else table

        features = pd.DataFrame(index=frame.index)

        combined = frame['technology_usage_hours'] + frame['social_media_usage_hours'] + frame['gaming_hours']
        features['combined_tech_hours'] = combined

        sleep = frame['sleep_hours']
        zero_sleep = sleep == 0
        features['screen_to_sleep_ratio'] = frame['screen_time_hours'] / sleep.mask(zero_sleep)
        features[RATIO_FLAG] = zero_sleep

        activity = frame['physical_activity_hours']
        features['active_lifestyle'] = self._flag(activity >= cfg.ACTIVE_LIFESTYLE_MIN_HOURS, activity)
        features['youth_category'] = self._flag(frame['age'] <= cfg.YOUTH_MAX_AGE, frame['age'])
        features['tech_addiction_risk'] = self._flag(combined >= cfg.TECH_RISK_MIN_HOURS, combined)

        features['support_index'] = (
            (frame['support_systems_access'].astype(object) == "Yes").astype(int)
            + (frame['online_support_usage'].astype(object) == "Yes").astype(int)
        )

        features['work_impact_score'] = (
            frame['work_environment_impact'].astype(object).map(WORK_IMPACT_SCORES).astype('Int64')
        )

        features['age_group'] = pd.cut(
            frame['age'],
            bins=[-np.inf, *cfg.AGE_BOUNDARIES, np.inf],
            labels=list(cfg.AGE_LABELS),
            right=True
        )

        errors = [
            DerivationError(
                record_id=record_id,
                feature='screen_to_sleep_ratio',
                message=f"sleep_hours is 0 for record {record_id}; screen_to_sleep_ratio is undefined"
            )
            for record_id in features.index[zero_sleep.to_numpy()]
        ]

        if errors:
            logger.warning(f"{len(errors)} records have sleep_hours == 0; screen_to_sleep_ratio left undefined")

        return features[DERIVED_COLUMNS + [RATIO_FLAG]], errors

    @staticmethod
    def _flag(condition: pd.Series, source: pd.Series) -> pd.Series:
        """0/1 flag that stays missing where its input is missing"""
        return condition.astype('Int64').where(source.notna())


def derive_records(table: pd.DataFrame,
                   config: Optional[FeatureDerivationConfig] = None) -> Tuple[pd.DataFrame, List[DerivationError]]:
    """Apply derive_record to every record, isolating per-record failures"""
    cfg = config or get_config().feature_derivation
    rows = {}
    errors = []

    for record in table.to_dict('records'):
        record_id = record.get(ID_COLUMN)
        try:
            rows[record_id] = derive_record(record, cfg)
        except DivisionByZeroError as e:
            errors.append(DerivationError.from_exception(e))

    features = pd.DataFrame.from_dict(rows, orient='index', columns=DERIVED_COLUMNS)
    features.index.name = ID_COLUMN
    return features, errors


def build_analysis_frame(table: pd.DataFrame, features: pd.DataFrame,
                         id_column: str = ID_COLUMN) -> pd.DataFrame:
    """Join the normalized table with its derived features, indexed by identifier"""
    frame = table.set_index(id_column) if id_column in table.columns else table
    return frame.join(features, how='left')


class FeatureEngineeringAgent:
    """Agent responsible for deriving the engineered survey features"""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.deriver = FeatureDeriver(self.config.feature_derivation)

    async def engineer_features(self, state: dict) -> dict:
        """Derive features for every record of the normalized table"""
        logger.info("Starting feature engineering")

        try:
            table = state['normalized_data']
            features, derivation_errors = self.deriver.derive(table)
            analysis_data = build_analysis_frame(table, features)
            feature_report = self._build_feature_report(features, derivation_errors)

        except Exception as e:
            logger.error(f"Feature engineering failed: {str(e)}")
            return {
                'errors': [f"Feature engineering error: {str(e)}"],
                'current_step': 'feature_engineering',
                'next_action': 'error'
            }

        return {
            'derived_features': features,
            'derivation_errors': derivation_errors,
            'analysis_data': analysis_data,
            'feature_report': feature_report,
            'current_step': 'feature_engineering',
            'next_action': 'analysis',
            'execution_log': [
                f"Feature engineering completed: {len(DERIVED_COLUMNS)} features for {len(features)} records, "
                f"{len(derivation_errors)} derivation errors"
            ]
        }

    def _build_feature_report(self, features: pd.DataFrame, errors: List[DerivationError]) -> dict:
        age_counts = features['age_group'].value_counts(sort=False)
        return {
            'n_records': int(len(features)),
            'derived_columns': list(DERIVED_COLUMNS),
            'derivation_errors': len(errors),
            'undefined_ratios': int(features[RATIO_FLAG].sum()),
            'tech_addiction_risk_rate': _rate(features['tech_addiction_risk']),
            'active_lifestyle_rate': _rate(features['active_lifestyle']),
            'support_index_counts': {int(k): int(v) for k, v in features['support_index'].value_counts().sort_index().items()},
            'age_group_counts': {str(k): int(v) for k, v in age_counts.items()}
        }
