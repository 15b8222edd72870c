# tech_wellbeing/utils/sample_data.py
import logging
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from tech_wellbeing.schema import CATEGORICAL_DOMAINS, ID_COLUMN

logger = logging.getLogger(__name__)


def _hours(rng: np.random.Generator, mean: float, sd: float, n: int, upper: float) -> np.ndarray:
    return np.round(np.clip(rng.normal(mean, sd, n), 0, upper), 2)


def _ordinal_from_score(score: np.ndarray, levels) -> np.ndarray:
    """Cut a latent score into equally populated ordered levels"""
    ranks = pd.Series(score).rank(method='first', pct=True).to_numpy()
    index = np.minimum((ranks * len(levels)).astype(int), len(levels) - 1)
    return np.asarray(levels, dtype=object)[index]


def generate_survey_dataset(n_samples: int = 10000, random_state: int = 42,
                            zero_sleep_rows: int = 0) -> pd.DataFrame:
    """Synthetic survey with the canonical columns and a mild usage/wellbeing signal.

    ``zero_sleep_rows`` respondents get ``sleep_hours == 0`` to exercise the
    undefined screen-to-sleep ratio.
    """
    rng = np.random.default_rng(random_state)
    n = n_samples

    age = rng.integers(14, 66, n)
    technology = _hours(rng, 6.5, 2.5, n, 14)
    social = _hours(rng, 3.0, 1.5, n, 10)
    gaming = _hours(rng, 1.5, 1.2, n, 8)
    screen = _hours(rng, 7.0, 2.5, n, 16)
    sleep = _hours(rng, 7.0, 1.2, n, 11)
    sleep = np.maximum(sleep, 3.0)
    activity = _hours(rng, 4.0, 2.5, n, 12)

    support = rng.choice(['Yes', 'No'], n, p=[0.55, 0.45])
    online = rng.choice(['Yes', 'No'], n, p=[0.4, 0.6])
    impact = rng.choice(CATEGORICAL_DOMAINS['work_environment_impact'], n, p=[0.3, 0.4, 0.3])

    stress_score = (
        0.35 * (screen - 7.0) / 2.5
        + 0.25 * (social - 3.0) / 1.5
        - 0.30 * (sleep - 7.0) / 1.2
        - 0.20 * (impact == 'Positive')
        + rng.normal(0, 1.0, n)
    )
    wellbeing_score = (
        -0.30 * (technology + social + gaming - 11.0) / 3.0
        + 0.25 * (activity - 4.0) / 2.5
        + 0.20 * (support == 'Yes')
        - 0.25 * stress_score
        + rng.normal(0, 1.0, n)
    )

    data = pd.DataFrame({
        ID_COLUMN: [f"USER-{i:05d}" for i in range(1, n + 1)],
        'age': age,
        'gender': rng.choice(CATEGORICAL_DOMAINS['gender'], n, p=[0.48, 0.48, 0.04]),
        'technology_usage_hours': technology,
        'social_media_usage_hours': social,
        'gaming_hours': gaming,
        'screen_time_hours': screen,
        'mental_health_status': _ordinal_from_score(wellbeing_score, CATEGORICAL_DOMAINS['mental_health_status']),
        'stress_level': _ordinal_from_score(stress_score, CATEGORICAL_DOMAINS['stress_level']),
        'sleep_hours': sleep,
        'physical_activity_hours': activity,
        'support_systems_access': support,
        'work_environment_impact': impact,
        'online_support_usage': online,
    })

    if zero_sleep_rows:
        rows = rng.choice(n, size=min(zero_sleep_rows, n), replace=False)
        data.loc[rows, 'sleep_hours'] = 0.0

    return data


def write_sample_dataset(output_path: Union[str, Path], n_samples: int = 10000,
                         random_state: int = 42, zero_sleep_rows: int = 0) -> Path:
    """Generate the synthetic survey and save it as CSV"""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    data = generate_survey_dataset(n_samples, random_state, zero_sleep_rows)
    data.to_csv(output_path, index=False)

    logger.info(f"Sample dataset with {len(data)} rows written to {output_path}")
    return output_path
