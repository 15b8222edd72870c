# tech_wellbeing/agents/summary_agent.py
import pandas as pd
import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging

from tech_wellbeing.config import Config, get_config
from tech_wellbeing.exceptions import SchemaError
from tech_wellbeing.schema import USAGE_COLUMNS

logger = logging.getLogger(__name__)

# (group column, value columns) pairs summarised on every run
DEFAULT_SUMMARIES: List[Tuple[str, List[str]]] = [
    ('gender', USAGE_COLUMNS),
    ('age_group', ['technology_usage_hours', 'social_media_usage_hours', 'combined_tech_hours']),
    ('mental_health_status', ['screen_time_hours', 'sleep_hours', 'combined_tech_hours']),
    ('stress_level', ['combined_tech_hours', 'screen_to_sleep_ratio', 'physical_activity_hours']),
    ('support_index', ['combined_tech_hours', 'sleep_hours']),
    ('work_environment_impact', ['technology_usage_hours', 'screen_time_hours']),
]

CORRELATION_COLUMNS = [
    'age',
    'technology_usage_hours',
    'social_media_usage_hours',
    'gaming_hours',
    'screen_time_hours',
    'sleep_hours',
    'physical_activity_hours',
    'combined_tech_hours',
    'screen_to_sleep_ratio',
    'support_index',
    'work_impact_score',
]


@dataclass(frozen=True)
class GroupSummary:
    """Mean and count of numeric columns per value of a categorical column"""
    group_column: str
    value_columns: Tuple[str, ...]
    table: pd.DataFrame

    @property
    def groups(self) -> List:
        return list(self.table.index)

    def mean(self, group, column: str) -> float:
        return float(self.table.loc[group, f"{column}_mean"])

    def count(self, group) -> int:
        return int(self.table.loc[group, 'count'])

    def to_records(self) -> List[dict]:
        """One flat dict per group, ready for line-delimited export"""
        records = []
        for group, row in self.table.iterrows():
            record = {'group_column': self.group_column, 'group': _plain(group), 'count': int(row['count'])}
            for column in self.value_columns:
                mean = row[f"{column}_mean"]
                record[f"{column}_mean"] = None if pd.isna(mean) else float(mean)
            records.append(record)
        return records


def _plain(value):
    if isinstance(value, np.generic):
        return value.item()
    return value


def summarize_groups(frame: pd.DataFrame, group_column: str,
                     value_columns: Sequence[str]) -> GroupSummary:
    """Group ``frame`` by ``group_column`` and aggregate each value column.

    The mean ignores missing values; the count includes every record of the
    group. Records with a missing group key are left out, and only groups
    that occur in the data are reported.

    Raises:
        SchemaError: the grouping column or a value column does not exist.
    """
    if group_column not in frame.columns:
        raise SchemaError(f"Grouping column '{group_column}' not found", column=group_column)

    value_columns = list(value_columns)
    missing = [col for col in value_columns if col not in frame.columns]
    if missing:
        raise SchemaError(f"Value columns not found: {missing}")

    grouped = frame.groupby(group_column, observed=True, sort=True)

    table = pd.DataFrame({'count': grouped.size()})
    means = grouped[value_columns].mean()
    for column in value_columns:
        table[f"{column}_mean"] = means[column].astype('float64')

    table.index.name = group_column
    return GroupSummary(group_column=group_column, value_columns=tuple(value_columns), table=table)


def correlation_matrix(frame: pd.DataFrame, columns: Optional[Sequence[str]] = None,
                       method: str = 'pearson') -> pd.DataFrame:
    """Pairwise correlation of numeric columns (missing values excluded pairwise)"""
    columns = [col for col in (columns or CORRELATION_COLUMNS) if col in frame.columns]
    numeric = frame[columns].apply(pd.to_numeric, errors='coerce').astype('float64')
    return numeric.corr(method=method)


def strongest_correlations(matrix: pd.DataFrame, top_n: int = 10) -> List[dict]:
    """Off-diagonal pairs ordered by absolute correlation"""
    pairs = []
    columns = list(matrix.columns)
    for i in range(len(columns)):
        for j in range(i + 1, len(columns)):
            value = matrix.iloc[i, j]
            if pd.isna(value):
                continue
            pairs.append({'feature1': columns[i], 'feature2': columns[j], 'correlation': float(value)})

    pairs.sort(key=lambda pair: abs(pair['correlation']), reverse=True)
    return pairs[:top_n]


def describe_numeric(frame: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """count/mean/std/min/quartiles/max for numeric columns"""
    columns = [col for col in (columns or CORRELATION_COLUMNS) if col in frame.columns]
    numeric = frame[columns].apply(pd.to_numeric, errors='coerce').astype('float64')
    return numeric.describe().T


class GroupSummaryAgent:
    """Agent computing grouped summaries and descriptive statistics"""

    def __init__(self, config: Optional[Config] = None,
                 summaries: Optional[List[Tuple[str, List[str]]]] = None):
        self.config = config or get_config()
        self.summaries = summaries if summaries is not None else DEFAULT_SUMMARIES

    async def summarize(self, state: dict) -> dict:
        """Compute the configured group summaries over the analysis frame"""
        logger.info("Starting group summaries")

        try:
            frame = state['analysis_data']

            group_summaries = {}
            for group_column, value_columns in self.summaries:
                summary = summarize_groups(frame, group_column, value_columns)
                group_summaries[group_column] = summary
                logger.debug(f"Summarised {len(value_columns)} columns over {len(summary.groups)} '{group_column}' groups")

            correlations = correlation_matrix(frame)
            descriptive = describe_numeric(frame)

        except Exception as e:
            logger.error(f"Group summaries failed: {str(e)}")
            return {'errors': [f"Group summary error: {str(e)}"]}

        return {
            'group_summaries': group_summaries,
            'correlation_matrix': correlations,
            'top_correlations': strongest_correlations(correlations),
            'descriptive_statistics': descriptive,
            'execution_log': [
                f"Group summaries completed: {len(group_summaries)} groupings, "
                f"{correlations.shape[0]}x{correlations.shape[1]} correlation matrix"
            ]
        }
