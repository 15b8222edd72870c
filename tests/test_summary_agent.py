# tests/test_summary_agent.py
import pytest
import pandas as pd
import numpy as np

from tech_wellbeing.agents.feature_agent import FeatureDeriver, build_analysis_frame
from tech_wellbeing.agents.summary_agent import (
    GroupSummaryAgent, correlation_matrix, describe_numeric,
    strongest_correlations, summarize_groups
)
from tech_wellbeing.exceptions import SchemaError


@pytest.fixture
def analysis_frame(normalized_survey):
    features, _ = FeatureDeriver().derive(normalized_survey)
    return build_analysis_frame(normalized_survey, features)


class TestSummarizeGroups:

    @pytest.fixture
    def two_groups(self):
        return pd.DataFrame({
            'group': ['A'] * 3 + ['B'] * 5,
            'hours': [1.0, 2.0, 3.0, 2.0, 4.0, 6.0, 8.0, 10.0],
            'sleep': [7.0, 8.0, 6.0, 5.0, 5.0, 5.0, 5.0, 5.5],
        })

    def test_counts_and_means(self, two_groups):
        summary = summarize_groups(two_groups, 'group', ['hours', 'sleep'])

        assert summary.groups == ['A', 'B']
        assert summary.count('A') == 3
        assert summary.count('B') == 5
        assert summary.mean('A', 'hours') == 2.0
        assert summary.mean('B', 'hours') == 6.0
        assert summary.mean('A', 'sleep') == 7.0
        assert summary.mean('B', 'sleep') == 5.1

    def test_mean_ignores_missing_count_does_not(self, two_groups):
        two_groups.loc[0, 'hours'] = np.nan

        summary = summarize_groups(two_groups, 'group', ['hours'])

        assert summary.count('A') == 3
        assert summary.mean('A', 'hours') == 2.5

    def test_missing_group_key_excluded(self, two_groups):
        two_groups.loc[7, 'group'] = np.nan

        summary = summarize_groups(two_groups, 'group', ['hours'])

        assert summary.count('B') == 4
        assert summary.mean('B', 'hours') == 5.0

    def test_only_observed_categories(self, two_groups):
        two_groups['group'] = pd.Categorical(two_groups['group'], categories=['A', 'B', 'C'])

        summary = summarize_groups(two_groups, 'group', ['hours'])

        assert summary.groups == ['A', 'B']

    def test_missing_grouping_column(self, two_groups):
        with pytest.raises(SchemaError) as exc_info:
            summarize_groups(two_groups, 'gender', ['hours'])

        assert exc_info.value.column == 'gender'

    def test_missing_value_column(self, two_groups):
        with pytest.raises(SchemaError, match="minutes"):
            summarize_groups(two_groups, 'group', ['minutes'])

    def test_to_records(self, two_groups):
        records = summarize_groups(two_groups, 'group', ['hours']).to_records()

        assert records == [
            {'group_column': 'group', 'group': 'A', 'count': 3, 'hours_mean': 2.0},
            {'group_column': 'group', 'group': 'B', 'count': 5, 'hours_mean': 6.0},
        ]


class TestCorrelations:

    def test_matrix_is_symmetric(self, analysis_frame):
        matrix = correlation_matrix(analysis_frame)

        assert list(matrix.index) == list(matrix.columns)
        np.testing.assert_allclose(matrix.to_numpy(), matrix.to_numpy().T)
        np.testing.assert_allclose(np.diag(matrix.to_numpy()), 1.0)

    def test_strongest_correlations_sorted(self):
        frame = pd.DataFrame({
            'x': [1.0, 2.0, 3.0, 4.0, 5.0],
            'y': [2.0, 4.0, 6.0, 8.0, 10.0],
            'z': [5.0, 3.0, 4.0, 1.0, 2.0],
        })
        matrix = correlation_matrix(frame, columns=['x', 'y', 'z'])

        pairs = strongest_correlations(matrix, top_n=2)

        assert len(pairs) == 2
        assert (pairs[0]['feature1'], pairs[0]['feature2']) == ('x', 'y')
        assert pairs[0]['correlation'] == pytest.approx(1.0)
        assert abs(pairs[0]['correlation']) >= abs(pairs[1]['correlation'])

    def test_describe_numeric(self, analysis_frame):
        description = describe_numeric(analysis_frame, ['sleep_hours', 'combined_tech_hours'])

        assert list(description.index) == ['sleep_hours', 'combined_tech_hours']
        assert description.loc['sleep_hours', 'count'] == len(analysis_frame)


class TestGroupSummaryAgent:

    @pytest.mark.asyncio
    async def test_summarize(self, config, analysis_frame):
        agent = GroupSummaryAgent(config)

        result = await agent.summarize({'analysis_data': analysis_frame})

        summaries = result['group_summaries']
        assert {'gender', 'age_group', 'mental_health_status', 'stress_level'} <= set(summaries)
        assert sum(summaries['gender'].count(g) for g in summaries['gender'].groups) == len(analysis_frame)
        assert result['top_correlations']
        # parallel branch: does not touch the workflow routing keys
        assert 'next_action' not in result
        assert 'current_step' not in result

    @pytest.mark.asyncio
    async def test_summarize_error(self, config, analysis_frame):
        agent = GroupSummaryAgent(config, summaries=[('no_such_column', ['sleep_hours'])])

        result = await agent.summarize({'analysis_data': analysis_frame})

        assert "Group summary error" in result['errors'][0]
        assert 'next_action' not in result
