# tests/test_stats_agent.py
import pytest
import pandas as pd
import numpy as np
from scipy import stats

from tech_wellbeing.agents.feature_agent import FeatureDeriver, build_analysis_frame
from tech_wellbeing.agents.stats_agent import (
    ANOVA, CHI_SQUARED, DEFAULT_TEST_PAIRS, KRUSKAL_WALLIS, SPEARMAN,
    AssociationResult, AssociationTester, AssociationTestingAgent,
    contingency_table, normality_sample
)
from tech_wellbeing.exceptions import InsufficientDataError, SchemaError
from tech_wellbeing.schema import CATEGORICAL, NUMERIC

SCHEMA = {'a': CATEGORICAL, 'b': CATEGORICAL, 'value': NUMERIC, 'group': CATEGORICAL, 'other': NUMERIC}


def _two_by_two(a, b, c, d):
    """Frame whose a x b contingency table is [[a, b], [c, d]]"""
    rows = (
        [('x', 'p')] * a + [('x', 'q')] * b +
        [('y', 'p')] * c + [('y', 'q')] * d
    )
    return pd.DataFrame(rows, columns=['a', 'b'])


def _grouped(values, n_groups=3):
    values = np.asarray(values, dtype=float)
    groups = [f"g{i % n_groups}" for i in range(len(values))]
    return pd.DataFrame({'value': values, 'group': groups})


@pytest.fixture
def tester(config):
    return AssociationTester(config.statistics)


class TestChiSquared:

    def test_two_by_two_closed_form(self, tester):
        a, b, c, d = 10, 20, 30, 40
        n = a + b + c + d
        expected = n * (a * d - b * c) ** 2 / ((a + b) * (c + d) * (a + c) * (b + d))

        result = tester.test(_two_by_two(a, b, c, d), 'a', 'b', SCHEMA)

        assert result.test == CHI_SQUARED
        assert result.statistic == pytest.approx(expected, abs=1e-6)
        assert result.degrees_of_freedom == (1,)
        assert result.p_value == pytest.approx(stats.chi2.sf(expected, 1), abs=1e-6)
        assert result.n_observations == n
        assert result.significant == (result.p_value < 0.05)

    def test_degrees_of_freedom(self, tester):
        frame = pd.DataFrame({
            'a': ['x', 'y', 'z'] * 20,
            'b': ['p', 'q', 'q', 'r'] * 15,
        })

        result = tester.test(frame, 'a', 'b', SCHEMA)

        assert result.degrees_of_freedom == (4,)

    def test_single_level_is_insufficient(self, tester):
        frame = pd.DataFrame({'a': ['x'] * 10, 'b': ['p', 'q'] * 5})

        with pytest.raises(InsufficientDataError):
            tester.test(frame, 'a', 'b', SCHEMA)

    def test_contingency_table_excludes_missing(self):
        frame = _two_by_two(2, 3, 4, 5)
        frame.loc[0, 'a'] = np.nan

        table = contingency_table(frame['a'], frame['b'])

        assert table.to_numpy().tolist() == [[1, 3], [4, 5]]


class TestGroupComparison:

    def test_normal_values_use_anova(self, tester):
        n = 90
        values = stats.norm.ppf((np.arange(1, n + 1) - 0.5) / n, loc=10, scale=2)

        result = tester.test(_grouped(values), 'value', 'group', SCHEMA)

        assert result.test == ANOVA
        assert result.normality_p_value >= 0.05
        assert result.degrees_of_freedom == (2, n - 3)
        assert result.n_observations == n

    def test_skewed_values_use_kruskal(self, tester):
        n = 90
        values = stats.expon.ppf((np.arange(1, n + 1) - 0.5) / n) ** 2

        result = tester.test(_grouped(values), 'value', 'group', SCHEMA)

        assert result.test == KRUSKAL_WALLIS
        assert result.normality_p_value < 0.05
        assert result.degrees_of_freedom == (2,)

    def test_argument_order_does_not_matter(self, tester):
        frame = _grouped(np.arange(60.0) ** 4)

        forward = tester.test(frame, 'value', 'group', SCHEMA)
        backward = tester.test(frame, 'group', 'value', SCHEMA)

        assert forward.statistic == backward.statistic
        assert forward.p_value == backward.p_value

    def test_statistic_matches_scipy(self, tester):
        frame = _grouped(np.arange(60.0) ** 4)
        samples = [grp['value'].to_numpy() for _, grp in frame.groupby('group')]

        result = tester.test(frame, 'value', 'group', SCHEMA)

        assert result.statistic == pytest.approx(stats.kruskal(*samples).statistic)

    def test_small_group_is_insufficient(self, tester):
        frame = _grouped(np.arange(20.0), n_groups=2)
        frame.loc[len(frame)] = [100.0, 'lonely']

        with pytest.raises(InsufficientDataError, match="lonely|sizes"):
            tester.test(frame, 'value', 'group', SCHEMA)

    def test_single_group_is_insufficient(self, tester):
        frame = _grouped(np.arange(20.0), n_groups=1)

        with pytest.raises(InsufficientDataError):
            tester.test(frame, 'value', 'group', SCHEMA)


class TestNormalitySubsample:

    def test_small_input_unchanged(self):
        values = np.arange(10.0)

        np.testing.assert_array_equal(normality_sample(values, 5000, 42), values)

    def test_reproducible(self):
        values = np.random.default_rng(0).lognormal(size=12000)

        first = normality_sample(values, 5000, 42)
        second = normality_sample(values, 5000, 42)

        assert len(first) == 5000
        np.testing.assert_array_equal(first, second)

    def test_p_value_reproducible(self, config):
        config.statistics.NORMALITY_MAX_SAMPLE = 50
        tester = AssociationTester(config.statistics)
        values = np.random.default_rng(1).normal(size=500)

        assert tester.normality_p_value(values) == tester.normality_p_value(values)

    def test_constant_values_not_normal(self, tester):
        assert tester.normality_p_value(np.ones(20)) == 0.0


class TestRankCorrelation:

    def test_spearman(self, tester):
        frame = pd.DataFrame({'value': [1.0, 2.0, 3.0, 4.0, 5.0], 'other': [1.0, 4.0, 9.0, 16.0, 25.0]})

        result = tester.test(frame, 'value', 'other', SCHEMA)

        assert result.test == SPEARMAN
        assert result.statistic == pytest.approx(1.0)
        assert result.degrees_of_freedom == ()

    def test_constant_is_insufficient(self, tester):
        frame = pd.DataFrame({'value': [1.0] * 5, 'other': [1.0, 2.0, 3.0, 4.0, 5.0]})

        with pytest.raises(InsufficientDataError):
            tester.test(frame, 'value', 'other', SCHEMA)


class TestRunTests:

    def test_not_computable_is_reported(self, tester):
        frame = pd.DataFrame({
            'a': ['x'] * 10,
            'b': ['p', 'q'] * 5,
            'value': np.arange(10.0),
            'group': ['g0', 'g1'] * 5,
        })

        results = tester.run_tests(frame, [('a', 'b'), ('value', 'group')], SCHEMA)

        assert len(results) == 2
        assert results[0].computable is False
        assert results[0].test == CHI_SQUARED
        assert results[0].reason
        assert results[0].p_value is None
        assert results[1].computable is True

    def test_constant_values_not_computable(self, tester):
        frame = pd.DataFrame({'value': [7.0] * 30, 'group': ['g0', 'g1', 'g2'] * 10})

        results = tester.run_tests(frame, [('value', 'group')], SCHEMA)

        assert results[0].computable is False
        assert results[0].test == 'group_comparison'
        assert "constant" in results[0].reason
        assert results[0].p_value is None

    def test_non_finite_statistic_not_computable(self, tester, monkeypatch):
        monkeypatch.setattr(stats, 'spearmanr', lambda a, b: (float('nan'), float('nan')))
        frame = pd.DataFrame({'value': [1.0, 2.0, 3.0, 4.0], 'other': [2.0, 1.0, 4.0, 3.0]})

        results = tester.run_tests(frame, [('value', 'other')], SCHEMA)

        assert results[0].computable is False
        assert "non-finite" in results[0].reason

    def test_unknown_column_is_an_error(self, tester):
        frame = pd.DataFrame({'a': ['x', 'y'], 'b': ['p', 'q']})

        with pytest.raises(SchemaError):
            tester.run_tests(frame, [('a', 'missing')], SCHEMA)

    def test_to_dict(self):
        result = AssociationResult.not_computable('a', 'b', CHI_SQUARED, "too few levels")

        assert result.to_dict() == {
            'variable_a': 'a', 'variable_b': 'b', 'test': CHI_SQUARED,
            'statistic': None, 'degrees_of_freedom': [], 'p_value': None,
            'significant': False, 'n_observations': 0, 'normality_p_value': None,
            'computable': False, 'reason': "too few levels"
        }


class TestAssociationTestingAgent:

    @pytest.mark.asyncio
    async def test_default_pairs(self, config, normalized_survey):
        features, _ = FeatureDeriver().derive(normalized_survey)
        frame = build_analysis_frame(normalized_survey, features)
        agent = AssociationTestingAgent(config)

        result = await agent.test_associations({'analysis_data': frame})

        results = result['association_results']
        assert len(results) == len(DEFAULT_TEST_PAIRS)
        assert all(r.computable for r in results)
        assert all(0.0 <= r.p_value <= 1.0 for r in results)
        assert 'next_action' not in result

    @pytest.mark.asyncio
    async def test_error(self, config):
        agent = AssociationTestingAgent(config)

        result = await agent.test_associations({'analysis_data': pd.DataFrame({'x': [1]})})

        assert "Association testing error" in result['errors'][0]
