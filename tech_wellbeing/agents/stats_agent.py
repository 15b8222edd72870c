# tech_wellbeing/agents/stats_agent.py
import pandas as pd
import numpy as np
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple
import logging
from scipy import stats

from tech_wellbeing.config import Config, StatisticalTestConfig, get_config
from tech_wellbeing.exceptions import InsufficientDataError, SchemaError
from tech_wellbeing.schema import CATEGORICAL, NUMERIC, analysis_schema

logger = logging.getLogger(__name__)

CHI_SQUARED = 'chi_squared'
ANOVA = 'one_way_anova'
KRUSKAL_WALLIS = 'kruskal_wallis'
SPEARMAN = 'spearman'

# Variable pairs tested on every run
DEFAULT_TEST_PAIRS: List[Tuple[str, str]] = [
    ('gender', 'mental_health_status'),
    ('stress_level', 'mental_health_status'),
    ('support_systems_access', 'mental_health_status'),
    ('online_support_usage', 'stress_level'),
    ('work_environment_impact', 'stress_level'),
    ('tech_addiction_risk', 'mental_health_status'),
    ('age_group', 'mental_health_status'),
    ('technology_usage_hours', 'mental_health_status'),
    ('social_media_usage_hours', 'stress_level'),
    ('screen_time_hours', 'mental_health_status'),
    ('sleep_hours', 'stress_level'),
    ('combined_tech_hours', 'stress_level'),
    ('screen_to_sleep_ratio', 'mental_health_status'),
    ('technology_usage_hours', 'sleep_hours'),
]


@dataclass(frozen=True)
class AssociationResult:
    """Outcome of one association test between two variables"""
    variable_a: str
    variable_b: str
    test: str
    statistic: Optional[float] = None
    degrees_of_freedom: Tuple[float, ...] = ()
    p_value: Optional[float] = None
    significant: bool = False
    n_observations: int = 0
    normality_p_value: Optional[float] = None
    computable: bool = True
    reason: Optional[str] = None

    @classmethod
    def not_computable(cls, variable_a: str, variable_b: str, test: str, reason: str) -> "AssociationResult":
        return cls(variable_a=variable_a, variable_b=variable_b, test=test, computable=False, reason=reason)

    def to_dict(self) -> dict:
        return {
            'variable_a': self.variable_a,
            'variable_b': self.variable_b,
            'test': self.test,
            'statistic': self.statistic,
            'degrees_of_freedom': list(self.degrees_of_freedom),
            'p_value': self.p_value,
            'significant': self.significant,
            'n_observations': self.n_observations,
            'normality_p_value': self.normality_p_value,
            'computable': self.computable,
            'reason': self.reason
        }


class AssociationTester:
    """Pairwise association tests dispatched on declared column types.

    - categorical x categorical: chi-squared on the contingency table, no
      continuity correction
    - numeric x categorical: Shapiro-Wilk on the numeric values (seeded
      subsample when larger than the test's limit), then one-way ANOVA when
      normal or Kruskal-Wallis otherwise
    - numeric x numeric: Spearman rank correlation
    """

    def __init__(self, config: Optional[StatisticalTestConfig] = None):
        self.config = config or get_config().statistics

    @property
    def alpha(self) -> float:
        return self.config.ALPHA

    def test(self, frame: pd.DataFrame, column_a: str, column_b: str,
             schema: Optional[Mapping[str, str]] = None) -> AssociationResult:
        schema = schema or analysis_schema()

        for column in (column_a, column_b):
            if column not in frame.columns:
                raise SchemaError(f"Column '{column}' not found", column=column)
            if schema.get(column) not in (NUMERIC, CATEGORICAL):
                raise SchemaError(f"Column '{column}' has no declared numeric/categorical type", column=column)

        kinds = (schema[column_a], schema[column_b])

        if kinds == (CATEGORICAL, CATEGORICAL):
            return self.chi_squared(frame[column_a], frame[column_b])
        if kinds == (NUMERIC, CATEGORICAL):
            return self.compare_groups(frame[column_a], frame[column_b])
        if kinds == (CATEGORICAL, NUMERIC):
            return self.compare_groups(frame[column_b], frame[column_a])
        return self.rank_correlation(frame[column_a], frame[column_b])

    def chi_squared(self, a: pd.Series, b: pd.Series) -> AssociationResult:
        contingency = contingency_table(a, b)

        if contingency.shape[0] < 2 or contingency.shape[1] < 2:
            raise InsufficientDataError(
                f"Contingency table of '{a.name}' x '{b.name}' is {contingency.shape[0]}x{contingency.shape[1]}; "
                "both variables need at least two observed levels"
            )

        statistic, p_value, dof, _ = stats.chi2_contingency(contingency.to_numpy(), correction=False)
        return self._result(a.name, b.name, CHI_SQUARED, statistic, (int(dof),), p_value,
                            int(contingency.to_numpy().sum()))

    def compare_groups(self, values: pd.Series, groups: pd.Series) -> AssociationResult:
        data = pd.DataFrame({'value': pd.to_numeric(values, errors='coerce'), 'group': groups}).dropna()
        samples = [grp['value'].to_numpy(dtype=float)
                   for _, grp in data.groupby('group', observed=True, sort=True)]

        if len(samples) < 2:
            raise InsufficientDataError(
                f"'{groups.name}' has {len(samples)} observed groups for '{values.name}'; need at least 2"
            )

        small = [len(sample) for sample in samples if len(sample) < self.config.MIN_GROUP_SIZE]
        if small:
            raise InsufficientDataError(
                f"Groups of '{groups.name}' with fewer than {self.config.MIN_GROUP_SIZE} observations "
                f"of '{values.name}': sizes {small}"
            )

        if np.ptp(data['value'].to_numpy(dtype=float)) == 0:
            raise InsufficientDataError(f"'{values.name}' is constant; group comparison is undefined")

        normality_p = self.normality_p_value(data['value'].to_numpy(dtype=float))
        n_total = len(data)
        k = len(samples)

        if normality_p >= self.alpha:
            statistic, p_value = stats.f_oneway(*samples)
            return self._result(values.name, groups.name, ANOVA, statistic, (k - 1, n_total - k),
                                p_value, n_total, normality_p)

        statistic, p_value = stats.kruskal(*samples)
        return self._result(values.name, groups.name, KRUSKAL_WALLIS, statistic, (k - 1,),
                            p_value, n_total, normality_p)

    def normality_p_value(self, values: np.ndarray) -> float:
        """Shapiro-Wilk p-value, on a seeded subsample when the input is too large"""
        values = np.asarray(values, dtype=float)
        values = values[~np.isnan(values)]

        if len(values) < 3:
            raise InsufficientDataError(f"Normality test needs at least 3 observations, got {len(values)}")

        sample = normality_sample(values, self.config.NORMALITY_MAX_SAMPLE, self.config.NORMALITY_SEED)
        if np.ptp(sample) == 0:
            # Shapiro-Wilk is undefined on constant input; treat as non-normal
            return 0.0

        _, p_value = stats.shapiro(sample)
        return float(p_value)

    def rank_correlation(self, a: pd.Series, b: pd.Series) -> AssociationResult:
        data = pd.DataFrame({
            'a': pd.to_numeric(a, errors='coerce'),
            'b': pd.to_numeric(b, errors='coerce')
        }).dropna()

        if len(data) < 3:
            raise InsufficientDataError(f"Spearman correlation needs at least 3 paired observations, got {len(data)}")
        if data['a'].nunique() < 2 or data['b'].nunique() < 2:
            raise InsufficientDataError(f"'{a.name}' or '{b.name}' is constant; correlation is undefined")

        statistic, p_value = stats.spearmanr(data['a'], data['b'])
        return self._result(a.name, b.name, SPEARMAN, statistic, (), p_value, len(data))

    def run_tests(self, frame: pd.DataFrame, pairs: Sequence[Tuple[str, str]],
                  schema: Optional[Mapping[str, str]] = None) -> List[AssociationResult]:
        """Run every pair; pairs without enough data are reported, not raised"""
        schema = schema or analysis_schema()
        results = []

        for column_a, column_b in pairs:
            try:
                result = self.test(frame, column_a, column_b, schema)
            except InsufficientDataError as e:
                logger.warning(f"Association test {column_a} x {column_b} not computable: {e}")
                result = AssociationResult.not_computable(
                    column_a, column_b, self._test_name(schema, column_a, column_b), str(e)
                )
            results.append(result)

        return results

    @staticmethod
    def _test_name(schema: Mapping[str, str], column_a: str, column_b: str) -> str:
        kinds = {schema.get(column_a), schema.get(column_b)}
        if kinds == {CATEGORICAL}:
            return CHI_SQUARED
        if kinds == {NUMERIC}:
            return SPEARMAN
        return 'group_comparison'

    def _result(self, variable_a, variable_b, test, statistic, dof, p_value, n, normality_p=None) -> AssociationResult:
        p_value = float(p_value)
        statistic = float(statistic)
        if not (np.isfinite(statistic) and np.isfinite(p_value)):
            raise InsufficientDataError(f"{test} on '{variable_a}' x '{variable_b}' returned a non-finite result")
        return AssociationResult(
            variable_a=str(variable_a),
            variable_b=str(variable_b),
            test=test,
            statistic=statistic,
            degrees_of_freedom=tuple(dof),
            p_value=p_value,
            significant=bool(p_value < self.alpha),
            n_observations=int(n),
            normality_p_value=normality_p
        )


def contingency_table(a: pd.Series, b: pd.Series) -> pd.DataFrame:
    """Cross-tabulated counts over observed levels (missing values excluded)"""
    data = pd.DataFrame({'a': a.astype(object), 'b': b.astype(object)}).dropna()
    table = pd.crosstab(data['a'], data['b'])
    table.index.name = a.name
    table.columns.name = b.name
    return table


def normality_sample(values: np.ndarray, max_size: int, seed: int) -> np.ndarray:
    """Values unchanged when small enough, else a seeded draw without replacement"""
    if len(values) <= max_size:
        return values
    rng = np.random.default_rng(seed)
    return rng.choice(values, size=max_size, replace=False)


class AssociationTestingAgent:
    """Agent running the default association tests over the analysis frame"""

    def __init__(self, config: Optional[Config] = None,
                 pairs: Optional[List[Tuple[str, str]]] = None):
        self.config = config or get_config()
        self.tester = AssociationTester(self.config.statistics)
        self.pairs = pairs if pairs is not None else DEFAULT_TEST_PAIRS

    async def test_associations(self, state: dict) -> dict:
        """Run the association tests and summarise which were significant"""
        logger.info("Starting association tests")

        try:
            frame = state['analysis_data']
            results = self.tester.run_tests(frame, self.pairs, analysis_schema())

        except Exception as e:
            logger.error(f"Association testing failed: {str(e)}")
            return {'errors': [f"Association testing error: {str(e)}"]}

        computed = [r for r in results if r.computable]
        significant = [r for r in computed if r.significant]

        return {
            'association_results': results,
            'execution_log': [
                f"Association tests completed: {len(computed)}/{len(results)} computable, "
                f"{len(significant)} significant at alpha={self.tester.alpha}"
            ]
        }
