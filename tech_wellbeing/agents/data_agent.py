# tech_wellbeing/agents/data_agent.py
import pandas as pd
import numpy as np
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging
from dataclasses import dataclass, field
from pathlib import Path

from tech_wellbeing.config import Config, COERCION_POLICIES, get_config
from tech_wellbeing.exceptions import DataLoadError, SchemaError
from tech_wellbeing.schema import (
    CATEGORICAL, CATEGORICAL_DOMAINS, ID_COLUMN, NUMERIC, ORDINAL_COLUMNS,
    SURVEY_SCHEMA, normalize_header
)
from tech_wellbeing.utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)


@log_execution_time
def load_table(data_path: Union[str, Path],
               encodings: Sequence[str] = ('utf-8', 'latin-1', 'cp1252'),
               delimiters: Sequence[str] = (',', ';', '\t'),
               max_file_size_mb: float = 500,
               supported_formats: Sequence[str] = ('.csv', '.tsv', '.txt')) -> pd.DataFrame:
    """Read a delimited text file into a DataFrame of raw text cells.

    Empty cells are the only missing-value marker; every other cell is kept
    as text so that type coercion happens against the declared schema.
    Headers are normalized to canonical snake_case names.

    Raises:
        DataLoadError: missing/unreadable/empty file, unsupported extension,
            oversized file, or no delimiter that yields more than one column.
    """
    path = Path(data_path)

    if not path.exists():
        raise DataLoadError(f"Data file not found: {data_path}")

    if not path.is_file():
        raise DataLoadError(f"Data path is not a file: {data_path}")

    extension = path.suffix.lower()
    if extension not in supported_formats:
        raise DataLoadError(f"Unsupported file format: {extension}")

    file_size_mb = path.stat().st_size / (1024 * 1024)
    if file_size_mb > max_file_size_mb:
        raise DataLoadError(f"File too large: {file_size_mb:.1f}MB > {max_file_size_mb}MB")

    data = None
    # Try different encodings and separators
    for encoding in encodings:
        for sep in delimiters:
            try:
                candidate = pd.read_csv(
                    path, encoding=encoding, sep=sep, dtype=str,
                    keep_default_na=False, na_values=['']
                )
            except PermissionError as e:
                raise DataLoadError(f"Permission denied reading {data_path}") from e
            except pd.errors.EmptyDataError as e:
                raise DataLoadError(f"Data file is empty: {data_path}") from e
            except (UnicodeDecodeError, pd.errors.ParserError):
                continue

            if candidate.shape[1] > 1:  # Successfully parsed multiple columns
                data = candidate
                break
        if data is not None:
            break

    if data is None:
        raise DataLoadError(
            f"Could not parse {data_path} with any encoding/separator combination"
        )

    if data.shape[0] == 0:
        raise DataLoadError(f"Data file has a header but no records: {data_path}")

    data.columns = [normalize_header(col) for col in data.columns]
    logger.info(f"Loaded {data.shape[0]} rows, {data.shape[1]} columns from {path.name}")
    return data


@dataclass
class NormalizationReport:
    """Outcome of coercing a raw table onto its declared schema"""
    policy: str
    coercion_failures: Dict[str, int] = field(default_factory=dict)
    rows_dropped: int = 0
    missing_by_column: Dict[str, int] = field(default_factory=dict)
    missing_values_total: int = 0

    @property
    def total_coercion_failures(self) -> int:
        return sum(self.coercion_failures.values())

    def to_dict(self) -> dict:
        return {
            'policy': self.policy,
            'coercion_failures': dict(self.coercion_failures),
            'total_coercion_failures': self.total_coercion_failures,
            'rows_dropped': self.rows_dropped,
            'missing_by_column': dict(self.missing_by_column),
            'missing_values_total': self.missing_values_total
        }


class SchemaNormalizer:
    """Coerce a raw table onto an explicit column -> semantic type declaration.

    Numeric columns become float64; unparseable or negative values are
    coercion failures. Categorical columns become pandas Categoricals over the
    declared domain (or the observed one when no domain is declared); values
    outside the domain are coercion failures. Failures are handled by the
    coercion policy:

    - ``sentinel``: the offending cell becomes NaN and the count is reported
    - ``drop``: records holding any offending cell are removed
    - ``raise``: SchemaError on the first column with failures

    Normalizing an already-normalized table returns an equal table.
    """

    def __init__(self,
                 schema: Optional[Mapping[str, str]] = None,
                 domains: Optional[Mapping[str, Sequence[str]]] = None,
                 id_column: Optional[str] = ID_COLUMN,
                 coercion_policy: str = 'sentinel',
                 ordinal_columns: Sequence[str] = ORDINAL_COLUMNS):
        if coercion_policy not in COERCION_POLICIES:
            raise ValueError(f"Unknown coercion policy '{coercion_policy}', expected one of {COERCION_POLICIES}")

        self.schema = dict(SURVEY_SCHEMA if schema is None else schema)
        self.domains = dict(CATEGORICAL_DOMAINS if domains is None else domains)
        self.id_column = id_column
        self.coercion_policy = coercion_policy
        self.ordinal_columns = set(ordinal_columns)

        unknown_types = {col: kind for col, kind in self.schema.items() if kind not in (NUMERIC, CATEGORICAL)}
        if unknown_types:
            raise SchemaError(f"Unknown semantic types in schema: {unknown_types}")

    def normalize(self, data: pd.DataFrame) -> Tuple[pd.DataFrame, NormalizationReport]:
        """Return the normalized table and a report of what was coerced"""
        required = list(self.schema)
        if self.id_column is not None:
            required = [self.id_column] + required

        missing_columns = [col for col in required if col not in data.columns]
        if missing_columns:
            raise SchemaError(f"Missing required columns: {missing_columns}")

        table = data.copy()

        if self.id_column is not None:
            table[self.id_column] = self._normalize_identifier(table[self.id_column])

        invalid_masks = {}
        for col, kind in self.schema.items():
            if kind == NUMERIC:
                values, invalid = self._coerce_numeric(table[col])
            else:
                values, invalid = self._coerce_categorical(col, table[col])

            failures = int(invalid.sum())
            if failures and self.coercion_policy == 'raise':
                examples = data.loc[invalid, col].astype(str).unique()[:5].tolist()
                raise SchemaError(
                    f"Column '{col}' has {failures} values that cannot be coerced to {kind}: {examples}",
                    column=col, failures=failures
                )

            table[col] = values
            invalid_masks[col] = invalid

        report = NormalizationReport(policy=self.coercion_policy)
        report.coercion_failures = {
            col: int(mask.sum()) for col, mask in invalid_masks.items() if mask.any()
        }

        if report.coercion_failures:
            logger.warning(
                f"Coercion failures under '{self.coercion_policy}' policy: {report.coercion_failures}"
            )

        if self.coercion_policy == 'drop' and report.coercion_failures:
            bad_rows = pd.concat(list(invalid_masks.values()), axis=1).any(axis=1)
            table = table.loc[~bad_rows]
            report.rows_dropped = int(bad_rows.sum())
            logger.warning(f"Dropped {report.rows_dropped} records with uncoercible values")

        # Declared columns first, anything else after in its original order
        extra_columns = [col for col in table.columns if col not in required]
        table = table[required + extra_columns].reset_index(drop=True)

        missing = table[required].isna().sum()
        report.missing_by_column = {col: int(count) for col, count in missing.items() if count > 0}
        report.missing_values_total = int(missing.sum())

        return table, report

    def _normalize_identifier(self, series: pd.Series) -> pd.Series:
        """Identifiers must be present and unique"""
        ids = self._strip_text(series)

        missing_ids = int(ids.isna().sum())
        if missing_ids:
            raise SchemaError(f"{missing_ids} records have no '{self.id_column}'", column=self.id_column,
                              failures=missing_ids)

        duplicated = ids[ids.duplicated(keep=False)]
        if len(duplicated) > 0:
            raise SchemaError(
                f"Duplicate '{self.id_column}' values: {sorted(duplicated.unique().tolist())[:5]}",
                column=self.id_column, failures=int(ids.duplicated().sum())
            )

        return ids

    @staticmethod
    def _strip_text(series: pd.Series) -> pd.Series:
        raw = series.astype(object)
        present = raw.notna()
        text = raw.where(~present, raw.astype(str).str.strip())
        return text.mask(text == '')

    def _coerce_numeric(self, series: pd.Series) -> Tuple[pd.Series, pd.Series]:
        if pd.api.types.is_numeric_dtype(series):
            present = series.notna()
            numeric = series.astype('float64')
        else:
            text = self._strip_text(series)
            present = text.notna()
            numeric = pd.to_numeric(text, errors='coerce').astype('float64')

        valid = np.isfinite(numeric) & (numeric >= 0)
        invalid = present & ~valid
        return numeric.mask(invalid), invalid

    def _coerce_categorical(self, column: str, series: pd.Series) -> Tuple[pd.Series, pd.Series]:
        text = self._strip_text(series)
        present = text.notna()

        domain = self.domains.get(column)
        if domain is None:
            domain = sorted(text.dropna().unique().tolist())

        invalid = present & ~text.isin(list(domain))
        values = pd.Series(
            pd.Categorical(text.mask(invalid), categories=list(domain), ordered=column in self.ordinal_columns),
            index=series.index,
            name=series.name
        )
        return values, invalid


class DataIngestionAgent:
    """Agent responsible for loading the survey file and normalizing its schema"""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        validation = self.config.data_validation
        self.supported_formats = validation.SUPPORTED_FILE_FORMATS
        self.max_file_size_mb = validation.MAX_FILE_SIZE_MB

    async def process(self, state: dict) -> dict:
        """Main processing function for data ingestion"""
        logger.info(f"Starting data ingestion for: {state['data_path']}")

        try:
            data = self._load_data(state['data_path'])
            data_info = self._extract_data_info(data)

        except Exception as e:
            logger.error(f"Data ingestion failed: {str(e)}")
            return {
                'errors': [f"Data ingestion error: {str(e)}"],
                'current_step': 'data_ingestion',
                'next_action': 'error'
            }

        return {
            'raw_data': data,
            'data_info': data_info,
            'current_step': 'data_ingestion',
            'next_action': 'schema_normalization',
            'execution_log': [
                f"Data loaded successfully: {data.shape[0]} rows, {data.shape[1]} columns"
            ]
        }

    def _load_data(self, data_path: str) -> pd.DataFrame:
        validation = self.config.data_validation
        return load_table(
            data_path,
            encodings=validation.ENCODINGS,
            delimiters=validation.DELIMITERS,
            max_file_size_mb=self.max_file_size_mb,
            supported_formats=self.supported_formats
        )

    def _extract_data_info(self, data: pd.DataFrame) -> dict:
        """Extract basic information about the loaded table"""
        return {
            'shape': data.shape,
            'n_rows': int(data.shape[0]),
            'n_columns': int(data.shape[1]),
            'columns': list(data.columns),
            'missing_values': {col: int(n) for col, n in data.isnull().sum().items()},
            'memory_usage_mb': data.memory_usage(deep=True).sum() / (1024 * 1024),
            'duplicate_rows': int(data.duplicated().sum()),
            'sample_data': data.head(3).to_dict('records')
        }

    async def validate(self, state: dict) -> dict:
        """Normalize the raw table against the declared schema and run quality checks"""
        logger.info("Starting schema normalization")

        try:
            normalizer = SchemaNormalizer(
                schema=state.get('schema'),
                coercion_policy=state.get('coercion_policy') or self.config.data_validation.COERCION_POLICY
            )
            table, report = normalizer.normalize(state['raw_data'])

            validation_results = self._run_quality_checks(table, report)
            min_rows_check = next(r for r in validation_results if r['check'] == 'minimum_rows')
            if not min_rows_check['passed']:
                raise SchemaError(min_rows_check['message'])

        except Exception as e:
            logger.error(f"Schema normalization failed: {str(e)}")
            return {
                'errors': [f"Schema normalization error: {str(e)}"],
                'current_step': 'schema_normalization',
                'next_action': 'error'
            }

        passed_checks = sum(1 for result in validation_results if result['passed'])
        total_checks = len(validation_results)

        validation_report = {
            'is_valid': passed_checks == total_checks,
            'passed_checks': passed_checks,
            'total_checks': total_checks,
            'results': validation_results,
            'recommendations': self._generate_recommendations(validation_results)
        }

        return {
            'normalized_data': table,
            'normalization_report': report,
            'validation_report': validation_report,
            'current_step': 'schema_normalization',
            'next_action': 'feature_engineering',
            'execution_log': [
                f"Schema normalization completed: {passed_checks}/{total_checks} checks passed, "
                f"{report.total_coercion_failures} coercion failures, "
                f"{report.missing_values_total} missing values"
            ]
        }

    def _run_quality_checks(self, table: pd.DataFrame, report: NormalizationReport) -> List[dict]:
        validation = self.config.data_validation
        results = []

        # 1. Minimum number of rows
        results.append({
            'check': 'minimum_rows',
            'passed': len(table) >= validation.MIN_ROWS,
            'message': f"Dataset has {len(table)} rows (minimum: {validation.MIN_ROWS})"
        })

        # 2. Excessive missing values
        high_missing_cols = []
        if len(table) > 0:
            for col, count in report.missing_by_column.items():
                if count / len(table) * 100 > validation.MAX_MISSING_PERCENTAGE:
                    high_missing_cols.append(col)

        results.append({
            'check': 'missing_values',
            'passed': len(high_missing_cols) == 0,
            'message': (f"Columns with >{validation.MAX_MISSING_PERCENTAGE:.0f}% missing: {high_missing_cols}"
                        if high_missing_cols else "Missing values within acceptable range")
        })

        # 3. Coercion failures
        results.append({
            'check': 'coercion',
            'passed': report.total_coercion_failures == 0,
            'message': (f"Coercion failures: {report.coercion_failures}"
                        if report.coercion_failures else "All values match their declared types")
        })

        # 4. Duplicate answers (identifier excluded)
        answer_columns = [col for col in table.columns if col != ID_COLUMN]
        duplicate_pct = table.duplicated(subset=answer_columns).sum() / len(table) * 100 if len(table) else 0.0
        results.append({
            'check': 'duplicates',
            'passed': duplicate_pct <= validation.MAX_DUPLICATE_PERCENTAGE,
            'message': f"Duplicate answer rows: {duplicate_pct:.1f}%"
        })

        return results

    def _generate_recommendations(self, validation_results: List[dict]) -> List[str]:
        """Generate recommendations based on validation results"""
        recommendations = []

        for result in validation_results:
            if not result['passed']:
                check_type = result['check']

                if check_type == 'minimum_rows':
                    recommendations.append("Collect more responses before running the analysis")
                elif check_type == 'missing_values':
                    recommendations.append("Review high-missing columns before interpreting their tests")
                elif check_type == 'coercion':
                    recommendations.append("Inspect the source file for out-of-domain or negative values")
                elif check_type == 'duplicates':
                    recommendations.append("Check the export for repeated submissions")

        return recommendations
