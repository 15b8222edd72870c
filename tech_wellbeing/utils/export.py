# tech_wellbeing/utils/export.py
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert numpy/pandas scalars and containers to plain JSON values; NaN and Inf become None"""
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (str, int, bool)):
        return value
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    return str(value)


def write_jsonl(records: Iterable[Mapping[str, Any]], path: Union[str, Path]) -> int:
    """Write one JSON object per line; returns the number of lines written"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    count = 0
    with open(path, 'w', encoding='utf-8') as f:
        for record in records:
            f.write(json.dumps(to_jsonable(record), allow_nan=False))
            f.write('\n')
            count += 1

    logger.info(f"Wrote {count} records to {path}")
    return count


def _group_summary_records(state: Mapping[str, Any]):
    for summary in (state.get('group_summaries') or {}).values():
        yield from summary.to_records()


def _model_records(state: Mapping[str, Any]):
    for model_name, result in (state.get('model_results') or {}).items():
        record = {'model': model_name, 'status': result.get('status')}
        if result.get('status') == 'success':
            record.update({
                'target': result['target'],
                'n_train': result['n_train'],
                'n_test': result['n_test'],
                'metrics': result['test_metrics'],
                'mlflow_run_id': result.get('mlflow_run_id')
            })
        else:
            record['error'] = result.get('error')
        yield record


def export_results(state: Mapping[str, Any], output_dir: Union[str, Path]) -> Dict[str, str]:
    """Write the run's results as line-delimited JSON (plus the derived feature table as CSV).

    Returns a mapping of output name to written file path.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = {}

    jsonl_outputs = {
        'group_summaries': _group_summary_records(state),
        'associations': (result.to_dict() for result in state.get('association_results') or []),
        'derivation_errors': (error.to_dict() for error in state.get('derivation_errors') or []),
        'model_metrics': _model_records(state),
    }

    for name, records in jsonl_outputs.items():
        path = output_dir / f"{name}.jsonl"
        write_jsonl(records, path)
        written[name] = str(path)

    features = state.get('derived_features')
    if features is not None:
        path = output_dir / "derived_features.csv"
        features.to_csv(path, index=True)
        written['derived_features'] = str(path)

    report = state.get('normalization_report')
    if report is not None:
        path = output_dir / "normalization_report.json"
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(to_jsonable(report.to_dict()), f, indent=2)
        written['normalization_report'] = str(path)

    logger.info(f"Results exported to {output_dir}")
    return written
