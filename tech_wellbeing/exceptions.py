# tech_wellbeing/exceptions.py
from dataclasses import dataclass
from typing import Any, Dict, Optional


class AnalysisError(Exception):
    """Base class for errors raised by the analysis pipeline"""


class DataLoadError(AnalysisError):
    """The input file could not be read into a table. Fatal for the run."""


class SchemaError(AnalysisError):
    """The table does not match its declared schema. Fatal for the run."""

    def __init__(self, message: str, column: Optional[str] = None, failures: int = 0):
        super().__init__(message)
        self.column = column
        self.failures = failures


class DivisionByZeroError(AnalysisError, ZeroDivisionError):
    """A derived ratio has a zero denominator for one record"""

    def __init__(self, message: str, record_id: Any = None, feature: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id
        self.feature = feature


class InsufficientDataError(AnalysisError):
    """A statistical test cannot be computed on the available observations"""


@dataclass(frozen=True)
class DerivationError:
    """Per-record derivation failure, collected instead of raised"""
    record_id: Any
    feature: str
    message: str

    @classmethod
    def from_exception(cls, exc: DivisionByZeroError) -> "DerivationError":
        return cls(record_id=exc.record_id, feature=exc.feature or "", message=str(exc))

    def to_dict(self) -> Dict[str, Any]:
        return {'record_id': self.record_id, 'feature': self.feature, 'message': self.message}
