# tech_wellbeing/utils/logging_config.py
import functools
import inspect
import logging
import sys
import time
import warnings
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

LOGGER_NAMESPACE = "tech_wellbeing"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def setup_logging(log_level: str = "INFO",
                  log_dir: Optional[Union[str, Path]] = "logs",
                  log_to_console: bool = True) -> logging.Logger:
    """
    Configure the root logger for a pipeline run

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the timestamped run log; None disables file output
        log_to_console: Whether to also log to stdout

    Returns:
        The package logger
    """
    level = getattr(logging, log_level.upper())
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = []
    file_path = None

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_path = log_path / f"analysis_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        handlers.append(logging.FileHandler(file_path, mode='a', encoding='utf-8'))

    if log_to_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    package_logger = logging.getLogger(LOGGER_NAMESPACE)
    package_logger.info(f"Logging initialized. Level: {log_level}")
    if file_path is not None:
        package_logger.info(f"Log file: {file_path}")

    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the package namespace"""
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def log_execution_time(func):
    """Log start, duration and failure of a sync or async callable"""
    logger = get_logger(func.__module__)

    def _finished(start: float, error: Optional[Exception] = None):
        elapsed = time.perf_counter() - start
        if error is None:
            logger.info(f"Completed {func.__name__} in {elapsed:.2f} seconds")
        else:
            logger.error(f"Failed {func.__name__} after {elapsed:.2f} seconds: {error}")

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger.info(f"Starting {func.__name__}")
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _finished(start, e)
                raise
            _finished(start)
            return result

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.info(f"Starting {func.__name__}")
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            _finished(start, e)
            raise
        _finished(start)
        return result

    return wrapper


class PipelineLogger:
    """Context manager timing one named step and logging its metrics"""

    def __init__(self, step_name: str, logger: Optional[logging.Logger] = None):
        self.step_name = step_name
        self.logger = logger or get_logger("pipeline")
        self._start = None

    def __enter__(self):
        self._start = time.perf_counter()
        self.logger.info(f"=== Starting {self.step_name} ===")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.perf_counter() - self._start
        if exc_type is None:
            self.logger.info(f"=== Completed {self.step_name} in {elapsed:.2f} seconds ===")
        else:
            self.logger.error(f"=== Failed {self.step_name} after {elapsed:.2f} seconds: {exc_val} ===")

    def log_metric(self, name: str, value: Union[int, float, str]):
        self.logger.info(f"[{self.step_name}] Metric - {name}: {value}")


def configure_third_party_logging():
    """Quiet the chattier dependencies"""
    for name in ("mlflow", "alembic", "urllib3", "git"):
        logging.getLogger(name).setLevel(logging.WARNING)

    for module in ('sklearn', 'statsmodels'):
        warnings.filterwarnings('ignore', category=FutureWarning, module=module)
