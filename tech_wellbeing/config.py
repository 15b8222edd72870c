# tech_wellbeing/config.py
import os
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass, is_dataclass
import json

@dataclass
class PathConfig:
    """Configuration for project paths"""
    PROJECT_ROOT: Path
    LOGS_DIR: Path

@dataclass
class MLFlowConfig:
    """Configuration for MLflow tracking"""
    ENABLED: bool
    TRACKING_URI: str
    EXPERIMENT_NAME: str

@dataclass
class DataValidationConfig:
    """Configuration for loading and schema normalization"""
    MAX_FILE_SIZE_MB: int
    MIN_ROWS: int
    MAX_MISSING_PERCENTAGE: float
    MAX_DUPLICATE_PERCENTAGE: float
    SUPPORTED_FILE_FORMATS: List[str]
    ENCODINGS: List[str]
    DELIMITERS: List[str]
    COERCION_POLICY: str  # 'sentinel', 'drop', 'raise'

@dataclass
class FeatureDerivationConfig:
    """Thresholds and buckets used by the feature deriver"""
    ACTIVE_LIFESTYLE_MIN_HOURS: float
    YOUTH_MAX_AGE: float
    TECH_RISK_MIN_HOURS: float
    AGE_BOUNDARIES: List[float]
    AGE_LABELS: List[str]

@dataclass
class StatisticalTestConfig:
    """Configuration for association tests"""
    ALPHA: float
    NORMALITY_MAX_SAMPLE: int  # Shapiro-Wilk is unreliable above 5000
    NORMALITY_SEED: int
    MIN_GROUP_SIZE: int

@dataclass
class ModelTrainingConfig:
    """Configuration for model training"""
    TEST_SIZE: float
    RANDOM_STATE: int
    RF_N_ESTIMATORS: int
    MAX_ITER: int
    ORDINAL_DISTRIBUTION: str  # 'logit' or 'probit'

COERCION_POLICIES = ('sentinel', 'drop', 'raise')

class Config:
    """Central configuration manager for the analysis pipeline"""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration

        Args:
            config_file: Optional path to JSON config file to override defaults
        """
        self._load_default_config()

        if config_file and os.path.exists(config_file):
            self._load_config_file(config_file)

        self._load_environment_variables()

    def _load_default_config(self):
        """Load default configuration values"""

        # Project paths
        project_root = Path(__file__).parent.parent
        self.paths = PathConfig(
            PROJECT_ROOT=project_root,
            LOGS_DIR=project_root / "logs"
        )

        # MLflow configuration
        self.mlflow = MLFlowConfig(
            ENABLED=True,
            TRACKING_URI="sqlite:///mlflow.db",
            EXPERIMENT_NAME="tech_wellbeing_analysis"
        )

        # Data validation configuration
        self.data_validation = DataValidationConfig(
            MAX_FILE_SIZE_MB=500,
            MIN_ROWS=1,
            MAX_MISSING_PERCENTAGE=50.0,
            MAX_DUPLICATE_PERCENTAGE=10.0,
            SUPPORTED_FILE_FORMATS=['.csv', '.tsv', '.txt'],
            ENCODINGS=['utf-8', 'latin-1', 'cp1252'],
            DELIMITERS=[',', ';', '\t'],
            COERCION_POLICY='sentinel'
        )

        # Feature derivation configuration
        self.feature_derivation = FeatureDerivationConfig(
            ACTIVE_LIFESTYLE_MIN_HOURS=5.0,
            YOUTH_MAX_AGE=25.0,
            TECH_RISK_MIN_HOURS=10.0,
            AGE_BOUNDARIES=[18.0, 25.0, 35.0, 50.0],
            AGE_LABELS=["Teenager", "Youth", "Young Adult", "Adult", "Senior Adult"]
        )

        # Statistical test configuration
        self.statistics = StatisticalTestConfig(
            ALPHA=0.05,
            NORMALITY_MAX_SAMPLE=5000,
            NORMALITY_SEED=42,
            MIN_GROUP_SIZE=2
        )

        # Model training configuration
        self.training = ModelTrainingConfig(
            TEST_SIZE=0.2,
            RANDOM_STATE=42,
            RF_N_ESTIMATORS=200,
            MAX_ITER=1000,
            ORDINAL_DISTRIBUTION='logit'
        )

        # Additional settings
        self.logging_level = "INFO"
        self.debug_mode = False

    def _load_config_file(self, config_file: str):
        """Load configuration from JSON file"""
        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"Warning: Could not load config file {config_file}: {e}")
            return

        # Update configurations with values from file
        for section, values in config_data.items():
            if not hasattr(self, section):
                continue
            config_obj = getattr(self, section)
            if isinstance(values, dict):
                for key, value in values.items():
                    if hasattr(config_obj, key):
                        if isinstance(getattr(config_obj, key), Path):
                            value = Path(value)
                        setattr(config_obj, key, value)
            elif not callable(config_obj):
                setattr(self, section, values)

    def _load_environment_variables(self):
        """Load configuration from environment variables"""

        # MLflow settings
        if os.getenv("ENABLE_MLFLOW"):
            self.mlflow.ENABLED = os.getenv("ENABLE_MLFLOW").lower() == 'true'

        if os.getenv("MLFLOW_TRACKING_URI"):
            self.mlflow.TRACKING_URI = os.getenv("MLFLOW_TRACKING_URI")

        if os.getenv("MLFLOW_EXPERIMENT_NAME"):
            self.mlflow.EXPERIMENT_NAME = os.getenv("MLFLOW_EXPERIMENT_NAME")

        # Normalization settings
        if os.getenv("COERCION_POLICY"):
            self.data_validation.COERCION_POLICY = os.getenv("COERCION_POLICY").lower()

        # Statistical settings
        if os.getenv("SIGNIFICANCE_ALPHA"):
            self.statistics.ALPHA = float(os.getenv("SIGNIFICANCE_ALPHA"))

        if os.getenv("NORMALITY_SAMPLE_SIZE"):
            self.statistics.NORMALITY_MAX_SAMPLE = int(os.getenv("NORMALITY_SAMPLE_SIZE"))

        # Training settings
        if os.getenv("TEST_SIZE"):
            self.training.TEST_SIZE = float(os.getenv("TEST_SIZE"))

        if os.getenv("RANDOM_STATE"):
            self.training.RANDOM_STATE = int(os.getenv("RANDOM_STATE"))

        # General settings
        if os.getenv("LOG_LEVEL"):
            self.logging_level = os.getenv("LOG_LEVEL")

        if os.getenv("DEBUG_MODE"):
            self.debug_mode = os.getenv("DEBUG_MODE").lower() == 'true'

    def resolve_log_level(self, override: Optional[str] = None) -> str:
        """Explicit level first, then DEBUG in debug mode, then the configured level"""
        if override:
            return override.upper()
        if self.debug_mode:
            return "DEBUG"
        return self.logging_level.upper()

    def save_config(self, config_file: str):
        """Save current configuration to JSON file"""
        config_dict = {}

        # Convert dataclasses to dictionaries
        for attr_name in dir(self):
            if not attr_name.startswith('_'):
                attr_value = getattr(self, attr_name)
                if is_dataclass(attr_value):
                    # Convert dataclass to dict
                    config_dict[attr_name] = {}
                    for field_name, field_value in attr_value.__dict__.items():
                        if isinstance(field_value, Path):
                            config_dict[attr_name][field_name] = str(field_value)
                        else:
                            config_dict[attr_name][field_name] = field_value
                elif not callable(attr_value):
                    config_dict[attr_name] = attr_value

        with open(config_file, 'w') as f:
            json.dump(config_dict, f, indent=2)

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of issues"""
        issues = []

        if self.data_validation.COERCION_POLICY not in COERCION_POLICIES:
            issues.append(f"Invalid coercion policy: {self.data_validation.COERCION_POLICY}")

        if self.resolve_log_level() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            issues.append(f"Invalid logging level: {self.logging_level}")

        if self.data_validation.MAX_FILE_SIZE_MB <= 0:
            issues.append(f"Invalid max file size: {self.data_validation.MAX_FILE_SIZE_MB}")

        if self.data_validation.MIN_ROWS <= 0:
            issues.append(f"Invalid min rows: {self.data_validation.MIN_ROWS}")

        if self.statistics.ALPHA <= 0 or self.statistics.ALPHA >= 1:
            issues.append(f"Invalid significance threshold: {self.statistics.ALPHA}")

        if self.statistics.NORMALITY_MAX_SAMPLE < 3:
            issues.append(f"Normality sample must be >= 3: {self.statistics.NORMALITY_MAX_SAMPLE}")

        if self.statistics.MIN_GROUP_SIZE < 2:
            issues.append(f"Minimum group size must be >= 2: {self.statistics.MIN_GROUP_SIZE}")

        if self.training.TEST_SIZE <= 0 or self.training.TEST_SIZE >= 1:
            issues.append(f"Invalid test size: {self.training.TEST_SIZE}")

        boundaries = self.feature_derivation.AGE_BOUNDARIES
        if list(boundaries) != sorted(boundaries):
            issues.append(f"Age boundaries must be increasing: {boundaries}")

        if len(self.feature_derivation.AGE_LABELS) != len(boundaries) + 1:
            issues.append("Age labels must have exactly one more entry than age boundaries")

        return issues

    def __str__(self) -> str:
        """String representation of configuration"""
        return f"Config(project_root={self.paths.PROJECT_ROOT}, debug={self.debug_mode})"

# Global configuration instance
_config = None

def get_config(config_file: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton pattern)"""
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config

def reload_config(config_file: Optional[str] = None) -> Config:
    """Reload configuration (useful for testing)"""
    global _config
    _config = Config(config_file)
    return _config

# Example configuration file template
CONFIG_TEMPLATE = {
    "mlflow": {
        "ENABLED": True,
        "TRACKING_URI": "sqlite:///mlflow.db",
        "EXPERIMENT_NAME": "tech_wellbeing_analysis"
    },
    "data_validation": {
        "COERCION_POLICY": "sentinel",
        "MIN_ROWS": 1
    },
    "statistics": {
        "ALPHA": 0.05,
        "NORMALITY_MAX_SAMPLE": 5000,
        "NORMALITY_SEED": 42
    },
    "training": {
        "TEST_SIZE": 0.2,
        "RANDOM_STATE": 42
    }
}

def create_config_template(output_file: str):
    """Create a configuration template file"""
    with open(output_file, 'w') as f:
        json.dump(CONFIG_TEMPLATE, f, indent=2)
    print(f"Configuration template created: {output_file}")
