"""
Configuration loader for PSI Tests
Reads and validates settings.yaml, pulls the API token from the environment
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
from dotenv import load_dotenv
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/settings.yaml"
DEFAULT_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
TOKEN_ENV_VAR = "PSI_API_TOKEN"


class ConfigValidationError(ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and float(value) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and float(value) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: Optional[str] = DEFAULT_CONFIG_PATH, required: bool = True):
        self.config_path = Path(config_path) if config_path else None
        self.required = required
        self.config: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load config from YAML file"""
        if self.config_path is None or not self.config_path.exists():
            if self.required:
                raise FileNotFoundError(f"Config file not found: {self.config_path}")
            logger.info("No config file found, using defaults")
        else:
            try:
                with open(self.config_path, 'r') as f:
                    self.config = yaml.safe_load(f) or {}
                logger.info(f"✓ Config loaded from {self.config_path}")
            except yaml.YAMLError as e:
                logger.error(f"Error parsing config file: {e}")
                raise

        if not isinstance(self.config, dict):
            raise ConfigValidationError(
                f"Invalid config: top level of {self.config_path} must be a mapping"
            )

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        _validate_positive(self.get('api.timeout_seconds'), 'api.timeout_seconds')
        _validate_positive(self.get('api.max_concurrency'), 'api.max_concurrency')
        _validate_positive(self.get('runs.number_of_runs'), 'runs.number_of_runs')
        _validate_non_negative(self.get('batch.retry_passes'), 'batch.retry_passes')

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'api.timeout_seconds')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    # === API Config ===

    def get_endpoint(self) -> str:
        """Get runPagespeed endpoint URL"""
        return self.get('api.endpoint', DEFAULT_ENDPOINT)

    def get_timeout(self) -> float:
        """Get per-request timeout in seconds"""
        return float(self.get('api.timeout_seconds', 120))

    def get_max_concurrency(self) -> int:
        """Get max in-flight requests per collection"""
        return int(self.get('api.max_concurrency', 15))

    def get_cache_bust_param(self) -> str:
        """Get query parameter name used to defeat intermediate caches"""
        return self.get('api.cache_bust_param', '__v')

    def get_token(self) -> Optional[str]:
        """Get PSI API token from the environment (.env supported)"""
        load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
        token = os.getenv(TOKEN_ENV_VAR, '').strip()
        return token or None

    # === Run Config ===

    def get_number_of_runs(self) -> int:
        """Get default number of runs per page"""
        return int(self.get('runs.number_of_runs', 20))

    # === Batch Config ===

    def get_retry_passes(self) -> int:
        """Get number of retry passes over failed URLs"""
        return int(self.get('batch.retry_passes', 2))

    def get_batch_output_file(self) -> Path:
        """Get batch CSV output path"""
        return Path(self.get('batch.output_file', 'output.csv'))

    # === Run Metrics Config ===

    def is_run_metrics_enabled(self) -> bool:
        """Check if the run metrics JSON should be written"""
        return bool(self.get('run_metrics.enabled', False))

    def get_run_metrics_template(self) -> str:
        """Get run metrics output path template"""
        return self.get('run_metrics.output_file', 'output/run_metrics_{timestamp}.json')

    # === Logging Config ===

    def get_log_level(self) -> str:
        """Get logging level"""
        return str(self.get('logging.level', 'INFO')).upper()

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/psi_tests.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = template.replace('{timestamp}', timestamp)
        return Path(filename)

    def __repr__(self) -> str:
        return f"<Config: runs={self.get_number_of_runs()}, concurrency={self.get_max_concurrency()}>"


# Convenience function
def load_config(config_path: Optional[str] = DEFAULT_CONFIG_PATH, required: bool = True) -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path, required=required)
