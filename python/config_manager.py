"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

from screening.subject import FIELD_NAMES

logger = logging.getLogger(__name__)


@dataclass
class MatchingConfig:
    """Matching configuration parameters"""
    threshold: float = 75.0
    recognized_fields: List[str] = field(default_factory=lambda: [
        'first_name', 'last_name', 'full_name', 'passport_number'
    ])


@dataclass
class RiskConfig:
    """Risk weights and level thresholds"""
    type_weights: Dict[str, float] = field(default_factory=lambda: {
        'sanctions': 1.0,
        'pep': 0.8,
        'adverse_media': 0.6,
        'custom': 0.7,
        'unknown': 0.5
    })
    source_weights: Dict[str, float] = field(default_factory=lambda: {
        'ofac': 1.0,
        'un': 0.9,
        'eu': 0.9,
        'custom': 0.6,
        'unknown': 0.5
    })
    high_threshold: float = 80.0
    medium_threshold: float = 50.0


@dataclass
class QueueConfig:
    """Screening job queue and retry settings"""
    job_name: str = "screen-entity"
    max_attempts: int = 3
    backoff_min_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    backoff_multiplier: float = 1.0
    workers: int = 2
    poll_interval_seconds: float = 1.0
    stuck_job_timeout_seconds: int = 600


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = "logs/screening.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class AlgorithmConfig:
    """Algorithm version information"""
    version: str = "1.0.0"
    name: str = "Normalized Levenshtein Matcher"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.matching: MatchingConfig = MatchingConfig()
        self.risk: RiskConfig = RiskConfig()
        self.queue: QueueConfig = QueueConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.algorithm: AlgorithmConfig = AlgorithmConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_matching()
        self._parse_risk()
        self._parse_queue()
        self._parse_logging()
        self._parse_algorithm()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return cfg

    def _parse_matching(self) -> None:
        """Parse matching configuration"""
        cfg = self._section('matching')
        self.matching = MatchingConfig(
            threshold=cfg.get('threshold', self.matching.threshold),
            recognized_fields=cfg.get('recognized_fields', self.matching.recognized_fields)
        )

    def _parse_risk(self) -> None:
        """Parse risk configuration

        Partial weight tables are merged over the defaults so a file only
        needs to list the weights it changes.
        """
        cfg = self._section('risk')
        defaults = RiskConfig()
        self.risk = RiskConfig(
            type_weights={**defaults.type_weights, **(cfg.get('type_weights') or {})},
            source_weights={**defaults.source_weights, **(cfg.get('source_weights') or {})},
            high_threshold=cfg.get('high_threshold', defaults.high_threshold),
            medium_threshold=cfg.get('medium_threshold', defaults.medium_threshold)
        )

    def _parse_queue(self) -> None:
        """Parse queue configuration"""
        cfg = self._section('queue')
        defaults = QueueConfig()
        self.queue = QueueConfig(
            job_name=cfg.get('job_name', defaults.job_name),
            max_attempts=cfg.get('max_attempts', defaults.max_attempts),
            backoff_min_seconds=cfg.get('backoff_min_seconds', defaults.backoff_min_seconds),
            backoff_max_seconds=cfg.get('backoff_max_seconds', defaults.backoff_max_seconds),
            backoff_multiplier=cfg.get('backoff_multiplier', defaults.backoff_multiplier),
            workers=cfg.get('workers', defaults.workers),
            poll_interval_seconds=cfg.get('poll_interval_seconds', defaults.poll_interval_seconds),
            stuck_job_timeout_seconds=cfg.get('stuck_job_timeout_seconds', defaults.stuck_job_timeout_seconds)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', self.logging.file),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_algorithm(self) -> None:
        """Parse algorithm configuration"""
        cfg = self._section('algorithm')
        self.algorithm = AlgorithmConfig(
            version=str(cfg.get('version', self.algorithm.version)),
            name=cfg.get('name', self.algorithm.name)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            'matching': {
                'threshold': self.matching.threshold,
                'recognized_fields': self.matching.recognized_fields
            },
            'risk': {
                'type_weights': self.risk.type_weights,
                'source_weights': self.risk.source_weights,
                'high_threshold': self.risk.high_threshold,
                'medium_threshold': self.risk.medium_threshold
            },
            'queue': {
                'job_name': self.queue.job_name,
                'max_attempts': self.queue.max_attempts,
                'backoff_min_seconds': self.queue.backoff_min_seconds,
                'backoff_max_seconds': self.queue.backoff_max_seconds,
                'backoff_multiplier': self.queue.backoff_multiplier,
                'workers': self.queue.workers,
                'poll_interval_seconds': self.queue.poll_interval_seconds,
                'stuck_job_timeout_seconds': self.queue.stuck_job_timeout_seconds
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'algorithm': {
                'version': self.algorithm.version,
                'name': self.algorithm.name
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        errors = []

        if not _is_number(self.matching.threshold) or not 0 <= self.matching.threshold <= 100:
            errors.append(f"matching.threshold must be between 0 and 100, got {self.matching.threshold!r}")

        fields = self.matching.recognized_fields
        if not isinstance(fields, list) or not fields:
            errors.append(f"matching.recognized_fields must be a non-empty list, got {fields!r}")
        else:
            unknown = [name for name in fields if name not in FIELD_NAMES]
            if unknown:
                errors.append(
                    f"matching.recognized_fields has unknown field(s) {unknown!r}, "
                    f"valid: {', '.join(FIELD_NAMES)}"
                )

        for table_name in ('type_weights', 'source_weights'):
            for key, weight in getattr(self.risk, table_name).items():
                if not _is_number(weight) or not 0 <= weight <= 1:
                    errors.append(f"risk.{table_name}.{key} must be between 0 and 1, got {weight!r}")

        high, medium = self.risk.high_threshold, self.risk.medium_threshold
        if not (_is_number(high) and _is_number(medium) and 0 <= medium <= high <= 100):
            errors.append(
                f"risk thresholds must satisfy 0 <= medium_threshold <= high_threshold <= 100, "
                f"got medium={medium!r} high={high!r}"
            )

        queue = self.queue
        if not isinstance(queue.max_attempts, int) or queue.max_attempts < 1:
            errors.append(f"queue.max_attempts must be a positive integer, got {queue.max_attempts!r}")
        if not isinstance(queue.workers, int) or queue.workers < 1:
            errors.append(f"queue.workers must be a positive integer, got {queue.workers!r}")
        for name in ('backoff_min_seconds', 'backoff_max_seconds', 'backoff_multiplier',
                     'poll_interval_seconds', 'stuck_job_timeout_seconds'):
            value = getattr(queue, name)
            if not _is_number(value) or value < 0:
                errors.append(f"queue.{name} must be a non-negative number, got {value!r}")
        if (_is_number(queue.backoff_min_seconds) and _is_number(queue.backoff_max_seconds)
                and queue.backoff_min_seconds > queue.backoff_max_seconds):
            errors.append("queue.backoff_min_seconds must not exceed queue.backoff_max_seconds")
        if not queue.job_name:
            errors.append("queue.job_name must not be empty")

        if str(self.logging.level).upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"logging.level is not a valid level: {self.logging.level!r}")

        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
