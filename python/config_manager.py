"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

ACCESS_DRIVER = "Microsoft Access Driver (*.mdb, *.accdb)"


@dataclass
class DatabaseConfig:
    """Relational store configuration"""
    url: Optional[str] = None
    access_file: str = "data/prairie-fen-database.accdb"
    driver: str = ACCESS_DRIVER
    echo: bool = False


@dataclass
class NormalizationConfig:
    """Flat file decomposition settings"""
    date_format: str = "%m/%d/%Y"
    duplicate_policy: str = "first"  # first, error
    encoding: str = "utf-8-sig"


@dataclass
class SyncConfig:
    """Table replacement settings"""
    short_text_max_length: int = 255
    transactional: bool = False


@dataclass
class ExportConfig:
    """Flat file export settings"""
    delimiter: str = "\t"
    output_directory: str = "data"
    encoding: str = "utf-8"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/pipeline.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class MonitoringConfig:
    """Store operation timing thresholds"""
    slow_query_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0


@dataclass
class CorrectionRule:
    """A value substitution applied to one table"""
    table: str
    match: Dict[str, Any] = field(default_factory=dict)
    updates: Dict[str, Any] = field(default_factory=dict)

@dataclass
class AdditionRule:
    """New keyed rows appended to one table"""
    table: str
    rows: List[Dict[str, Any]] = field(default_factory=list)



class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages pipeline configuration"""

    _instance: Optional['ConfigManager'] = None

    VALID_TABLES = ('location', 'event', 'occurrence')
    VALID_POLICIES = ('first', 'error')
    VALID_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.normalization: NormalizationConfig = NormalizationConfig()
        self.sync: SyncConfig = SyncConfig()
        self.export: ExportConfig = ExportConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.monitoring: MonitoringConfig = MonitoringConfig()
        self.corrections: List[CorrectionRule] = []
        self.additions: List[AdditionRule] = []

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
            Path(__file__).parent / "config.yaml",
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
            raise ConfigurationError("Top level of config file must be a mapping")

        self._parse_database()
        self._parse_normalization()
        self._parse_sync()
        self._parse_export()
        self._parse_logging()
        self._parse_monitoring()
        self._parse_corrections()
        self._parse_additions()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            url=cfg.get('url', self.database.url),
            access_file=cfg.get('access_file', self.database.access_file),
            driver=cfg.get('driver', self.database.driver),
            echo=cfg.get('echo', False)
        )

    def _parse_normalization(self) -> None:
        """Parse normalization configuration"""
        cfg = self._raw_config.get('normalization', {})
        self.normalization = NormalizationConfig(
            date_format=cfg.get('date_format', '%m/%d/%Y'),
            duplicate_policy=str(cfg.get('duplicate_policy', 'first')).lower(),
            encoding=cfg.get('encoding', 'utf-8-sig')
        )

    def _parse_sync(self) -> None:
        """Parse table replacement configuration"""
        cfg = self._raw_config.get('sync', {})
        self.sync = SyncConfig(
            short_text_max_length=cfg.get('short_text_max_length', 255),
            transactional=cfg.get('transactional', False)
        )

    def _parse_export(self) -> None:
        """Parse export configuration"""
        cfg = self._raw_config.get('export', {})
        self.export = ExportConfig(
            delimiter=cfg.get('delimiter', '\t'),
            output_directory=cfg.get('output_directory', 'data'),
            encoding=cfg.get('encoding', 'utf-8')
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=str(cfg.get('level', 'INFO')).upper(),
            file=cfg.get('file', 'logs/pipeline.log'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_monitoring(self) -> None:
        """Parse monitoring configuration"""
        cfg = self._raw_config.get('monitoring', {})
        self.monitoring = MonitoringConfig(
            slow_query_threshold_ms=cfg.get('slow_query_threshold_ms', 1000.0),
            warning_threshold_ms=cfg.get('warning_threshold_ms', 500.0)
        )

    def _parse_corrections(self) -> None:
        """Parse value substitution rules"""
        entries = self._raw_config.get('corrections', []) or []
        if not isinstance(entries, list):
            raise ConfigurationError("'corrections' must be a list of rules")

        rules = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or 'table' not in entry:
                raise ConfigurationError(f"Correction #{index} must be a mapping with a 'table' key")
            rules.append(CorrectionRule(
                table=entry['table'],
                match=entry.get('match', {}) or {},
                updates=entry.get('set', {}) or {}
            ))
        self.corrections = rules

    def _parse_additions(self) -> None:
        """Parse row addition rules"""
        entries = self._raw_config.get('additions', []) or []
        if not isinstance(entries, list):
            raise ConfigurationError("'additions' must be a list of rules")

        rules = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or 'table' not in entry:
                raise ConfigurationError(f"Addition #{index} must be a mapping with a 'table' key")
            rows = entry.get('rows', []) or []
            if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
                raise ConfigurationError(f"Addition #{index} 'rows' must be a list of mappings")
            rules.append(AdditionRule(table=entry['table'], rows=rows))
        self.additions = rules

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
            'database': {
                'url': self.database.url,
                'access_file': self.database.access_file,
                'driver': self.database.driver,
                'echo': self.database.echo
            },
            'normalization': {
                'date_format': self.normalization.date_format,
                'duplicate_policy': self.normalization.duplicate_policy,
                'encoding': self.normalization.encoding
            },
            'sync': {
                'short_text_max_length': self.sync.short_text_max_length,
                'transactional': self.sync.transactional
            },
            'export': {
                'delimiter': self.export.delimiter,
                'output_directory': self.export.output_directory,
                'encoding': self.export.encoding
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console,
                'format': self.logging.format
            },
            'monitoring': {
                'slow_query_threshold_ms': self.monitoring.slow_query_threshold_ms,
                'warning_threshold_ms': self.monitoring.warning_threshold_ms
            },
            'corrections': [
                {'table': rule.table, 'match': rule.match, 'set': rule.updates}
                for rule in self.corrections
            ],
            'additions': [
                {'table': rule.table, 'rows': rule.rows}
                for rule in self.additions
            ]
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        if self.normalization.duplicate_policy not in self.VALID_POLICIES:
            raise ConfigurationError(
                f"normalization.duplicate_policy must be one of {self.VALID_POLICIES}, "
                f"got '{self.normalization.duplicate_policy}'"
            )

        threshold = self.sync.short_text_max_length
        if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold <= 0:
            raise ConfigurationError(
                f"sync.short_text_max_length must be a positive integer, got {threshold!r}"
            )

        if len(self.export.delimiter) != 1:
            raise ConfigurationError(
                f"export.delimiter must be a single character, got {self.export.delimiter!r}"
            )

        if self.logging.level not in self.VALID_LEVELS:
            raise ConfigurationError(f"logging.level must be one of {self.VALID_LEVELS}")

        if self.monitoring.warning_threshold_ms > self.monitoring.slow_query_threshold_ms:
            raise ConfigurationError(
                "monitoring.warning_threshold_ms must not exceed slow_query_threshold_ms"
            )

        for rule in self.corrections:
            if rule.table not in self.VALID_TABLES:
                raise ConfigurationError(
                    f"Correction table must be one of {self.VALID_TABLES}, got '{rule.table}'"
                )
            if not rule.match or not rule.updates:
                raise ConfigurationError(
                    f"Correction on '{rule.table}' needs both 'match' and 'set' entries"
                )

        for rule in self.additions:
            if rule.table not in self.VALID_TABLES:
                raise ConfigurationError(
                    f"Addition table must be one of {self.VALID_TABLES}, got '{rule.table}'"
                )
            if not rule.rows:
                raise ConfigurationError(f"Addition to '{rule.table}' has no rows")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
