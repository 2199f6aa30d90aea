"""Configuration management for Almanac CalDAV Server."""

import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any

from monitoring import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('true', '1', 'yes')


def _env_number(name: str, default, cast=int):
    value = os.getenv(name)
    if value is None or value == '':
        return default
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}", {'variable': name})


@dataclass
class DatabaseConfig:
    """Local store configuration."""
    url: str = "sqlite:///data/almanac.sqlite"
    echo: bool = False

    def __post_init__(self):
        if not self.url:
            raise ConfigurationError("database url is required")


@dataclass
class CalDAVConfig:
    """CalDAV server configuration.

    There are no default credentials: without them every request is refused.
    """
    username: str = ""
    password: str = ""
    realm: str = "Almanac CalDAV Server"
    display_name: str = "Almanac"

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 5232
    debug: bool = False

    def __post_init__(self):
        if not 0 < int(self.port) < 65536:
            raise ConfigurationError(f"Invalid server port: {self.port}")


@dataclass
class SyncConfig:
    """Remote account synchronization configuration."""
    interval_seconds: int = 900  # 15 minutes
    retry_delay_seconds: int = 60
    timeout_seconds: int = 300
    background_enabled: bool = True

    def __post_init__(self):
        for name in ('interval_seconds', 'retry_delay_seconds', 'timeout_seconds'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"sync.{name} must be positive")


@dataclass
class RemoteConfig:
    """Outgoing CalDAV client configuration."""
    timeout_seconds: float = 30
    user_agent: str = "Almanac-CalDAV/1.0"

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ConfigurationError("remote.timeout_seconds must be positive")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class Config:
    """Main application configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'Config':
        """Create configuration from environment variables."""
        database_config = DatabaseConfig(
            url=os.getenv('DATABASE_URL', DatabaseConfig.url),
            echo=_env_bool('DATABASE_ECHO')
        )

        caldav_config = CalDAVConfig(
            username=os.getenv('CALDAV_USERNAME', ''),
            password=os.getenv('CALDAV_PASSWORD', ''),
            realm=os.getenv('CALDAV_REALM', CalDAVConfig.realm),
            display_name=os.getenv('CALDAV_DISPLAY_NAME', CalDAVConfig.display_name)
        )

        server_config = ServerConfig(
            host=os.getenv('SERVER_HOST', ServerConfig.host),
            port=_env_number('SERVER_PORT', ServerConfig.port),
            debug=_env_bool('SERVER_DEBUG')
        )

        sync_config = SyncConfig(
            interval_seconds=_env_number('SYNC_INTERVAL', SyncConfig.interval_seconds),
            retry_delay_seconds=_env_number('SYNC_RETRY_DELAY', SyncConfig.retry_delay_seconds),
            timeout_seconds=_env_number('SYNC_TIMEOUT', SyncConfig.timeout_seconds),
            background_enabled=_env_bool('SYNC_BACKGROUND', SyncConfig.background_enabled)
        )

        remote_config = RemoteConfig(
            timeout_seconds=_env_number('REMOTE_TIMEOUT', RemoteConfig.timeout_seconds, float),
            user_agent=os.getenv('REMOTE_USER_AGENT', RemoteConfig.user_agent)
        )

        logging_config = LoggingConfig(
            level=os.getenv('LOG_LEVEL', LoggingConfig.level).upper(),
            format=os.getenv('LOG_FORMAT', LoggingConfig.format),
            file_path=os.getenv('LOG_FILE'),
            max_bytes=_env_number('LOG_MAX_BYTES', LoggingConfig.max_bytes),
            backup_count=_env_number('LOG_BACKUP_COUNT', LoggingConfig.backup_count)
        )

        return cls(
            database=database_config,
            caldav=caldav_config,
            server=server_config,
            sync=sync_config,
            remote=remote_config,
            logging=logging_config
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create configuration from a nested mapping; missing keys keep their defaults."""
        try:
            return cls(
                database=DatabaseConfig(**data.get('database', {})),
                caldav=CalDAVConfig(**data.get('caldav', {})),
                server=ServerConfig(**data.get('server', {})),
                sync=SyncConfig(**data.get('sync', {})),
                remote=RemoteConfig(**data.get('remote', {})),
                logging=LoggingConfig(**data.get('logging', {}))
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Create configuration from JSON file."""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid configuration file format: {e}", {'path': config_path})

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must hold a JSON object", {'path': config_path})

        config = cls.from_dict(data)
        config.logging.level = config.logging.level.upper()
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary; secrets are masked."""
        return {
            'database': {
                'url': self.database.url,
                'echo': self.database.echo
            },
            'caldav': {
                'username': self.caldav.username,
                'password': '***' if self.caldav.password else '',
                'realm': self.caldav.realm,
                'display_name': self.caldav.display_name
            },
            'server': {
                'host': self.server.host,
                'port': self.server.port,
                'debug': self.server.debug
            },
            'sync': {
                'interval_seconds': self.sync.interval_seconds,
                'retry_delay_seconds': self.sync.retry_delay_seconds,
                'timeout_seconds': self.sync.timeout_seconds,
                'background_enabled': self.sync.background_enabled
            },
            'remote': {
                'timeout_seconds': self.remote.timeout_seconds,
                'user_agent': self.remote.user_agent
            },
            'logging': {
                'level': self.logging.level,
                'format': self.logging.format,
                'file_path': self.logging.file_path,
                'max_bytes': self.logging.max_bytes,
                'backup_count': self.logging.backup_count
            }
        }

    def setup_logging(self) -> None:
        """Configure logging based on configuration."""
        log_level = getattr(logging, self.logging.level, logging.INFO)

        formatter = logging.Formatter(self.logging.format)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if self.logging.file_path:
            from logging.handlers import RotatingFileHandler
            file_handler = RotatingFileHandler(
                self.logging.file_path,
                maxBytes=self.logging.max_bytes,
                backupCount=self.logging.backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        # SQLAlchemy engine logging is controlled by database.echo
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


def load_config() -> Config:
    """Load configuration from file or environment variables."""
    config_files = [
        os.getenv('ALMANAC_CONFIG', ''),
        'config.json',
        'config/config.json',
        '/etc/almanac-caldav/config.json'
    ]

    for config_file in config_files:
        if config_file and os.path.exists(config_file):
            try:
                return Config.from_file(config_file)
            except Exception as e:
                logging.warning(f"Failed to load config from {config_file}: {e}")

    # Fall back to environment variables
    return Config.from_env()
