"""
Product Slugs Application
-------------------------
Loads configuration, sets up logging and wires the repository, service,
backfill job and HTTP app together.
"""

import logging
import logging.handlers
import json
import os
from copy import deepcopy
from typing import Optional, Dict, Any
from pathlib import Path
import threading
import signal

from .backfill import BackfillReport, run_backfill
from .repositories import JsonProductRepository
from .services import ProductService, SlugPolicy


class ApplicationError(Exception):
    """Base exception for application-level errors."""
    pass


class ConfigurationError(ApplicationError):
    """Raised when there's an error in configuration."""
    pass


NESTED_SECTIONS = ("slugs", "redirects", "server")


class SlugManagerApp:
    """Main application class managing configuration and dependencies."""

    DEFAULT_CONFIG = {
        "data_dir": "~/.product_slugs/data",
        "product_file": "product_data.json",
        "log_dir": "~/.product_slugs/logs",
        "log_level": "INFO",
        "max_log_size": 5_242_880,  # 5MB
        "backup_count": 3,
        "max_catalog_backups": 5,
        "slugs": {
            "policy": SlugPolicy.FROZEN.value,
            "max_length": 80,
            "max_probes": 1000,
            "max_commit_attempts": 5,
        },
        "redirects": {
            "canonical_prefix": "/products",
            "fallback_location": "/products",
        },
        "server": {
            "host": "127.0.0.1",
            "port": 5000,
        },
    }

    def __init__(self):
        """Initialize the application."""
        self.exit_event = threading.Event()
        self.config: Dict[str, Any] = {}
        self.logger: Optional[logging.Logger] = None
        self.repository: Optional[JsonProductRepository] = None
        self.service: Optional[ProductService] = None

    def initialize(self, config_path: Optional[str] = None) -> None:
        """
        Initialize the application with configuration.

        Args:
            config_path: Optional path to configuration file

        Raises:
            ConfigurationError: If configuration is invalid
        """
        try:
            self.config = self._load_configuration(config_path)
            self._validate_configuration()
            self._setup_logging()
            self._setup_directories()
        except ConfigurationError:
            raise
        except (OSError, ValueError, TypeError, KeyError) as e:
            raise ConfigurationError(f"Failed to initialize application: {e}") from e
        self.logger.info("Application initialization completed")

    def _load_configuration(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load application configuration.

        Args:
            config_path: Optional path to configuration file

        Returns:
            Dict containing configuration
        """
        config = deepcopy(self.DEFAULT_CONFIG)

        if config_path:
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    user_config = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(
                    f"Failed to load configuration from {config_path}: {e}") from e
            if not isinstance(user_config, dict):
                raise ConfigurationError(
                    f"Configuration in {config_path} must be a JSON object")
            for key, value in user_config.items():
                if key in NESTED_SECTIONS and isinstance(value, dict):
                    config[key].update(value)
                else:
                    config[key] = value

        # Expand paths
        config['data_dir'] = os.path.expanduser(config['data_dir'])
        config['log_dir'] = os.path.expanduser(config['log_dir'])

        return config

    def _validate_configuration(self) -> None:
        slugs = self.config['slugs']
        try:
            SlugPolicy(slugs['policy'])
        except ValueError as e:
            allowed = ", ".join(policy.value for policy in SlugPolicy)
            raise ConfigurationError(
                f"Unknown slug policy {slugs['policy']!r} (expected one of: {allowed})") from e
        if slugs['max_probes'] is not None and int(slugs['max_probes']) < 1:
            raise ConfigurationError("slugs.max_probes must be positive or null")
        if int(slugs['max_commit_attempts']) < 1:
            raise ConfigurationError("slugs.max_commit_attempts must be at least 1")
        if int(slugs['max_length']) < 1:
            raise ConfigurationError("slugs.max_length must be at least 1")
        if not hasattr(logging, str(self.config['log_level']).upper()):
            raise ConfigurationError(f"Unknown log level {self.config['log_level']!r}")

    def _setup_logging(self) -> None:
        """Configure application logging."""
        self.logger = logging.getLogger('product_slugs')
        self.logger.setLevel(getattr(logging, str(self.config['log_level']).upper()))
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        # Create log directory
        log_dir = Path(self.config['log_dir'])
        log_dir.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        log_file = log_dir / 'product_slugs.log'
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self.config['max_log_size'],
            backupCount=self.config['backup_count'],
            encoding='utf-8',
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        self.logger.addHandler(file_handler)

        # Console handler for development
        if self._is_development_mode():
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter(
                '%(levelname)s: %(message)s'
            ))
            self.logger.addHandler(console_handler)

    def _setup_directories(self) -> None:
        """Create necessary application directories."""
        for path in (self.config['data_dir'], self.config['log_dir']):
            Path(path).mkdir(parents=True, exist_ok=True)

    def _is_development_mode(self) -> bool:
        """Check if application is running in development mode."""
        return os.environ.get('PRODUCT_SLUGS_ENV') == 'development'

    def _require_initialized(self) -> None:
        if not self.config:
            raise ApplicationError("Application is not initialized")

    def create_repository(self) -> JsonProductRepository:
        """Create and configure the product repository."""
        self._require_initialized()
        if self.repository is None:
            product_file = os.path.join(
                self.config['data_dir'],
                self.config['product_file']
            )
            self.repository = JsonProductRepository(
                product_file,
                max_backups=self.config['max_catalog_backups'],
            )
        return self.repository

    def create_service(self) -> ProductService:
        """Create and configure the product service."""
        if self.service is None:
            slugs = self.config['slugs']
            self.service = ProductService(
                self.create_repository(),
                slug_policy=SlugPolicy(slugs['policy']),
                max_slug_probes=slugs['max_probes'],
                max_commit_attempts=slugs['max_commit_attempts'],
                slug_max_length=slugs['max_length'],
            )
        return self.service

    def create_web_app(self):
        """Build the Flask app serving lookups and legacy redirects."""
        from .api import create_app

        return create_app(self.create_service(), self.config)

    def run_backfill(self) -> BackfillReport:
        """Run the slug backfill, stopping cleanly on SIGINT/SIGTERM."""
        slugs = self.config['slugs']
        previous = self._install_signal_handlers()
        try:
            report = run_backfill(
                self.create_repository(),
                max_slug_probes=slugs['max_probes'],
                max_commit_attempts=slugs['max_commit_attempts'],
                slug_max_length=slugs['max_length'],
                stop_event=self.exit_event,
            )
        finally:
            self._restore_signal_handlers(previous)
        self.logger.info(f"Backfill report: {json.dumps(report.to_dict(), ensure_ascii=False)}")
        return report

    def _install_signal_handlers(self) -> Dict[int, Any]:
        """Set exit_event on SIGINT/SIGTERM; returns the handlers replaced."""
        previous: Dict[int, Any] = {}
        if threading.current_thread() is not threading.main_thread():
            return previous
        for sig in (signal.SIGTERM, signal.SIGINT):
            previous[sig] = signal.signal(sig, self._handle_shutdown_signal)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)

    def _handle_shutdown_signal(self, signum: int, frame) -> None:
        """Handle shutdown signals gracefully."""
        if self.logger:
            self.logger.info(
                f"Received signal {signum}, stopping after the current product...")
        self.exit_event.set()
