"""Configuration manager for loading retry settings from .retrack.yml"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from retrack.application.config_store import RetryConfigStore
from retrack.domain.config import RetryPolicy

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".retrack.yml"

# Environment variable -> policy field
ENV_OVERRIDES = {
    "RETRACK_MAX_RETRIES": "max_retries",
    "RETRACK_RETRY_DELAY_MS": "retry_delay_ms",
}


class ConfigManager:
    """Loads retry settings from .retrack.yml and environment variables

    Settings priority:
    1. Default values (defined in RetryPolicy)
    2. .retrack.yml file ("retry" section, searched from current directory)
    3. Environment variables (RETRACK_*)
    4. Code passing options to configure()

    Invalid values are dropped by the store, never raised.
    """

    DEFAULT_CONFIG: Dict[str, Any] = {"retry": {}}

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager

        Args:
            config_path: Path to .retrack.yml (searches from current dir if None)
        """
        if isinstance(config_path, str):
            config_path = Path(config_path)
        self.config_path = config_path or self._find_config_file()
        self.settings: Dict[str, Any] = self._load_settings()

    def _find_config_file(self) -> Optional[Path]:
        """Find .retrack.yml starting from current directory

        Returns:
            Path to config file or None if not found
        """
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            config_file = parent / CONFIG_FILE_NAME
            if config_file.exists():
                logger.info(f"Found config file: {config_file}")
                return config_file
        logger.debug(f"No {CONFIG_FILE_NAME} found, using defaults")
        return None

    def _load_settings(self) -> Dict[str, Any]:
        config = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
                retry_section = file_config.get("retry") or {}
                if isinstance(retry_section, dict):
                    config["retry"].update(retry_section)
                else:
                    logger.warning(f"Ignoring non-mapping 'retry' section in {self.config_path}")
                logger.info(f"Loaded configuration from {self.config_path}")
            except Exception as e:
                logger.warning(f"Failed to load config from {self.config_path}: {e}")
                logger.info("Using default configuration")

        return self._apply_env_overrides(config)["retry"]

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        for env_name, field in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                config["retry"][field] = int(raw)
            except ValueError:
                try:
                    config["retry"][field] = float(raw)
                except ValueError:
                    # Left as a string, rejected by the store
                    config["retry"][field] = raw
        return config

    def configure_store(self, store: RetryConfigStore) -> RetryPolicy:
        """Apply loaded settings to a policy store

        Returns:
            The store's updated policy
        """
        return store.configure(self.settings)

    def create_store(self) -> RetryConfigStore:
        """Create a fresh store with the loaded settings applied"""
        store = RetryConfigStore()
        self.configure_store(store)
        return store
