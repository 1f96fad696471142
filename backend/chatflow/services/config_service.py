# /chatflow/services/config_service.py

import json
import logging
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from chatflow.config.flows import DEFAULT_BOT_CONFIG
from chatflow.exceptions import ConfigurationError
from chatflow.models.flow import BotConfig

# This service is the configuration collaborator: it loads the bot
# configuration (flows, modes, departments) from JSON, keeps backups of every
# saved version and notifies subscribers so engines can hot-reload.

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "bot.config.backup."

ConfigListener = Callable[[BotConfig], None]


class ConfigService:
    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self._listeners: List[ConfigListener] = []
        self.config: BotConfig = self.load()

    @property
    def backup_dir(self) -> Optional[Path]:
        return self.config_path.parent if self.config_path else None

    @staticmethod
    def parse(data: Dict[str, Any]) -> BotConfig:
        """Validate a raw configuration, raising ConfigurationError when it is rejected."""
        try:
            return BotConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid bot configuration: {e}") from e

    def load(self) -> BotConfig:
        if self.config_path is None or not self.config_path.exists():
            if self.config_path is not None:
                logger.warning(f"Config file {self.config_path} not found, using default configuration.")
            return self.parse(DEFAULT_BOT_CONFIG)

        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config from {self.config_path}: {e}")
            raise ConfigurationError(f"Could not read {self.config_path}: {e}") from e

        config = self.parse(data)
        logger.info(f"Configuration loaded from {self.config_path} (mode={config.mode})")
        return config

    def get_config(self) -> BotConfig:
        return self.config

    def subscribe(self, listener: ConfigListener) -> None:
        self._listeners.append(listener)

    def save(self, data: Dict[str, Any]) -> BotConfig:
        """
        Validate and persist a new configuration. The current file is backed up
        first; on any failure the active configuration stays untouched.
        """
        config = self.parse(data)

        if self.config_path is not None:
            try:
                if self.config_path.exists():
                    backup = self.backup_dir / f"{BACKUP_PREFIX}{time.time_ns()}.json"
                    shutil.copyfile(self.config_path, backup)
                    logger.info(f"Configuration backup written to {backup.name}")
                self.config_path.write_text(
                    json.dumps(config.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2),
                    encoding="utf-8",
                )
            except OSError as e:
                logger.error(f"Error saving config: {e}")
                raise ConfigurationError(f"Could not save configuration: {e}") from e

        self.config = config
        logger.info("Configuration saved successfully.")
        self._notify()
        return config

    def update_mode(self, mode: str) -> BotConfig:
        if mode not in self.config.modes:
            raise ConfigurationError(f"Invalid mode '{mode}'. Available: {sorted(self.config.modes)}")
        data = self.config.model_dump(mode="json", by_alias=True)
        data["mode"] = mode
        return self.save(data)

    def list_backups(self) -> List[Dict[str, Any]]:
        """Backups next to the config file, newest first."""
        if self.backup_dir is None or not self.backup_dir.exists():
            return []
        backups = []
        for path in self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"):
            stats = path.stat()
            backups.append({"filename": path.name, "created": stats.st_mtime, "size": stats.st_size})
        return sorted(backups, key=lambda b: b["filename"], reverse=True)

    def restore_backup(self, filename: str) -> BotConfig:
        if self.backup_dir is None:
            raise ConfigurationError("No configuration file in use, nothing to restore")
        path = self.backup_dir / Path(filename).name
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error restoring backup {filename}: {e}")
            raise ConfigurationError(f"Could not read backup {filename}: {e}") from e
        return self.save(data)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.config)
            except Exception as e:
                logger.error(f"Config listener failed: {e}", exc_info=True)
