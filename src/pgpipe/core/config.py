"""
Configuration management for pgpipe
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TOOLS_ROOT = Path("/usr/lib/postgresql")


class ConfigManager:
    """Configuration management with environment variable support"""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path.home() / ".pgpipe.json"

        # Load environment variables
        load_dotenv()

        # Default configuration
        self.config = self._get_default_config()

        # Load from file and environment
        self._load_from_file()
        self._load_from_environment()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            "app": {
                "log_level": "INFO",
            },
            "tools": {
                "root": str(DEFAULT_TOOLS_ROOT),
            },
            "pipeline": {
                "chunk_size": 64 * 1024,
                "channel_depth": 8,
            },
            "http": {
                "timeout": 60.0,
            },
        }

    def _load_from_file(self):
        """Load configuration from file"""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r") as f:
                    file_config = json.load(f)
                    self._merge_config(self.config, file_config)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Error loading config file {self.config_file}: {e}")

    def _load_from_environment(self):
        """Load configuration from environment variables"""
        env_mappings = {
            "PGPIPE_LOG_LEVEL": ("app", "log_level"),
            "PGPIPE_TOOLS_ROOT": ("tools", "root"),
            "PGPIPE_CHUNK_SIZE": ("pipeline", "chunk_size"),
            "PGPIPE_CHANNEL_DEPTH": ("pipeline", "channel_depth"),
            "PGPIPE_HTTP_TIMEOUT": ("http", "timeout"),
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.environ.get(env_var)
            if env_value is not None:
                self._set_nested_value(self.config, config_path, env_value)

    def _merge_config(self, base: Dict, override: Dict):
        """Recursively merge configuration dictionaries"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _set_nested_value(self, config: Dict, path: tuple, value: str):
        """Set nested configuration value"""
        current = config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        final_key = path[-1]

        # Type conversion
        try:
            if final_key in ["chunk_size", "channel_depth"]:
                current[final_key] = int(value)
            elif final_key in ["timeout"]:
                current[final_key] = float(value)
            else:
                current[final_key] = value
        except ValueError:
            logger.warning(f"Ignoring invalid value for {'.'.join(path)}: {value!r}")

    def get_tools_root(self) -> Path:
        """Directory holding one <version>/bin folder per PostgreSQL release"""
        return Path(self.config["tools"]["root"])

    def get_chunk_size(self) -> int:
        return max(1, int(self.config["pipeline"]["chunk_size"]))

    def get_channel_depth(self) -> int:
        return max(1, int(self.config["pipeline"]["channel_depth"]))

    def get_http_timeout(self) -> float:
        return float(self.config["http"]["timeout"])

    def get_log_level(self) -> str:
        return str(self.config["app"]["log_level"])

    def get_config_value(self, path: str, default: Any = None) -> Any:
        """Get configuration value"""
        keys = path.split(".")
        current = self.config

        try:
            for key in keys:
                current = current[key]
            return current
        except (KeyError, TypeError):
            return default

    def get_full_config(self) -> Dict[str, Any]:
        """Get full configuration"""
        return self.config.copy()
