"""
Configuration loader
Loads TOML or YAML configuration with environment variable substitution
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import toml
import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DAYLINE_CONFIG_FILE"


class ConfigLoader:
    """Configuration loader class"""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or self._get_default_config_file()
        self._config: Dict[str, Any] = {}

    def _get_default_config_file(self) -> str:
        """Get default configuration file path

        Strategy:
        1. DAYLINE_CONFIG_FILE environment variable, when set
        2. ~/.config/dayline/config.toml otherwise
        3. Missing files are created from the default template during load()
        """
        env_path = os.getenv(CONFIG_ENV_VAR)
        if env_path:
            return env_path

        user_config_file = Path.home() / ".config" / "dayline" / "config.toml"
        logger.info(f"Using user configuration file: {user_config_file}")
        return str(user_config_file)

    def load(self) -> Dict[str, Any]:
        """Load configuration, create default configuration if it doesn't exist"""
        config_path = Path(self.config_file)

        if not config_path.exists():
            logger.info(f"Configuration file doesn't exist: {self.config_file}")
            self._create_default_config(config_path)

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                config_content = f.read()

            config_content = self._replace_env_vars(config_content)

            if self.config_file.endswith((".yaml", ".yml")):
                self._config = yaml.safe_load(config_content) or {}
            else:
                self._config = toml.loads(config_content)

            logger.info(f"✓ Configuration file loaded successfully: {self.config_file}")
            return self._config

        except (yaml.YAMLError, toml.TomlDecodeError) as e:
            logger.error(f"Configuration file parsing error: {e}")
            raise

    def _create_default_config(self, config_path: Path) -> None:
        """Create default configuration file"""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(self._get_default_config_content(config_path.parent))
        logger.info(f"✓ Default configuration file created: {config_path}")

    def _get_default_config_content(self, config_dir: Path) -> str:
        """Get default configuration content"""
        # Paths are written as TOML literal strings so Windows backslashes survive
        return f"""# dayline configuration file

[database]
path = '{config_dir / "dayline.db"}'

[logging]
level = "INFO"
logs_dir = '{config_dir / "logs"}'
max_file_size = "10MB"
backup_count = 5

[llm]
# gemini | local | backend
provider = "gemini"

[llm.gemini]
api_key = "${{GEMINI_API_KEY:}}"
model = "gemini-2.5-pro"
base_url = "https://generativelanguage.googleapis.com"

[llm.local]
# lmstudio | ollama
engine = "lmstudio"
endpoint = "http://localhost:1234"
model = "qwen2.5-vl-3b-instruct"
frame_interval = 60

[llm.backend]
endpoint = "https://api.dayline.app"
token = "${{DAYLINE_BACKEND_TOKEN:}}"

[analysis]
check_interval = 60
target_batch_seconds = 900
max_chunk_gap = 120
min_batch_seconds = 300
lookback_hours = 24
max_concurrent_batches = 2
context_window_seconds = 3600

[retry]
max_attempts = 3
base_delay = 5.0
rate_limit_default = 60.0
max_rate_limit_waits = 5

[upload]
poll_interval = 2.0
max_wait = 360.0

[timeline]
merge_gap_minutes = 5

# Categories offered to the model; Work, Personal, Distraction and Idle when none are listed
# [[taxonomy.categories]]
# name = "Deep Work"
# description = "Focused programming, writing or design"
#
# [[taxonomy.categories]]
# name = "Away"
# is_idle = true
"""

    def _replace_env_vars(self, content: str) -> str:
        """Replace environment variable placeholders"""

        def replace_var(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) else ""
            return os.getenv(var_name, default_value)

        # Match ${VAR_NAME} or ${VAR_NAME:default_value} format
        pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"
        return re.sub(pattern, replace_var, content)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value, supports dot-separated nested keys"""
        keys = key.split(".")
        value = self._config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default


# Global configuration instance
_config_instance: Optional[ConfigLoader] = None


def get_config(config_file: Optional[str] = None) -> ConfigLoader:
    """Get global configuration instance"""
    global _config_instance
    if config_file is not None:
        _config_instance = ConfigLoader(config_file)
        _config_instance.load()
    elif _config_instance is None:
        _config_instance = ConfigLoader()
        _config_instance.load()
    return _config_instance
