"""Configuration file support for larashield.

Loads .larashield.yml from the project root (or a given path) and exposes
it through dotted-path lookups with per-key defaults.

Config format example:

    paths:
      analyze: [app, config, database, routes]

    excluded_paths:
      - "vendor/*"
      - "storage/*"

    disabled_analyzers:
      - "license-compliance"

    fail_on: high
    suppression_keyword: "larashield-ignore"

    security:
      authentication:
        public_routes: ["webhooks/*"]
      password_security:
        bcrypt_min_rounds: 12
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from larashield.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = (".larashield.yml", ".larashield.yaml")

DEFAULT_ANALYZE_PATHS = ["app", "config", "database", "routes"]

DEFAULT_EXCLUDED_PATHS = [
    "vendor/*",
    "node_modules/*",
    "storage/*",
    "bootstrap/cache/*",
]

FAIL_ON_LEVELS = ("never", "critical", "high", "medium", "low")


@dataclass
class LarashieldConfig:
    """Parsed configuration from .larashield.yml."""
    data: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Look up ``a.b.c`` in the nested mapping, returning ``default`` when absent."""
        current: Any = self.data
        for part in path.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        if current is None:
            return default
        return current

    def get_list(self, path: str, default: Optional[List[Any]] = None) -> List[Any]:
        """Like get() but only accepts a list. A bare string becomes a one-item list."""
        default = list(default) if default is not None else []
        value = self.get(path)
        if value is None:
            return default
        if isinstance(value, str):
            return [value]
        if not isinstance(value, list):
            logger.warning("Config key %s should be a list, got %s; using default",
                           path, type(value).__name__)
            return default
        return value

    def get_str_list(self, path: str, default: Optional[List[str]] = None) -> List[str]:
        """List of strings, dropping non-string entries."""
        return [v for v in self.get_list(path, default) if isinstance(v, str) and v]

    def get_int(self, path: str, default: int) -> int:
        value = self.get(path)
        if value is None or isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        logger.warning("Config key %s should be an integer, got %r; using %d",
                       path, value, default)
        return default

    def get_bool(self, path: str, default: bool) -> bool:
        value = self.get(path)
        if isinstance(value, bool):
            return value
        return default

    # --- Well-known top-level settings ---

    @property
    def analyze_paths(self) -> List[str]:
        return self.get_str_list("paths.analyze", DEFAULT_ANALYZE_PATHS)

    @property
    def excluded_paths(self) -> List[str]:
        return self.get_str_list("excluded_paths", DEFAULT_EXCLUDED_PATHS)

    @property
    def disabled_analyzers(self) -> List[str]:
        return self.get_str_list("disabled_analyzers")

    @property
    def dont_report(self) -> List[str]:
        return self.get_str_list("dont_report")

    @property
    def fail_on(self) -> str:
        value = str(self.get("fail_on", "critical")).lower()
        return value if value in FAIL_ON_LEVELS else "critical"

    @property
    def suppression_keyword(self) -> str:
        value = self.get("suppression_keyword", "larashield-ignore")
        return value if isinstance(value, str) and value else "larashield-ignore"


def load_config(target_path: str, config_path: str = None) -> LarashieldConfig:
    """Load larashield configuration.

    Args:
        target_path: The project being analyzed (used to find .larashield.yml)
        config_path: Explicit config path (overrides auto-discovery)

    Returns:
        The parsed config, or an empty one when no file is found.

    Raises:
        ConfigError: if an explicit path is missing or any file is malformed.
    """
    if config_path:
        if not os.path.isfile(config_path):
            raise ConfigError(f"Config file not found: {config_path}")
        return _parse_config(config_path)

    # Walk up from target_path to find .larashield.yml
    search_dir = os.path.abspath(target_path)
    if os.path.isfile(search_dir):
        search_dir = os.path.dirname(search_dir)

    while True:
        for name in CONFIG_FILENAMES:
            candidate = os.path.join(search_dir, name)
            if os.path.isfile(candidate):
                return _parse_config(candidate)
        parent = os.path.dirname(search_dir)
        if parent == search_dir:
            break  # Reached filesystem root
        search_dir = parent

    return LarashieldConfig()


def _parse_config(config_path: str) -> LarashieldConfig:
    """Parse a .larashield.yml file into a LarashieldConfig."""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    logger.debug("Loaded config from %s", config_path)
    return LarashieldConfig(data=data, source=config_path)
