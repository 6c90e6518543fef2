"""
Run configuration file loading.

Reads the declarative run configuration from YAML or JSON into a plain
mapping for the planner to resolve.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigError


def load_run_config_file(path: Optional[Union[str, Path]]) -> Dict[str, Any]:
    """
    Load a raw run configuration.

    Args:
        path: Path to a ``.yaml``, ``.yml`` or ``.json`` file. ``None``
            yields an empty mapping so every declared default applies.

    Returns:
        Raw configuration mapping

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping
    """
    if path is None:
        return {}

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(
            f"Run configuration file not found: {config_path}", field="config_path"
        )

    try:
        text = config_path.read_text(encoding="utf-8")
        if config_path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(
            f"Failed to parse run configuration {config_path}: {e}",
            field="config_path",
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Run configuration must be a mapping, got {type(data).__name__}",
            field="config_path",
        )
    return data
