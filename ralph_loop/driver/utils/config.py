"""Loop configuration discovery.

Reads driver policy from ``[tool.ralph]`` in the project's pyproject.toml
and from ``.ralph/config.toml``; the latter wins on conflicting keys.
"""
from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict

import pydantic as pd

from ralph_loop.driver.constants import CONFIG_FILE, get_ralph_dir
from ralph_loop.driver.contracts import LoopConfig

logger = logging.getLogger(__name__)


class LoopConfigDiscovery:
    """Discover and parse loop configuration for a project.

    Missing or malformed configuration files are logged and ignored, so
    discovery always yields a usable LoopConfig.

    Example:
        >>> discovery = LoopConfigDiscovery("/path/to/repo")
        >>> config = discovery.load()
        >>> config.struggle_threshold
        3
    """

    def __init__(self, root: str | Path = "."):
        """Initialize config discovery for a project.

        Args:
            root: Path to the project root directory
        """
        self.root = Path(root).resolve()

    def _read_toml(self, config_path: Path) -> Dict[str, Any]:
        """Parse a TOML file, returning an empty dict on any error."""
        if not config_path.is_file():
            return {}
        try:
            with open(config_path, "rb") as f:
                content = tomllib.load(f)
            logger.debug(f"Successfully parsed {config_path}")
            return content
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Failed to parse {config_path}: {e}")
            return {}

    def read_pyproject_section(self) -> Dict[str, Any]:
        """Return the ``[tool.ralph]`` table from pyproject.toml, if any."""
        pyproject = self._read_toml(self.root / "pyproject.toml")
        section = pyproject.get("tool", {}).get("ralph", {})
        return section if isinstance(section, dict) else {}

    def read_ralph_config(self) -> Dict[str, Any]:
        """Return the contents of .ralph/config.toml, if any."""
        return self._read_toml(get_ralph_dir(self.root) / CONFIG_FILE)

    def load(self) -> LoopConfig:
        """Merge discovered settings into a validated LoopConfig.

        Keys may use dashes or underscores (``struggle-threshold`` or
        ``struggle_threshold``). Invalid values fall back to defaults.
        """
        merged: Dict[str, Any] = {}
        for source in (self.read_pyproject_section(), self.read_ralph_config()):
            for key, value in source.items():
                merged[key.replace("-", "_")] = value

        try:
            config = LoopConfig.model_validate(merged)
        except pd.ValidationError as e:
            logger.warning(f"Invalid loop configuration, using defaults: {e}")
            return LoopConfig()

        logger.debug(f"Loaded loop config: {config.model_dump()}")
        return config


def load_loop_config(root: str | Path = ".") -> LoopConfig:
    """Convenience wrapper around LoopConfigDiscovery.load()."""
    return LoopConfigDiscovery(root).load()
