"""On-disk storage for preferences and environments.

Layout under the configuration root::

    config.yaml                       global preferences
    environments/<name>/environment.yaml
    environments/<name>/<auxiliary files, e.g. messaging credentials>

Each environment lives in its own directory so auxiliary files travel with it.
The store performs no locking; concurrent invocations may race.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    ENVIRONMENT_NAME_PATTERN,
    Environment,
    GlobalPreferences,
    validate_environment_name,
)
from .errors import (
    ConfigIOError,
    ConfigParseError,
    EnvironmentNotFoundError,
    InvalidEnvironmentError,
    NoActiveEnvironmentError,
)
from .logging import get_logger

logger = get_logger(__name__)

PREFERENCES_FILE = "config.yaml"
ENVIRONMENTS_DIR = "environments"
ENVIRONMENT_FILE = "environment.yaml"


def default_config_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Get the configuration root, honoring FLINT_CONFIG_DIR."""
    environ = os.environ if environ is None else environ
    override = environ.get(CONFIG_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_DIR


class ConfigStore:
    """Directory-backed store for GlobalPreferences and Environments."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root) if root is not None else default_config_dir()

    @property
    def preferences_path(self) -> Path:
        return self.root / PREFERENCES_FILE

    @property
    def environments_dir(self) -> Path:
        return self.root / ENVIRONMENTS_DIR

    def environment_dir(self, name: str) -> Path:
        """Get the storage directory of an environment."""
        return self.environments_dir / name

    def environment_path(self, name: str) -> Path:
        """Get the configuration document path of an environment."""
        return self.environment_dir(name) / ENVIRONMENT_FILE

    # ---------------------------------------------------------------------
    # Preferences
    # ---------------------------------------------------------------------

    def load_preferences(self) -> GlobalPreferences:
        """Load preferences, creating the document with defaults if absent.

        Raises:
            ConfigParseError: If the document is malformed.
            ConfigIOError: If the document cannot be read or written.
        """
        path = self.preferences_path
        if not path.exists():
            logger.debug(f"No preferences at {path}, writing defaults")
            prefs = GlobalPreferences()
            self.save_preferences(prefs)
            return prefs

        data = self._read_document(path)
        try:
            return GlobalPreferences.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ConfigParseError(path, str(e)) from e

    def save_preferences(self, prefs: GlobalPreferences) -> None:
        """Overwrite the preferences document.

        Raises:
            ConfigIOError: If the document cannot be written.
        """
        self._write_document(self.preferences_path, prefs.to_dict())

    # ---------------------------------------------------------------------
    # Environments
    # ---------------------------------------------------------------------

    def load_environment(self, name: str) -> Environment:
        """Load an environment by name.

        Raises:
            EnvironmentNotFoundError: If no directory with a configuration document exists.
            ConfigParseError: If the document is malformed.
        """
        if not ENVIRONMENT_NAME_PATTERN.match(name):
            raise EnvironmentNotFoundError(name)
        path = self.environment_path(name)
        if not path.is_file():
            raise EnvironmentNotFoundError(name)

        data = self._read_document(path)
        try:
            env = Environment.from_dict(data)
        except (TypeError, ValueError, InvalidEnvironmentError) as e:
            raise ConfigParseError(path, str(e)) from e

        if env.name != name:
            # the directory name is authoritative
            logger.debug(f"Environment document at {path} names '{env.name}', using '{name}'")
            env.name = name
        return env

    def save_environment(self, env: Environment) -> None:
        """Write an environment, creating its directory if needed.

        Raises:
            InvalidEnvironmentError: If the environment name is invalid.
            ConfigIOError: If the document cannot be written.
        """
        validate_environment_name(env.name)
        self._write_document(self.environment_path(env.name), env.to_dict())

    def environment_exists(self, name: str) -> bool:
        return bool(ENVIRONMENT_NAME_PATTERN.match(name)) and self.environment_path(name).is_file()

    def list_environments(self) -> list[str]:
        """List names of all stored environments, sorted.

        Directories without a configuration document are skipped.
        """
        directory = self.environments_dir
        if not directory.is_dir():
            return []
        try:
            entries = list(directory.iterdir())
        except OSError as e:
            raise ConfigIOError(directory, e.strerror or str(e)) from e
        return sorted(p.name for p in entries if p.is_dir() and (p / ENVIRONMENT_FILE).is_file())

    def delete_environment(self, name: str) -> None:
        """Delete an environment and all files in its directory.

        The active pointer in preferences is left untouched.

        Raises:
            EnvironmentNotFoundError: If the environment does not exist.
            ConfigIOError: If removal fails.
        """
        if not self.environment_exists(name):
            raise EnvironmentNotFoundError(name, self.list_environments())
        directory = self.environment_dir(name)
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise ConfigIOError(directory, e.strerror or str(e)) from e
        logger.debug(f"Deleted environment directory {directory}")

    def get_active_environment(self, prefs: GlobalPreferences | None = None) -> Environment:
        """Load the environment the preferences point at.

        Args:
            prefs: Preferences to consult, loaded from disk when omitted.

        Raises:
            NoActiveEnvironmentError: If no environment is selected.
            EnvironmentNotFoundError: If the selected environment no longer exists.
        """
        prefs = prefs if prefs is not None else self.load_preferences()
        if not prefs.active_environment:
            raise NoActiveEnvironmentError()
        return self.load_environment(prefs.active_environment)

    def set_active_environment(self, name: str) -> GlobalPreferences:
        """Select an environment and persist the preferences.

        Returns:
            The updated preferences.

        Raises:
            EnvironmentNotFoundError: If the environment does not exist.
        """
        if not self.environment_exists(name):
            raise EnvironmentNotFoundError(name, self.list_environments())
        prefs = replace(self.load_preferences(), active_environment=name)
        self.save_preferences(prefs)
        return prefs

    def clear_active_environment(self) -> GlobalPreferences:
        """Unset the active environment and persist the preferences."""
        prefs = replace(self.load_preferences(), active_environment="")
        self.save_preferences(prefs)
        return prefs

    # ---------------------------------------------------------------------
    # Documents
    # ---------------------------------------------------------------------

    def _read_document(self, path: Path) -> dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigIOError(path, e.strerror or str(e)) from e
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigParseError(path, str(e)) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigParseError(path, f"expected a mapping, got {type(data).__name__}")
        return data

    def _write_document(self, path: Path, data: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(yaml.safe_dump(data, sort_keys=False, default_flow_style=False), encoding="utf-8")
        except OSError as e:
            raise ConfigIOError(path, e.strerror or str(e)) from e
        logger.debug(f"Wrote {path}")
