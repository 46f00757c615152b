"""CLI context management for Flint.

The Context is created once per invocation by the root command and stored on
``typer.Context.obj``; commands receive it through :func:`get_context`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING

import typer

from .config import Environment, GlobalPreferences, OutputFormat, apply_env_overrides
from .logging import get_logger
from .resolver import CommandResolver, get_resolver
from .session import require_valid_session
from .store import ConfigStore

if TYPE_CHECKING:
    from .client import BackendClient
    from .messaging import MessagingClient

logger = get_logger(__name__)


@dataclass
class Context:
    """State shared by all commands of one invocation."""

    store: ConfigStore
    preferences: GlobalPreferences
    effective: GlobalPreferences
    overridden: list[str] = field(default_factory=list)
    resolver: CommandResolver = field(default_factory=get_resolver)
    verbose: bool = False

    @classmethod
    def load(cls, config_dir: Path | None = None, verbose: bool = False) -> Context:
        """Load preferences once and apply FLINT_* overrides."""
        store = ConfigStore(config_dir)
        preferences = store.load_preferences()
        effective, overridden = apply_env_overrides(preferences)
        return cls(store=store, preferences=preferences, effective=effective, overridden=overridden, verbose=verbose)

    @property
    def output_format(self) -> OutputFormat:
        return self.effective.output_format

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    def save_preferences(self, preferences: GlobalPreferences) -> None:
        """Persist stored preferences and re-apply overrides on top."""
        self.store.save_preferences(preferences)
        self.preferences = preferences
        self.effective, self.overridden = apply_env_overrides(preferences)

    def select_environment(self, name: str) -> None:
        self.store.set_active_environment(name)
        self.preferences = replace(self.preferences, active_environment=name)
        self.effective, self.overridden = apply_env_overrides(self.preferences)

    # -------------------------------------------------------------------------
    # Environments
    # -------------------------------------------------------------------------

    def active_environment(self) -> Environment:
        """Load the active environment, honoring FLINT_ACTIVE_ENVIRONMENT.

        Raises:
            NoActiveEnvironmentError: If no environment is selected.
            EnvironmentNotFoundError: If the selected environment no longer exists.
        """
        return self.store.get_active_environment(self.effective)

    def is_active(self, name: str) -> bool:
        return bool(name) and self.preferences.active_environment == name

    def delete_environment(self, name: str) -> bool:
        """Delete an environment and clear the active pointer if it pointed there.

        Returns:
            True if the deleted environment was the active one.
        """
        self.store.delete_environment(name)
        if not self.is_active(name):
            return False
        logger.debug(f"Clearing active environment '{name}'")
        self.save_preferences(replace(self.preferences, active_environment=""))
        return True

    def authenticated_environment(self) -> Environment:
        """Load the active environment and require a usable session.

        Raises:
            NoActiveEnvironmentError: If no environment is selected.
            UnauthenticatedError: If the environment has no session.
            SessionExpiredError: If the session is expired or about to expire.
        """
        env = self.active_environment()
        require_valid_session(env.backend.session)
        return env

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------

    def backend_client(self, env: Environment, with_session: bool = True) -> BackendClient:
        """Create a document database client for an environment."""
        from .client import BackendClient

        if not with_session:
            return BackendClient(env.backend.url)
        return BackendClient.from_session(env.backend.url, env.backend.session)

    def messaging_client(self, env: Environment) -> MessagingClient:
        from .messaging import MessagingClient

        return MessagingClient(env.messaging, self.store.environment_dir(env.name))


def get_context(ctx: typer.Context) -> Context:
    """Get the Flint context of the current invocation, loading it on first use."""
    root = ctx.find_root()
    if not isinstance(root.obj, Context):
        root.obj = Context.load()
    return root.obj
