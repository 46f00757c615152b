"""Abbreviated command resolution.

Users may type any unique prefix of a command name (``flint env sel prod``).
The resolver maps such prefixes to canonical names per command category.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .config import DEFAULT_COLLECTIONS
from .errors import AmbiguousCommandError, CategoryNotFoundError, UnknownCommandError

DEFAULT_CATEGORIES: dict[str, list[str]] = {
    "root": ["environment", "collections", "auth", "nats", "config"],
    "environment": ["create", "list", "select", "show", "delete", "organization"],
    "collections": ["list", "get", "create", "update", "delete"],
    "auth": ["pb", "nats", "refresh", "status"],
    "nats": ["publish", "subscribe", "request"],
    "config": ["show", "set"],
    "platform_collections": list(DEFAULT_COLLECTIONS),
}


class CommandResolver:
    """Resolve user-typed prefixes to canonical command names."""

    def __init__(self, categories: Mapping[str, Iterable[str]] | None = None) -> None:
        source = DEFAULT_CATEGORIES if categories is None else categories
        self._categories: dict[str, list[str]] = {name: list(commands) for name, commands in source.items()}

    @property
    def categories(self) -> list[str]:
        return sorted(self._categories)

    def commands(self, category: str) -> list[str]:
        """Get the canonical names of a category, in registration order.

        Raises:
            CategoryNotFoundError: If the category is not registered.
        """
        try:
            return list(self._categories[category])
        except KeyError:
            raise CategoryNotFoundError(category) from None

    def resolve(self, category: str, typed: str) -> str:
        """Resolve a typed prefix to exactly one canonical command.

        Matching is case-insensitive and strictly by prefix. When several
        names match and one of them equals the input, that name is returned
        instead of an ambiguity error, so every command name resolves to
        itself even when it prefixes a longer one.

        Args:
            category: The command category to search.
            typed: The text the user typed.

        Returns:
            The canonical command name.

        Raises:
            CategoryNotFoundError: If the category is not registered.
            UnknownCommandError: If nothing matches (or the input is empty).
            AmbiguousCommandError: If several commands match.
        """
        available = self.commands(category)
        needle = typed.lower()
        if not needle:
            raise UnknownCommandError(typed, available)

        matches = [name for name in available if name.lower().startswith(needle)]
        if not matches:
            raise UnknownCommandError(typed, available)
        if len(matches) == 1:
            return matches[0]

        # An exact name wins over longer names it prefixes.
        for name in matches:
            if name.lower() == needle:
                return name
        raise AmbiguousCommandError(typed, sorted(matches))

    def min_prefix(self, category: str, full_name: str) -> str:
        """Compute the shortest prefix that resolves uniquely to full_name.

        Returns the full name when no shorter prefix is unique.

        Raises:
            CategoryNotFoundError: If the category is not registered.
            UnknownCommandError: If full_name is not in the category.
        """
        available = self.commands(category)
        lowered = [name.lower() for name in available]
        target = full_name.lower()
        if target not in lowered:
            raise UnknownCommandError(full_name, available)

        for length in range(1, len(target) + 1):
            prefix = target[:length]
            if sum(1 for name in lowered if name.startswith(prefix)) == 1:
                return available[lowered.index(target)][:length]
        return available[lowered.index(target)]

    def suggest(self, category: str, typed: str) -> list[str]:
        """List every command starting with typed, sorted.

        An empty input yields the whole category.

        Raises:
            CategoryNotFoundError: If the category is not registered.
        """
        needle = typed.lower()
        return sorted(name for name in self.commands(category) if name.lower().startswith(needle))

    def add_command(self, category: str, name: str) -> None:
        """Register a command, creating the category when needed."""
        commands = self._categories.setdefault(category, [])
        if name not in commands:
            commands.append(name)

    def is_known(self, category: str, name: str) -> bool:
        """Check that name is verbatim one of the category's commands."""
        return name in self._categories.get(category, ())

    def require_exact(self, category: str, name: str) -> str:
        """Return name if it is verbatim in the category, no abbreviation allowed.

        Raises:
            CategoryNotFoundError: If the category is not registered.
            UnknownCommandError: If name is not an exact member.
        """
        available = self.commands(category)
        if name not in available:
            raise UnknownCommandError(name, available)
        return name


_resolver: CommandResolver | None = None


def get_resolver() -> CommandResolver:
    """Get the resolver with the built-in command categories."""
    global _resolver
    if _resolver is None:
        _resolver = CommandResolver()
    return _resolver
