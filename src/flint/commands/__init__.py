"""Command groups of the Flint CLI."""
