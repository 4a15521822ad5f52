"""Persistence errors surfaced by the repository layer."""

from __future__ import annotations


class PersistenceError(RuntimeError):
    """A batch write could not be committed; nothing from the batch was applied."""
