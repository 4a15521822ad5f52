"""Errors raised while reading the wiki rarity table.

``EnvelopeError`` aborts an ingestion run. Row errors are collected by the
parser and reported as diagnostics; each one remembers where in the table it
happened so an admin can find the offending wiki row.
"""

from __future__ import annotations

from typing import Optional


class ParseError(Exception):
    def __init__(
        self,
        message: str,
        *,
        row: Optional[int] = None,
        item_id: Optional[str] = None,
        item_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.row = row
        self.item_id = item_id
        self.item_name = item_name

    def at_row(self, row: int, item_id: Optional[str]) -> "ParseError":
        """Fill in the table position unless a more specific one is already set."""
        if self.row is None:
            self.row = row
        if self.item_id is None:
            self.item_id = item_id
        return self

    def describe(self) -> str:
        where = [
            f"{label}={value}"
            for label, value in (
                ("item_id", self.item_id),
                ("item_name", self.item_name),
                ("row", self.row),
            )
            if value is not None
        ]
        return f"{self} ({', '.join(where)})" if where else str(self)


class EnvelopeError(ParseError):
    """The API response carries no rendered table HTML."""


class RowShapeError(ParseError):
    """A table row has fewer than the three expected cells."""


class RowValueError(ParseError):
    """Item id, item name or completion rate could not be read from a row."""
