"""Error taxonomy for shelf mutations and persistence."""

from __future__ import annotations


class ShelfError(Exception):
    """Base class for every error raised by the shelf core."""


class ValidationError(ShelfError):
    """A required field is empty or a payload is malformed."""


class InvalidReference(ShelfError):
    """An index is out of range or an id does not resolve."""


class DuplicateEntry(ShelfError):
    """The target collection already holds an entry with the same URL."""

    def __init__(self, url: str) -> None:
        """Initialise with the colliding URL."""
        super().__init__(f"An entry for {url} already exists")
        self.url = url


class PersistenceError(ShelfError):
    """Saving or loading the shelf failed. Never rolls back in-memory state."""
