"""Error kinds raised by the permanence engine.

All per-item errors derive from KeepsakeError so callers can catch the whole
family; none of them should take down the host process.
"""


class KeepsakeError(Exception):
    """Base class for every engine error."""

    def __init__(self, message: str, item_id: str = None):
        super().__init__(message)
        self.item_id = item_id


class ConfigurationError(KeepsakeError):
    """Weight table or thresholds are unusable. Fatal at engine construction."""


class InvalidEvent(KeepsakeError):
    """Engagement event rejected: terminal item or malformed payload."""


class ItemTerminal(KeepsakeError):
    """Item is Expired or Archived and accepts no further input."""

    def __init__(self, item_id: str, state):
        super().__init__(f"Item {item_id!r} is terminal ({state.value})", item_id=item_id)
        self.state = state


class InvalidTransition(KeepsakeError):
    """Requested state change is not allowed from application code."""


class DuplicateArchive(KeepsakeError):
    """Item id is already present in the milestone archive."""


class DuplicateItem(KeepsakeError):
    """An item with this id has already been created."""


class ItemNotFound(KeepsakeError):
    """No item with this id is tracked."""


class UnknownKind(KeepsakeError, ValueError):
    """External label could not be translated to a known enum member."""


class InvalidTimestamp(KeepsakeError, ValueError):
    """A `now`, `at` or `created_at` value is not a finite number of seconds."""
