"""
Exception taxonomy for tag operations.

Per-sector and per-block failures during dump, key audit and clone are
reported in the result rows and never raised. These exceptions are reserved
for outcomes that end a whole command.
"""


class TagToolError(Exception):
    """Base class for every error surfaced to a command."""


class NotPresentError(TagToolError):
    """Poll or reselect timed out: the tag is absent or was moved."""


class AuthFailedError(TagToolError):
    """No dictionary key authenticated a sector the operation depends on."""


class ReadFailedError(TagToolError):
    """Authentication succeeded but a block or page read failed."""


class WriteFailedError(TagToolError):
    """A block or page write was rejected by the tag."""


class OversizeInputError(TagToolError):
    """Content does not fit the bounded working buffer."""


class PreconditionError(TagToolError):
    """The command cannot run in the current session state."""


class UnsupportedTagError(TagToolError):
    """The tag answered with identity fields the tag model cannot hold."""
