"""Exception types raised by the module tree.

- InstallerError: base class for everything raised by moduletree itself
- ModuleNotFoundError: an identifier did not resolve to a loadable unit
- InvalidFragmentError: install() was given a value it cannot represent
- FetchError: the fetch hook returned something other than a fragment

Errors raised by module factories are never wrapped; they propagate to
whoever triggered the evaluation.
"""

from __future__ import annotations


class InstallerError(Exception):
    """Base class for moduletree errors."""


class ModuleNotFoundError(InstallerError, LookupError):  # noqa: A001
    """An identifier could not be resolved from the requesting module.

    Attributes:
        identifier: The identifier as it was requested
        parent_id: Identity of the requesting module (None for anonymous modules)
    """

    def __init__(self, identifier: str, parent_id: str | None = None):
        self.identifier = identifier
        self.parent_id = parent_id
        message = f"Cannot find module '{identifier}'"
        if parent_id:
            message += f" (required from '{parent_id}')"
        super().__init__(message)


class InvalidFragmentError(InstallerError, TypeError):
    """A tree fragment contained a value that is not a directory, unit, or alias."""


class FetchError(InstallerError):
    """The fetch hook produced a result that could not be installed."""
