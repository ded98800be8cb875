"""Safe error message formatting utilities.

Ensures exceptions always have useful display messages, even when their
str() representation is empty (e.g., TimeoutError, CancelledError, or a
bare exception raised by a module factory).
"""

from __future__ import annotations

import asyncio

from rich.markup import escape as _escape_markup

from ..errors import ModuleNotFoundError

# Friendly messages for exception types known to have empty str()
FRIENDLY_MESSAGES: dict[type, str] = {
    TimeoutError: "Fetch timed out.",
    asyncio.CancelledError: "Operation was cancelled.",
    KeyboardInterrupt: "Operation interrupted by user.",
}


def format_error_message(e: BaseException, *, include_type: bool = True) -> str:
    """Format an exception into a useful display message.

    Args:
        e: The exception to format
        include_type: Whether to include the exception type name

    Returns:
        A non-empty, user-friendly error message

    Examples:
        >>> format_error_message(ModuleNotFoundError("./missing", "/app/main.js"))
        "Cannot find module './missing' (required from '/app/main.js')"

        >>> format_error_message(ValueError("invalid input"))
        'ValueError: invalid input'
    """
    error_str = str(e)
    error_type = type(e).__name__

    # Not-found messages are self-describing
    if isinstance(e, ModuleNotFoundError):
        return error_str

    if error_str:
        if include_type and error_type not in error_str:
            return f"{error_type}: {error_str}"
        return error_str

    for exc_type, friendly_msg in FRIENDLY_MESSAGES.items():
        if isinstance(e, exc_type):
            return f"{error_type}: {friendly_msg}"

    return f"{error_type}: (no additional details)"


def escape_markup(value: object) -> str:
    """Escape a value for safe interpolation into Rich markup strings."""
    return _escape_markup(str(value))
