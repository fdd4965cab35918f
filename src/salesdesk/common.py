"""Terminal output helpers shared by the API launcher and the chat client."""

import sys
from enum import Enum
from typing import Any


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"


_RESET = "\033[0m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print a whole line in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}{_RESET}", *args, **kwargs)


def colored_write(chunk: str, color: AnsiColors) -> None:
    """Write a streamed chunk in color, without a newline, and flush so it shows immediately."""
    sys.stdout.write(f"{color.value}{chunk}{_RESET}")
    sys.stdout.flush()
