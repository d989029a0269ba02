"""
Interfaces the engine uses to talk to its collaborators.

The loop never reads a terminal or parses a command itself: it asks a
`LineInput` for the next line of the current source and hands that line to a
`CommandDispatcher`.
"""

from enum import Enum
from typing import Optional, Protocol

from .input_stack import InputSource


class DispatchResult(str, Enum):
    """The outcome of executing one command line."""

    OK = "ok"
    SCRIPT_ERROR = "script_error"
    FATAL = "fatal"


class LineInput(Protocol):
    def read_line(self, source: InputSource) -> Optional[str]:
        """
        Returns the next line of `source`, or None at end of input.

        Raises:
            SourceReadError: The source could not be read or decoded.
        """
        ...

    def is_interactive(self, source: InputSource) -> bool: ...


class CommandDispatcher(Protocol):
    def execute(self, line: str) -> DispatchResult: ...
