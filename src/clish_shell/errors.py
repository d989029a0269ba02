class ShellError(Exception):
    """Base class for every error raised by the clish shell."""


class SpawnError(ShellError):
    """Raised when a worker thread for a session cannot be started."""


class LoopCancelled(ShellError):
    """Raised at a loop checkpoint once cancellation has been requested."""


class DefinitionLoadError(ShellError):
    """Raised when a command definition file cannot be read or validated."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load definitions from '{path}': {reason}")


class CommandError(ShellError):
    """Raised when a command line cannot be resolved against the registry."""


class SourceReadError(ShellError):
    """Raised when a line cannot be read or decoded from an input source."""
