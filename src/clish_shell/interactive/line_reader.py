from typing import Optional

import structlog
from prompt_toolkit import PromptSession
from rich.console import Console
from rich.markup import escape

from ..engine.input_stack import InputSource
from ..errors import SourceReadError

console = Console(stderr=True)
logger = structlog.get_logger(__name__)


class StreamLineReader:
    """Reads lines straight from the current source's stream."""

    def read_line(self, source: InputSource) -> Optional[str]:
        try:
            line = source.stream.readline()
        except (UnicodeDecodeError, OSError) as e:
            console.print(f"[bold red]Error:[/bold red] cannot read '{escape(source.name)}': {e}")
            logger.warning("line_reader.read_failed", source=source.name, error=str(e))
            raise SourceReadError(f"Cannot read '{source.name}': {e}") from e
        if not line:
            return None
        return line.rstrip("\r\n")

    def is_interactive(self, source: InputSource) -> bool:
        return source.interactive


class PromptLineReader(StreamLineReader):
    """
    Reads from a prompt_toolkit prompt when the current source is a real
    terminal, and from the stream otherwise (included script files, pipes).

    Ctrl+D ends the terminal's input. Ctrl+C abandons the current line and
    yields an empty one, which the dispatcher treats as a no-op.
    """

    def __init__(self, prompt: str = "clish> ", prompt_session: Optional[PromptSession] = None):
        self.prompt = prompt
        self._prompt_session = prompt_session

    @property
    def prompt_session(self) -> PromptSession:
        # Created lazily so that purely scripted sessions never touch the terminal.
        if self._prompt_session is None:
            self._prompt_session = PromptSession()
        return self._prompt_session

    def read_line(self, source: InputSource) -> Optional[str]:
        if not source.interactive:
            return super().read_line(source)
        try:
            return self.prompt_session.prompt(self.prompt)
        except KeyboardInterrupt:
            console.print()
            return ""
        except EOFError:
            console.print()
            logger.debug("line_reader.eof", source=source.name)
            return None
