import io
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from clish_shell.engine.input_stack import InputSource
from clish_shell.engine.ports import DispatchResult
from clish_shell.interactive.line_reader import StreamLineReader
from clish_shell.interactive.session import Session


class MemoryStream(io.StringIO):
    """An in-memory stream with a name, optionally claiming to be a terminal."""

    def __init__(self, text: str = "", tty: bool = False, name: str = "<memory>"):
        super().__init__(text)
        self.tty = tty
        self.name = name

    def isatty(self):
        return self.tty


class RecordingReader(StreamLineReader):
    """Reads from the source's stream and remembers every read attempt."""

    def __init__(self):
        self.reads: List[str] = []
        self.lines: List[str] = []

    def read_line(self, source: InputSource) -> Optional[str]:
        self.reads.append(source.name)
        line = super().read_line(source)
        if line is not None:
            self.lines.append(line)
        return line


class ScriptedDispatcher:
    """
    Returns a scripted result per line (OK unless told otherwise) and records
    the session state observed at each call. A line can also be mapped to a
    callable, which is run and whose return value is used as the result.
    """

    def __init__(self, session: Session, results: Optional[Dict[str, object]] = None):
        self.session = session
        self.results = results or {}
        self.executed: List[str] = []
        self.states = []

    def execute(self, line: str) -> DispatchResult:
        self.executed.append(line)
        self.states.append(self.session.state)
        result = self.results.get(line, DispatchResult.OK)
        if callable(result):
            return result()
        return result


@pytest.fixture
def make_stream() -> Callable[..., io.StringIO]:
    def _make(text: str = "", tty: bool = False, name: str = "<memory>"):
        return MemoryStream(text, tty=tty, name=name)

    return _make


@pytest.fixture
def reader() -> RecordingReader:
    return RecordingReader()


@pytest.fixture
def make_dispatcher() -> Callable[..., ScriptedDispatcher]:
    def _make(session: Session, results: Optional[Dict[str, object]] = None):
        return ScriptedDispatcher(session, results)

    return _make


@pytest.fixture
def definitions_dir(tmp_path: Path) -> Path:
    """
    An isolated definition directory holding one definition file whose
    commands append to `out.txt` next to it.
    """
    directory = tmp_path / "clish"
    directory.mkdir()
    out = tmp_path / "out.txt"
    (directory / "basic.yaml").write_text(
        f"""
commands:
  - name: say
    help: Append a message to the output file.
    params:
      - name: message
    action: echo {{{{ message | quote }}}} >> {out}
  - name: show version
    action: echo version-1 >> {out}
  - name: fail
    action: exit 3
  - name: noop
    builtin: nop
"""
    )
    return directory
