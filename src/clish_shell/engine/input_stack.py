from dataclasses import dataclass, field
from typing import IO, List, Optional

import structlog

logger = structlog.get_logger(__name__)


def _stream_is_tty(stream: IO) -> bool:
    isatty = getattr(stream, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except ValueError:
        # Closed streams raise instead of answering.
        return False


@dataclass
class InputSource:
    """
    One entry of the input stack: a readable stream plus the flags the loop
    needs to decide how errors and end-of-input are handled for it.
    """

    stream: IO
    primordial: bool = False
    interactive: bool = False
    owns_stream: bool = False
    name: str = "<stream>"
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Releases the source's resources. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        if self.owns_stream:
            self.stream.close()
        logger.debug(
            "input_source.released",
            source=self.name,
            primordial=self.primordial,
            closed_stream=self.owns_stream,
        )


class InputStack:
    """
    The stack of nested input sources (the terminal, included script files).

    The stack exclusively owns every source it holds: popping releases the
    top source before the next one becomes current. Popping the primordial
    source is the signal that the whole session has run out of input.
    """

    def __init__(self):
        self._sources: List[InputSource] = []

    def __len__(self) -> int:
        return len(self._sources)

    def __bool__(self) -> bool:
        return bool(self._sources)

    def push(
        self,
        stream: IO,
        primordial: bool = False,
        interactive: Optional[bool] = None,
        owns_stream: bool = False,
        name: Optional[str] = None,
    ) -> InputSource:
        """Places a new source on top of the stack; it becomes the read target."""
        if interactive is None:
            interactive = _stream_is_tty(stream)
        source = InputSource(
            stream=stream,
            primordial=primordial,
            interactive=interactive,
            owns_stream=owns_stream,
            name=name or getattr(stream, "name", "<stream>"),
        )
        self._sources.append(source)
        logger.debug(
            "input_stack.push",
            source=source.name,
            primordial=primordial,
            interactive=interactive,
            depth=len(self._sources),
        )
        return source

    def pop(self) -> bool:
        """
        Releases the current source and reports whether there is still a
        source to continue reading from.

        A `False` return is terminal: either the stack was already empty or the
        primordial source has just been released.
        """
        if not self._sources:
            return False
        source = self._sources.pop()
        source.release()
        if source.primordial:
            return False
        return bool(self._sources)

    def current(self) -> Optional[InputSource]:
        return self._sources[-1] if self._sources else None

    def drain(self) -> int:
        """Pops every remaining source, most recent first. Returns how many were released."""
        count = 0
        while self._sources:
            self._sources.pop().release()
            count += 1
        if count:
            logger.debug("input_stack.drained", released=count)
        return count
