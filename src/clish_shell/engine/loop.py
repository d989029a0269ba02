from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

from ..errors import SourceReadError
from .cancellation import CancellationToken
from .ports import CommandDispatcher, DispatchResult, LineInput
from .state_machine import LoopDecision, LoopEvent, SessionState

if TYPE_CHECKING:
    from ..interactive.session import Session

logger = structlog.get_logger(__name__)


class LoopResult(str, Enum):
    """How a run of the execution loop ended."""

    COMPLETED = "completed"
    STOPPED_ON_ERROR = "stopped_on_error"
    CANCELLED = "cancelled"

    @property
    def ran_to_completion(self) -> bool:
        # A loop that stopped on a script error still finished on its own.
        return self is not LoopResult.CANCELLED


class ExecutionLoop:
    """
    The read-evaluate driver of a shell session.

    Each iteration asks the state machine whether to read or to unwind, reads
    one line from the current input source, and hands it to the dispatcher.
    End of a source (or a script error inside a file) unwinds to the source
    below it; unwinding the primordial source ends the loop.

    A source that cannot be read counts as a script error on that source. On
    a terminal it ends that terminal's input instead, since reading it again
    would only fail again.

    The loop does not know whether it runs inline or on a worker thread. The
    only difference is the optional cancellation token, checked at the top of
    every iteration before the blocking read.
    """

    def __init__(self, line_input: LineInput, dispatcher: CommandDispatcher):
        self.line_input = line_input
        self.dispatcher = dispatcher

    def run(
        self, session: "Session", token: Optional[CancellationToken] = None
    ) -> LoopResult:
        machine = session.state_machine
        stack = session.input_stack

        if machine.is_closing:
            logger.debug("loop.skipped", reason="session closing")
            session.last_result = LoopResult.COMPLETED
            return session.last_result

        if machine.state is SessionState.SCRIPT_ERROR:
            # A new run starts clean; errors from a previous run do not carry over.
            machine.state = SessionState.READY

        stack.push(session.istream, primordial=True)
        stopped_on_error = False
        lines_read = 0

        try:
            while True:
                if token is not None:
                    token.checkpoint()

                source = stack.current()
                interactive = self.line_input.is_interactive(source)
                decision = machine.begin_iteration(interactive)

                if decision is LoopDecision.STOP:
                    logger.debug("loop.closing", source=source.name)
                    break

                if decision is LoopDecision.READ:
                    try:
                        line = self.line_input.read_line(source)
                    except SourceReadError:
                        logger.debug("loop.read_failed", source=source.name)
                        decision = (
                            machine.observe(LoopEvent.LINE_READ_FAILED)
                            if interactive
                            else machine.observe(LoopEvent.SCRIPT_LINE_FAILED)
                        )
                    else:
                        if line is None:
                            decision = machine.observe(LoopEvent.LINE_READ_FAILED)
                        else:
                            lines_read += 1
                            machine.observe(LoopEvent.LINE_READ_SUCCEEDED)
                            decision = self._dispatch(
                                line, source.name, interactive, machine
                            )
                            if decision is LoopDecision.STOP:
                                stopped_on_error = True
                                break

                if decision is LoopDecision.UNWIND:
                    in_error = machine.state is SessionState.SCRIPT_ERROR
                    logger.debug("loop.unwind", source=source.name, in_error=in_error)
                    remaining = stack.pop()
                    decision = machine.observe(
                        LoopEvent.UNWIND_COMPLETED, remaining=remaining
                    )
                    if decision is LoopDecision.STOP:
                        stopped_on_error = in_error
                        break
        finally:
            stack.drain()

        result = (
            LoopResult.STOPPED_ON_ERROR if stopped_on_error else LoopResult.COMPLETED
        )
        logger.debug("loop.finished", result=result.value, lines_read=lines_read)
        session.last_result = result
        return result

    def _dispatch(self, line, source_name, interactive, machine) -> LoopDecision:
        result = self.dispatcher.execute(line)
        if result is DispatchResult.OK:
            return LoopDecision.CONTINUE
        if result is DispatchResult.SCRIPT_ERROR:
            logger.debug("loop.script_error", source=source_name, line=line)
            return machine.observe(LoopEvent.SCRIPT_LINE_FAILED, interactive=interactive)
        logger.warning("loop.fatal", source=source_name, line=line)
        machine.close()
        return LoopDecision.STOP
