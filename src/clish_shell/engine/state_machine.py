from enum import Enum, auto

import structlog

logger = structlog.get_logger(__name__)


class SessionState(Enum):
    """The coarse state of a shell session, consulted once per loop iteration."""

    READY = auto()  # Normal operation
    SCRIPT_ERROR = auto()  # A nested script failed and is unwinding
    CLOSING = auto()  # Shutting down, no further input is read


class LoopEvent(Enum):
    LINE_READ_FAILED = auto()
    LINE_READ_SUCCEEDED = auto()
    SCRIPT_LINE_FAILED = auto()
    UNWIND_COMPLETED = auto()


class LoopDecision(Enum):
    """What the execution loop should do next."""

    READ = auto()
    DISPATCH = auto()
    UNWIND = auto()
    CONTINUE = auto()
    STOP = auto()


class SessionStateMachine:
    """
    Holds the session state and the policy for moving between states.

    The policy is what separates an interactive session from a scripted one:
    a script error on a terminal is forgotten on the next iteration, while a
    script error inside a file unwinds that file (and every non-interactive
    parent) without reading another line from it.

    There is no locking. Only the thread currently running the loop touches
    the machine.
    """

    def __init__(self, state: SessionState = SessionState.READY):
        self.state = state

    @property
    def is_closing(self) -> bool:
        return self.state is SessionState.CLOSING

    def close(self) -> None:
        if self.state is not SessionState.CLOSING:
            logger.debug("state.transition", old=self.state.name, new="CLOSING")
        self.state = SessionState.CLOSING

    def _transition(self, new_state: SessionState) -> None:
        # CLOSING is terminal; nothing moves the session out of it.
        if self.state is SessionState.CLOSING or self.state is new_state:
            return
        logger.debug("state.transition", old=self.state.name, new=new_state.name)
        self.state = new_state

    def begin_iteration(self, interactive: bool) -> LoopDecision:
        """Decides whether the next iteration reads a line, unwinds, or stops."""
        if self.state is SessionState.CLOSING:
            return LoopDecision.STOP
        if self.state is SessionState.SCRIPT_ERROR:
            if interactive:
                # An interactive session never exits on a script error.
                self._transition(SessionState.READY)
                return LoopDecision.READ
            return LoopDecision.UNWIND
        return LoopDecision.READ

    def observe(
        self, event: LoopEvent, *, interactive: bool = False, remaining: bool = True
    ) -> LoopDecision:
        """
        Feeds one loop event into the machine and returns the loop's next step.

        Args:
            event: What just happened in the loop.
            interactive: Whether the current source is a real terminal.
                Only consulted for `SCRIPT_LINE_FAILED`.
            remaining: Whether an unwind left a source to continue from.
                Only consulted for `UNWIND_COMPLETED`.
        """
        if self.state is SessionState.CLOSING and event is not LoopEvent.UNWIND_COMPLETED:
            return LoopDecision.STOP

        if event is LoopEvent.LINE_READ_SUCCEEDED:
            return LoopDecision.DISPATCH
        if event is LoopEvent.LINE_READ_FAILED:
            return LoopDecision.UNWIND
        if event is LoopEvent.SCRIPT_LINE_FAILED:
            self._transition(SessionState.SCRIPT_ERROR)
            return LoopDecision.CONTINUE if interactive else LoopDecision.UNWIND
        if event is LoopEvent.UNWIND_COMPLETED:
            if not remaining:
                return LoopDecision.STOP
            return LoopDecision.STOP if self.is_closing else LoopDecision.CONTINUE
        raise ValueError(f"Unknown loop event: {event!r}")
