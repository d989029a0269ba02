import sys
from typing import IO, TYPE_CHECKING, Optional

from ..engine.input_stack import InputStack
from ..engine.state_machine import SessionState, SessionStateMachine

if TYPE_CHECKING:
    from ..engine.driver import WorkerHandle
    from ..engine.loop import LoopResult


class Session:
    """
    The long-lived state of one shell instance.

    A session is created once per shell and driven by exactly one thread at a
    time: either the caller (inline) or the single worker thread spawned for
    it. It owns the stack of input sources and the state machine, and
    remembers the outcome of the last loop that ran on it.
    """

    def __init__(self, istream: Optional[IO] = None):
        # The stream pushed as the primordial source when a loop starts.
        self.istream: IO = istream if istream is not None else sys.stdin

        self.state_machine = SessionStateMachine()
        self.input_stack = InputStack()

        # Set while a worker thread is driving the session.
        self.worker: Optional["WorkerHandle"] = None
        self.last_result: Optional["LoopResult"] = None

    @property
    def state(self) -> SessionState:
        return self.state_machine.state

    @state.setter
    def state(self, value: SessionState) -> None:
        self.state_machine.state = value

    def close(self) -> None:
        """Asks the running loop to stop reading and unwind."""
        self.state_machine.close()
