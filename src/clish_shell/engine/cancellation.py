import threading

from ..errors import LoopCancelled


class CancellationToken:
    """
    A deferred cancellation request shared between a worker and its owner.

    Setting the token never interrupts the worker. The loop honours it only
    when it reaches a `checkpoint()`, which it offers at the top of every
    iteration, so a cancelled worker never stops mid-read or mid-dispatch.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def checkpoint(self) -> None:
        if self._event.is_set():
            raise LoopCancelled("Cancellation requested at loop checkpoint.")
