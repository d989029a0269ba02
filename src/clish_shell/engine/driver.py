import threading
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field

from ..errors import LoopCancelled, SpawnError
from ..interactive.session import Session
from .cancellation import CancellationToken
from .loop import ExecutionLoop, LoopResult

logger = structlog.get_logger(__name__)


class ThreadConfig(BaseModel):
    """Options for the worker thread a session is spawned on."""

    name: str = Field("clish-session", description="Name given to the worker thread.")
    daemon: bool = Field(
        True, description="Whether the worker may be abandoned at interpreter exit."
    )


class WorkerHandle:
    """A spawned session: its thread, its cancellation token and, once done, its result."""

    def __init__(
        self,
        session: Session,
        thread: Optional[threading.Thread],
        token: CancellationToken,
    ):
        self.session = session
        self.thread = thread
        self.token = token
        self.result: Optional[LoopResult] = None

    @property
    def is_alive(self) -> bool:
        return self.thread.is_alive()

    def cancel(self) -> None:
        """Requests deferred cancellation. Takes effect at the loop's next checkpoint."""
        self.token.cancel()


class ExecutionDriver:
    """
    Runs an `ExecutionLoop` on the caller's thread or on a worker thread.

    The worker path grants only deferred cancellation: the loop checks the
    handle's token at the top of each iteration. Resource release stays with
    the code that acquired the resource (`with` blocks, the loop's own
    `try/finally` around the input stack), so it happens identically whether
    the loop finishes, fails, or is cancelled.
    """

    def __init__(self, loop: ExecutionLoop):
        self.loop = loop

    def run_inline(self, session: Session) -> bool:
        """Runs the loop synchronously. Returns whether it ran to completion."""
        logger.debug("driver.run_inline")
        return self.loop.run(session).ran_to_completion

    def _worker(self, handle: WorkerHandle) -> None:
        log = logger.bind(thread=handle.thread.name)
        try:
            handle.result = self.loop.run(handle.session, handle.token)
        except LoopCancelled:
            handle.result = LoopResult.CANCELLED
            handle.session.last_result = LoopResult.CANCELLED
            log.info("driver.worker.cancelled")
        except Exception:
            # No result from an earlier run may stand in for this one.
            handle.session.last_result = None
            log.exception("driver.worker.failed")
        finally:
            self._worker_cleanup(handle)

    def _worker_cleanup(self, handle: WorkerHandle) -> None:
        # Runs on every worker exit path, cancellation included.
        if handle.session.worker is handle:
            handle.session.worker = None
        logger.debug(
            "driver.worker.exited",
            thread=handle.thread.name,
            result=handle.result.value if handle.result else None,
        )

    def spawn(
        self, session: Session, thread_config: Optional[ThreadConfig] = None
    ) -> WorkerHandle:
        """
        Starts a worker thread running the loop for `session`.

        Raises:
            SpawnError: The session is already driven by a live worker, or the
                thread could not be started.
        """
        config = thread_config or ThreadConfig()
        if session.worker is not None and session.worker.is_alive:
            raise SpawnError("Session is already running on a worker thread.")

        token = CancellationToken()
        handle = WorkerHandle(session, None, token)
        handle.thread = threading.Thread(
            target=self._worker, args=(handle,), name=config.name, daemon=config.daemon
        )
        session.worker = handle
        try:
            handle.thread.start()
        except RuntimeError as e:
            session.worker = None
            logger.error("driver.spawn.failed", error=str(e))
            raise SpawnError(f"Could not start worker thread: {e}") from e

        logger.debug("driver.spawned", thread=config.name)
        return handle

    def wait(self, handle: WorkerHandle) -> bool:
        """
        Blocks until the worker exits. Returns True only if the loop produced a
        result on its own; cancellation or an unexpected error yields False.
        """
        handle.thread.join()
        return handle.result is not None and handle.result.ran_to_completion

    def spawn_and_wait(
        self, session: Session, thread_config: Optional[ThreadConfig] = None
    ) -> bool:
        handle = self.spawn(session, thread_config)
        return self.wait(handle)

    def run_from_file(
        self,
        session: Session,
        path: Union[str, Path],
        use_thread: bool = False,
        thread_config: Optional[ThreadConfig] = None,
    ) -> bool:
        """
        Runs a session whose primordial input source is the file at `path`.

        A file that cannot be opened, or a worker that cannot be spawned, is
        reported as False. The file is closed on every exit path.
        """
        log = logger.bind(path=str(path), use_thread=use_thread)
        try:
            file = open(path, "r", encoding="utf-8")
        except OSError as e:
            log.error("driver.run_from_file.open_failed", error=str(e))
            return False

        previous_istream = session.istream
        with file:
            session.istream = file
            try:
                if use_thread:
                    return self.spawn_and_wait(session, thread_config)
                return self.run_inline(session)
            except SpawnError:
                return False
            finally:
                session.istream = previous_istream
