from pathlib import Path
from typing import IO, Optional, Union

import structlog

from ..engine.driver import ExecutionDriver, ThreadConfig
from ..engine.loop import ExecutionLoop
from ..engine.ports import LineInput
from ..management.definition_manager import (
    DefinitionLoader,
    DefinitionSourceDiscovery,
    DiscoveryConfig,
)
from .commands import CommandRegistry
from .executor import CommandExecutor, console
from .line_reader import PromptLineReader
from .session import Session

logger = structlog.get_logger(__name__)


class Shell:
    """Wires a session to its registry, dispatcher, line reader and driver."""

    def __init__(
        self,
        config: DiscoveryConfig,
        istream: Optional[IO] = None,
        line_reader: Optional[LineInput] = None,
    ):
        self.session = Session(istream)
        self.registry = CommandRegistry()
        self.loader = DefinitionLoader(self.registry)
        self.discovery = DefinitionSourceDiscovery(config, self.loader.load)
        self.executor = CommandExecutor(self.session, self.registry)
        self.line_reader = line_reader or PromptLineReader()
        self.driver = ExecutionDriver(ExecutionLoop(self.line_reader, self.executor))

    def load_definitions(self):
        return self.discovery.load_all()

    def run(self, use_thread: bool = False, thread_config: Optional[ThreadConfig] = None) -> bool:
        if use_thread:
            return self.driver.spawn_and_wait(self.session, thread_config)
        return self.driver.run_inline(self.session)

    def run_file(
        self,
        path: Union[str, Path],
        use_thread: bool = False,
        thread_config: Optional[ThreadConfig] = None,
    ) -> bool:
        return self.driver.run_from_file(self.session, path, use_thread, thread_config)


def start_repl(config: DiscoveryConfig, use_thread: bool = False) -> bool:
    """Starts an interactive session on stdin. Returns whether it ran to completion."""
    shell = Shell(config)
    shell.load_definitions()

    interactive = shell.session.istream.isatty()
    if interactive:
        console.print("Welcome to clish. Type 'exit' or press Ctrl+D to quit.")
    completed = shell.run(use_thread=use_thread)
    logger.debug("repl.finished", result=shell.session.last_result)
    if interactive:
        console.print("Goodbye!")
    return completed
