import shlex
import subprocess
from ast import literal_eval
from pathlib import Path
from typing import Dict, List

import structlog
from jinja2 import Environment, StrictUndefined, TemplateError
from lark import Lark, Transformer
from lark.exceptions import LarkError
from rich.console import Console

from ..engine.ports import DispatchResult
from ..errors import CommandError
from .commands import CommandDefinition, CommandRegistry, ParamDefinition
from .session import Session

console = Console(stderr=True)
logger = structlog.get_logger(__name__)

LINE_GRAMMAR = r"""
    line: _token*
    _token: WORD | STRING

    WORD: /[^\s"]+/
    STRING: ESCAPED_STRING

    %import common.ESCAPED_STRING
    %import common.WS
    %ignore WS
"""

# Always available, unless a definition file declares a command of the same name.
DEFAULT_COMMANDS = [
    CommandDefinition(name="exit", help="Close the shell.", builtin="close"),
    CommandDefinition(name="quit", help="Close the shell.", builtin="close"),
    CommandDefinition(
        name="source",
        help="Run the commands of a script file.",
        builtin="source",
        params=[ParamDefinition(name="file", help="Path of the script to run.")],
    ),
]


class LineTransformer(Transformer):
    """Turns the parse tree of a line into its list of words."""

    def line(self, tokens):
        return list(tokens)

    def WORD(self, token):
        return str(token)

    def STRING(self, token):
        return literal_eval(token)


class CommandExecutor:
    """
    Executes one command line against the registry.

    Lines that cannot be resolved, bound or rendered, and actions that exit
    non-zero, are script errors. Failing to launch the system shell at all is
    fatal.
    """

    def __init__(self, session: Session, registry: CommandRegistry):
        self.session = session
        self.registry = registry
        self.parser = Lark(LINE_GRAMMAR, start="line", parser="lalr")
        self.jinja_env = Environment(undefined=StrictUndefined, autoescape=False)
        self.jinja_env.filters["quote"] = shlex.quote

        for definition in DEFAULT_COMMANDS:
            if definition.name not in self.registry:
                self.registry.register(definition.model_copy())

    def parse(self, text: str) -> List[str]:
        try:
            tree = self.parser.parse(text)
            return LineTransformer().transform(tree)
        except (LarkError, SyntaxError, ValueError) as e:
            # Quoted strings that are not valid literals surface here as VisitError.
            raise CommandError(f"Could not parse line: {e}") from e

    def execute(self, line: str) -> DispatchResult:
        text = line.strip()
        if not text or text.startswith("#"):
            return DispatchResult.OK

        log = logger.bind(line=text)
        try:
            definition, args = self.registry.resolve(self.parse(text))
            params = definition.bind(args)
        except CommandError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            log.debug("executor.command.rejected", error=str(e))
            return DispatchResult.SCRIPT_ERROR

        log = log.bind(command=definition.name)
        if definition.builtin is not None:
            handler = getattr(self, f"_builtin_{definition.builtin}")
            return handler(definition, params)
        return self._run_action(definition, params, log)

    def _run_action(
        self, definition: CommandDefinition, params: Dict[str, str], log
    ) -> DispatchResult:
        try:
            script = self.jinja_env.from_string(definition.action).render(**params)
        except TemplateError as e:
            console.print(
                f"[bold red]Error:[/bold red] could not render '{definition.name}': {e}"
            )
            log.debug("executor.action.render_failed", error=str(e))
            return DispatchResult.SCRIPT_ERROR

        log.debug("executor.action.started", script=script)
        try:
            process = subprocess.run(script, shell=True)
        except OSError as e:
            log.error("executor.action.launch_failed", error=str(e))
            return DispatchResult.FATAL

        if process.returncode != 0:
            log.debug("executor.action.failed", returncode=process.returncode)
            return DispatchResult.SCRIPT_ERROR
        return DispatchResult.OK

    # --- Builtins ---

    def _builtin_close(self, definition, params) -> DispatchResult:
        self.session.close()
        return DispatchResult.OK

    def _builtin_nop(self, definition, params) -> DispatchResult:
        return DispatchResult.OK

    def _builtin_source(self, definition, params) -> DispatchResult:
        filename = next(iter(params.values()), None)
        if not filename:
            console.print(f"[bold red]Error:[/bold red] '{definition.name}' needs a file.")
            return DispatchResult.SCRIPT_ERROR

        path = Path(filename).expanduser()
        try:
            stream = open(path, "r", encoding="utf-8")
        except OSError as e:
            console.print(f"[bold red]Error:[/bold red] cannot open '{path}': {e.strerror}")
            logger.debug("executor.source.open_failed", path=str(path), error=str(e))
            return DispatchResult.SCRIPT_ERROR

        # The stack owns the stream from here and closes it when it unwinds.
        self.session.input_stack.push(stream, owns_stream=True, name=str(path))
        return DispatchResult.OK
