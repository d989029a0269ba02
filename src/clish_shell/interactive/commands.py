from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field, field_validator, model_validator

from ..errors import CommandError

logger = structlog.get_logger(__name__)

BUILTIN_ACTIONS = ("close", "source", "nop")


class ParamDefinition(BaseModel):
    """A positional parameter of a command."""

    name: str = Field(..., description="Name the argument is bound to in the action template.")
    help: str = ""
    optional: bool = False


class CommandDefinition(BaseModel):
    """
    A single command as declared in a definition file.

    A command either runs a shell `action` (a Jinja2 template rendered with the
    bound parameters) or delegates to one of the shell's builtins.
    """

    name: str = Field(..., description="One or more words, e.g. 'show version'.")
    help: str = ""
    params: List[ParamDefinition] = Field(default_factory=list)
    action: Optional[str] = None
    builtin: Optional[str] = None
    source_path: Optional[str] = Field(
        None, description="The definition file this command was loaded from."
    )

    @field_validator("name")
    @classmethod
    def _normalise_name(cls, value: str) -> str:
        words = value.split()
        if not words:
            raise ValueError("command name must not be empty")
        return " ".join(words)

    @model_validator(mode="after")
    def _check_action(self) -> "CommandDefinition":
        if (self.action is None) == (self.builtin is None):
            raise ValueError(
                f"command '{self.name}' needs exactly one of 'action' or 'builtin'"
            )
        if self.builtin is not None and self.builtin not in BUILTIN_ACTIONS:
            raise ValueError(
                f"command '{self.name}' uses unknown builtin '{self.builtin}'"
            )
        return self

    @property
    def words(self) -> Tuple[str, ...]:
        return tuple(self.name.split(" "))

    def bind(self, args: Sequence[str]) -> Dict[str, str]:
        """Binds positional arguments to the declared parameters, in order."""
        if len(args) > len(self.params):
            raise CommandError(
                f"'{self.name}' takes at most {len(self.params)} argument(s), got {len(args)}."
            )
        bound = {}
        for index, param in enumerate(self.params):
            if index < len(args):
                bound[param.name] = args[index]
            elif not param.optional:
                raise CommandError(f"'{self.name}' is missing argument '{param.name}'.")
        return bound


class DefinitionFile(BaseModel):
    """The root model of a definition file."""

    commands: List[CommandDefinition] = Field(default_factory=list)


class CommandRegistry:
    """The commands known to a shell, keyed by their (multi-word) name."""

    def __init__(self):
        self._commands: Dict[Tuple[str, ...], CommandDefinition] = {}

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name: str) -> bool:
        return tuple(name.split()) in self._commands

    def __iter__(self) -> Iterator[CommandDefinition]:
        return iter(sorted(self._commands.values(), key=lambda c: c.name))

    def register(self, definition: CommandDefinition) -> None:
        if definition.words in self._commands:
            logger.debug(
                "registry.command.replaced",
                command=definition.name,
                source=definition.source_path,
            )
        self._commands[definition.words] = definition

    def resolve(self, words: Sequence[str]) -> Tuple[CommandDefinition, List[str]]:
        """
        Finds the longest registered command name that prefixes `words`.

        Returns the definition and the words left over as its arguments.
        """
        for length in range(len(words), 0, -1):
            definition = self._commands.get(tuple(words[:length]))
            if definition is not None:
                return definition, list(words[length:])
        raise CommandError(f"Unknown command: '{' '.join(words)}'.")
