import os
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Tuple

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from ..errors import DefinitionLoadError
from ..interactive.commands import CommandRegistry, DefinitionFile

logger = structlog.get_logger(__name__)

# Used when CLISH_PATH is not set.
DEFAULT_SEARCH_PATH = "/etc/clish;~/.clish"
DEFINITION_EXTENSIONS = (".yaml", ".yml")


class DiscoveryConfig(BaseModel):
    """Where definition files are searched for. Built explicitly, never read from globals."""

    search_path: str = Field(
        DEFAULT_SEARCH_PATH,
        description="Semicolon-separated list of directories to search.",
    )
    home: Optional[str] = Field(
        None, description="Replacement for a leading '~' in a search path segment."
    )
    extensions: Tuple[str, ...] = DEFINITION_EXTENSIONS

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, search_path: Optional[str] = None
    ) -> "DiscoveryConfig":
        """
        Builds the configuration from an environment mapping.

        Args:
            environ: The environment to read `CLISH_PATH` and `HOME` from.
                Defaults to the process environment.
            search_path: An explicit search path that overrides `CLISH_PATH`.
        """
        env = os.environ if environ is None else environ
        return cls(
            search_path=search_path or env.get("CLISH_PATH") or DEFAULT_SEARCH_PATH,
            home=env.get("HOME"),
        )


def expand_home(segment: str, home: Optional[str]) -> str:
    """Replaces a leading '~' in a single search path segment with `home`."""
    if home is None or not segment.startswith("~"):
        return segment
    return home + segment[1:]


class DefinitionLoader:
    """Parses one YAML definition file and registers its commands."""

    def __init__(self, registry: CommandRegistry):
        self.registry = registry

    def load(self, path: Path) -> int:
        """Loads `path` into the registry and returns the number of commands registered."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            definition_file = DefinitionFile.model_validate(data)
        except (OSError, yaml.YAMLError) as e:
            raise DefinitionLoadError(path, str(e)) from e
        except ValidationError as e:
            raise DefinitionLoadError(path, f"invalid definitions: {e}") from e

        for command in definition_file.commands:
            command.source_path = str(path)
            self.registry.register(command)
        logger.debug(
            "definitions.loaded", path=str(path), commands=len(definition_file.commands)
        )
        return len(definition_file.commands)


class DefinitionSourceDiscovery:
    """
    Finds every definition file on the search path and hands each one to the
    loader. Directories that cannot be opened are skipped, as are files the
    loader rejects.
    """

    def __init__(self, config: DiscoveryConfig, load: Callable[[Path], object]):
        self.config = config
        self.load = load

    def get_search_paths(self) -> List[Path]:
        paths = []
        for segment in self.config.search_path.split(";"):
            if not segment:
                continue
            paths.append(Path(expand_home(segment, self.config.home)))
        return paths

    def find_sources(self) -> List[Path]:
        sources = []
        for directory in self.get_search_paths():
            try:
                entries = sorted(directory.iterdir())
            except OSError as e:
                logger.debug(
                    "definitions.directory.skipped", directory=str(directory), error=str(e)
                )
                continue
            for entry in entries:
                if entry.suffix in self.config.extensions and entry.is_file():
                    sources.append(entry)
        return sources

    def load_all(self) -> List[Path]:
        """Loads every discovered source. Returns the paths that loaded successfully."""
        loaded = []
        for path in self.find_sources():
            try:
                self.load(path)
            except DefinitionLoadError as e:
                logger.warning("definitions.file.skipped", path=str(path), reason=e.reason)
                continue
            loaded.append(path)
        logger.info("definitions.discovered", files=len(loaded))
        return loaded
