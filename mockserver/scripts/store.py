"""
Script Store - Resolves named mock scripts to files on disk.

Scripts live in the script directory as `<name><suffix>` files, by default
`tests/mocks/<name>.mock` relative to the working directory, so a test
suite keeps its canned conversations next to its tests:

    tests/mocks/
    ├── trivial_pop3.mock
    └── mixed_formats.mock

Usage Example:
-------------
    store = ScriptStore()

    text = store.read("trivial_pop3")        # raw script text
    entries = store.load("trivial_pop3")     # parsed messages / errors

    store.save("greeting", "S:HELLO\\n")     # rejected if it fails to parse

Configuration:
-------------
- script_dir: Directory holding the scripts (from settings)
- script_suffix: File suffix appended to names (from settings)
"""
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog

from mockserver.config import settings
from mockserver.engine import script_parser
from mockserver.engine.script_parser import ParsedEntry, ScriptError
from mockserver.exceptions import ScriptNotFoundError, ScriptParseError
from mockserver.models import ParseErrorKind

logger = structlog.get_logger()


@dataclass(frozen=True)
class NamedScript:
    """Reference to a script in the script directory, by name."""
    name: str


class ScriptStore:
    """
    Directory of named mock scripts.

    Names are plain file stems; anything that would escape the script
    directory is treated as missing.
    """

    def __init__(self, script_dir: Optional[Path] = None, suffix: Optional[str] = None):
        self.script_dir = Path(script_dir or settings.script_dir)
        self.suffix = suffix or settings.script_suffix

    def _path_for(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ScriptNotFoundError(name)
        return (self.script_dir / f"{name}{self.suffix}").expanduser().resolve()

    def pathname(self, name: str) -> Path:
        """
        Full pathname of a named script.

        Raises:
            ScriptNotFoundError: No regular file exists for the name
        """
        path = self._path_for(name)
        if not path.is_file():
            raise ScriptNotFoundError(name)
        return path

    def exists(self, name: str) -> bool:
        try:
            self.pathname(name)
        except ScriptNotFoundError:
            return False
        return True

    def read(self, name: str) -> str:
        """
        Raw text of a named script.

        Raises:
            ScriptNotFoundError: No such script
            ScriptParseError: The file is not valid UTF-8
        """
        data = self.pathname(name).read_bytes()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            line = data.count(b"\n", 0, e.start) + 1
            problem = ScriptError(ParseErrorKind.BAD_LEADER, line)
            raise ScriptParseError(problem.kind.value, line, [problem])

    def load(self, name: str) -> List[ParsedEntry]:
        """Parsed entries of a named script; undecodable lines become errors."""
        return script_parser.parse(self.pathname(name).read_bytes())

    def list_scripts(self) -> List[str]:
        """Names of all scripts in the script directory."""
        if not self.script_dir.is_dir():
            return []
        return sorted(
            path.name[: -len(self.suffix)]
            for path in self.script_dir.iterdir()
            if path.is_file() and path.name.endswith(self.suffix)
        )

    def save(self, name: str, text: str) -> Path:
        """
        Validate and store a script under name.

        Raises:
            ScriptParseError: The text has malformed lines; nothing is written
            ScriptNotFoundError: The name is not a valid script name
        """
        problems = script_parser.errors(script_parser.parse(text))
        if problems:
            first = problems[0]
            raise ScriptParseError(first.kind.value, first.line, problems)

        path = self._path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(text)

        logger.info("script_saved", name=name, path=str(path), size=len(text))
        return path

    def delete(self, name: str) -> None:
        """Remove a named script."""
        path = self.pathname(name)
        path.unlink()
        logger.info("script_deleted", name=name)


script_store = ScriptStore()
