"""
Script Parser - Converts mock script text into directional messages

Scripts are line based. Every message starts with a leader giving the
direction of the data ('S' is sent by the server, 'C' is expected from
the client) and the format of the data that follows:

    S:+OK POP3 server ready        text, CRLF appended
    C1b:alice                      text, ESC (0x1B) appended instead
    C>0548656C6C6F                 hexadecimal, nothing appended
    S>                             base64 block, continues until a line
    BUhlbGxv.                      ending in '.'

Blank lines and lines whose first non-blank character is '#' are ignored
but still counted, so reported line numbers match the file.

Malformed lines do not stop the parse. Each one is reported as a
ScriptError entry at its position and parsing resumes after the lines the
failed attempt consumed, so one pass shows every defect in a script.
"""
import base64
import binascii
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

import structlog

from mockserver.models import Direction, ParseErrorKind

logger = structlog.get_logger()

_LEADER_RE = re.compile(r"([SC])(.*?)([:>])(.*)")
_HEX_RE = re.compile(r"(?:[0-9A-Fa-f]{2})*")
_LINE_BREAK_RE = re.compile(r"\r?\n")
_BYTES_LINE_BREAK_RE = re.compile(rb"\r?\n")

DEFAULT_SEPARATOR = "0D0A"

_DIRECTIONS = {"S": Direction.SERVER, "C": Direction.CLIENT}


@dataclass(frozen=True)
class ScriptMessage:
    """One step of the scripted conversation."""
    direction: Direction
    payload: bytes


@dataclass(frozen=True)
class ScriptError:
    """A malformed line, numbered from 1."""
    kind: ParseErrorKind
    line: int


ParsedEntry = Union[ScriptMessage, ScriptError]
ScriptSource = Union[str, bytes, Iterable[str]]


class _Rejected(Exception):
    """Internal signal for a failed parse attempt."""

    def __init__(self, kind: ParseErrorKind, consumed: int):
        super().__init__(kind.value)
        self.kind = kind
        self.consumed = consumed


class ScriptParser:
    """
    Parse mock scripts into ScriptMessage / ScriptError entries.

    The parser holds no state between calls and may be shared freely.
    """

    def parse(self, source: ScriptSource) -> List[ParsedEntry]:
        """
        Parse a script.

        Args:
            source: Script text (split on LF or CRLF), or an iterable of
                lines with or without their end-of-line markers

        Returns:
            Messages and errors in source line order
        """
        lines = self.split_lines(source)
        entries: List[ParsedEntry] = []
        index = 0

        while index < len(lines):
            line = lines[index]
            if line is not None and (not line.strip() or line.lstrip().startswith("#")):
                index += 1
                continue

            try:
                if line is None:
                    raise _Rejected(ParseErrorKind.BAD_LEADER, 1)
                message, consumed = self._parse_message(line.lstrip(), lines, index)
                entries.append(message)
            except _Rejected as rejected:
                entries.append(ScriptError(rejected.kind, index + 1))
                consumed = rejected.consumed
                logger.debug(
                    "script_line_rejected",
                    line=index + 1,
                    kind=rejected.kind.value,
                )
            index += consumed

        return entries

    @staticmethod
    def split_lines(source: ScriptSource) -> List[Optional[str]]:
        """
        Normalise a script source into lines without end-of-line markers.

        Bytes are split before decoding; a line that is not valid UTF-8
        comes back as None so it can be reported at its own line number.
        """
        if isinstance(source, bytes):
            return [_decode_line(raw) for raw in _BYTES_LINE_BREAK_RE.split(source)]
        if isinstance(source, str):
            return _LINE_BREAK_RE.split(source)
        return [line.rstrip("\r\n") for line in source]

    def _parse_message(self, line: str, lines: List[str], index: int):
        match = _LEADER_RE.fullmatch(line)
        if not match:
            raise _Rejected(ParseErrorKind.BAD_LEADER, 1)

        letter, separator, marker, data = match.groups()
        direction = _DIRECTIONS[letter]

        if marker == ":":
            terminator = self._decode_hex(separator or DEFAULT_SEPARATOR)
            return ScriptMessage(direction, data.encode("utf-8") + terminator), 1

        # Binary data never takes a separator
        if separator:
            raise _Rejected(ParseErrorKind.BAD_LEADER, 1)

        if data.strip():
            return ScriptMessage(direction, self._decode_hex(data.strip())), 1

        return self._parse_base64_block(direction, lines, index)

    def _parse_base64_block(self, direction: Direction, lines: List[str], index: int):
        chunks: List[str] = []
        undecodable = False

        for offset, raw in enumerate(lines[index + 1:], start=1):
            if raw is None:
                undecodable = True
                continue
            chunk = raw.strip()
            if not chunk.endswith("."):
                chunks.append(chunk)
                continue

            chunks.append(chunk[:-1])
            consumed = offset + 1
            if undecodable:
                raise _Rejected(ParseErrorKind.BAD_BASE64, consumed)
            try:
                payload = base64.b64decode("".join(chunks), validate=True)
            except (binascii.Error, ValueError):
                raise _Rejected(ParseErrorKind.BAD_BASE64, consumed)
            return ScriptMessage(direction, payload), consumed

        # Ran off the end of the script without a terminating '.'
        raise _Rejected(ParseErrorKind.BAD_BASE64, len(lines) - index)

    @staticmethod
    def _decode_hex(text: str) -> bytes:
        if not _HEX_RE.fullmatch(text):
            raise _Rejected(ParseErrorKind.BAD_HEXADECIMAL, 1)
        return bytes.fromhex(text)


def _decode_line(raw: bytes) -> Optional[str]:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


_parser = ScriptParser()


def parse(source: ScriptSource) -> List[ParsedEntry]:
    """Parse a script with the shared parser."""
    return _parser.parse(source)


def messages(entries: Iterable[ParsedEntry]) -> List[ScriptMessage]:
    """Successfully parsed messages, in order."""
    return [entry for entry in entries if isinstance(entry, ScriptMessage)]


def errors(entries: Iterable[ParsedEntry]) -> List[ScriptError]:
    """Errors found while parsing, in line order."""
    return [entry for entry in entries if isinstance(entry, ScriptError)]
