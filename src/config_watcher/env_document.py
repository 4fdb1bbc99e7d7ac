"""Line-tagged parse of ``.env``-style files.

A document is an ordered tuple of lines. ``DataLine`` holds one
``[export ]KEY=VALUE`` assignment; ``OpaqueLine`` is anything else (comments,
blanks, unparseable text) and is written back verbatim. Updating a key only
rewrites the value part of its data lines, so export markers, key spelling,
whitespace and every unrelated line survive byte-for-byte.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

EXPORT_RE = re.compile(r"export\s+")


@dataclass(frozen=True)
class OpaqueLine:
    text: str
    newline: str = "\n"

    def render(self) -> str:
        return f"{self.text}{self.newline}"


@dataclass(frozen=True)
class DataLine:
    head: str  # raw text up to and including the first "="
    key: str
    value: str
    newline: str = "\n"

    def render(self) -> str:
        return f"{self.head}{self.value}{self.newline}"

    def with_value(self, value: str) -> "DataLine":
        return replace(self, value=value)


Line = Union[DataLine, OpaqueLine]


@dataclass(frozen=True)
class KeyValueDocument:
    lines: Tuple[Line, ...] = ()

    def data_lines(self) -> Iterator[DataLine]:
        for line in self.lines:
            if isinstance(line, DataLine):
                yield line

    def values(self) -> Dict[str, str]:
        """Key -> value; a key assigned twice resolves to its last line."""
        return {line.key: line.value for line in self.data_lines()}

    def get(self, key: str) -> Optional[str]:
        return self.values().get(key)


def _split_lines(text: str) -> Iterator[Tuple[str, str]]:
    parts = text.split("\n")
    tail = parts.pop()
    for part in parts:
        if part.endswith("\r"):
            yield part[:-1], "\r\n"
        else:
            yield part, "\n"
    if tail:
        yield tail, ""


def _parse_line(body: str, newline: str) -> Line:
    stripped = body.strip()
    if not stripped or stripped.startswith("#"):
        return OpaqueLine(body, newline)

    start = len(body) - len(body.lstrip())
    match = EXPORT_RE.match(body, start)
    if match:
        start = match.end()

    eq = body.find("=", start)
    if eq < 0:
        return OpaqueLine(body, newline)
    key = body[start:eq].strip()
    if not key:
        return OpaqueLine(body, newline)
    return DataLine(
        head=body[: eq + 1],
        key=key,
        value=body[eq + 1:],
        newline=newline,
    )


def parse(data: Union[bytes, str]) -> KeyValueDocument:
    """Parse UTF-8 ``data``. Raises ``UnicodeDecodeError`` on invalid bytes."""
    text = data.decode("utf-8") if isinstance(data, bytes) else data
    return KeyValueDocument(tuple(_parse_line(body, nl) for body, nl in _split_lines(text)))


def _check_assignment(key: str, value: str) -> None:
    if not key or key != key.strip() or "=" in key or "#" in key[:1]:
        raise ValueError(f"invalid env key: {key!r}")
    if any(ch in key or ch in value for ch in "\r\n"):
        raise ValueError(f"line break in assignment for {key!r}")


def apply_updates(document: KeyValueDocument, updates: Mapping[str, str]) -> KeyValueDocument:
    """Return a copy of ``document`` with ``updates`` applied.

    Every data line whose key matches has its value replaced in place. Keys
    with no existing line are appended as plain ``KEY=VALUE`` lines in the
    order given.
    """
    for key, value in updates.items():
        _check_assignment(key, value)

    lines: List[Line] = list(document.lines)
    pending = dict(updates)
    for idx, line in enumerate(lines):
        if isinstance(line, DataLine) and line.key in updates:
            lines[idx] = line.with_value(updates[line.key])
            pending.pop(line.key, None)

    if pending:
        if lines and not lines[-1].newline:
            lines[-1] = replace(lines[-1], newline="\n")
        for key, value in pending.items():
            lines.append(DataLine(head=f"{key}=", key=key, value=value))
    return KeyValueDocument(tuple(lines))


def serialize(document: KeyValueDocument) -> bytes:
    """Render ``document`` so it ends with exactly one newline.

    Trailing empty lines collapse and a missing final newline is added; a
    document with no content renders as a single newline.
    """
    lines: List[Line] = list(document.lines)
    while lines and isinstance(lines[-1], OpaqueLine) and lines[-1].text == "":
        lines.pop()
    if lines and not lines[-1].newline:
        lines[-1] = replace(lines[-1], newline="\n")
    if not lines:
        return b"\n"
    return "".join(line.render() for line in lines).encode("utf-8")
