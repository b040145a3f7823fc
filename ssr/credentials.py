from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum


KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
ASSIGNMENT_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


class LineKind(str, Enum):
    BLANK = "blank"
    COMMENT = "comment"
    ASSIGNMENT = "assignment"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class CredentialEntry:
    key: str
    value: str


@dataclass(frozen=True)
class ClassifiedLine:
    kind: LineKind
    entry: CredentialEntry | None = None


def unquote(value: str) -> str:
    """Strip one matching pair of surrounding double or single quotes."""
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def classify_line(line: str) -> ClassifiedLine:
    stripped = line.strip()
    if not stripped:
        return ClassifiedLine(LineKind.BLANK)
    if stripped.startswith("#"):
        return ClassifiedLine(LineKind.COMMENT)
    m = ASSIGNMENT_RE.match(line.rstrip("\r\n"))
    if not m:
        return ClassifiedLine(LineKind.UNRECOGNIZED)
    key, raw = m.group(1), m.group(2).rstrip()
    return ClassifiedLine(LineKind.ASSIGNMENT, CredentialEntry(key=key, value=unquote(raw)))


def parse_text(text: str) -> list[CredentialEntry]:
    out: list[CredentialEntry] = []
    # Only \n ends a line; other Unicode line breaks belong to the value.
    for line in text.replace("\r\n", "\n").split("\n"):
        c = classify_line(line)
        if c.kind is LineKind.ASSIGNMENT and c.entry is not None:
            out.append(c.entry)
    return out


def parse(path: str | os.PathLike[str]) -> list[CredentialEntry]:
    """Read a ``KEY=VALUE`` credential file.

    A missing file is a valid state and yields no entries.
    """
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as fh:
            text = fh.read()
    except FileNotFoundError:
        return []
    return parse_text(text)


def secret_name(service: str, key: str) -> str:
    """Derive the orchestrator secret name for one credential of a service.

    The first ``_`` separates the service namespace from the key, so service
    names containing ``_`` are rejected.
    """
    if not service or "_" in service:
        raise ValueError(f"Service name {service!r} cannot namespace secrets (must be non-empty, no '_').")
    if not KEY_RE.match(key):
        raise ValueError(f"Invalid credential key {key!r}.")
    return f"{service.lower()}_{key.lower()}"


def secret_prefix(service: str) -> str:
    return f"{service.lower()}_"
