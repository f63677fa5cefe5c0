from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Tuple
from urllib.parse import parse_qsl, urlencode

from relaypake.crypto.primitives import b64url_d, b64url_e
from relaypake.protocol.constants import (
    DELIMITER, KEY_SEP, MAX_RELAY_CHARS, MAX_TREE_DEPTH, MAX_TREE_KEYS,
)
from relaypake.protocol.errors import FormatError

Tree = Dict[str, Any]

_INT = re.compile(r"-?\d+")


@dataclass(frozen=True)
class Envelope:
    """A command tag plus the payload tree it governs.

    On the relay this is a single line: the literal command, then ``#``,
    then the tree as a URL query whose keys are dotted paths and whose
    values carry a one-letter type tag (``b`` bytes, ``s`` string,
    ``i`` int, ``f`` float, ``t`` empty subtree).
    """
    command: str = ""
    tree: Tree = field(default_factory=dict)


def _render(value: Any, path: str) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "b" + b64url_e(bytes(value))
    if isinstance(value, str):
        return "s" + b64url_e(value.encode("utf-8"))
    if isinstance(value, bool):
        raise FormatError(f"Unsupported value at {path}: bool")
    if isinstance(value, int):
        return "i" + str(value)
    if isinstance(value, float):
        return "f" + repr(value)
    raise FormatError(f"Unsupported value at {path}: {type(value).__name__}")


def _flatten(tree: Tree, prefix: str = "") -> Iterator[Tuple[str, str]]:
    for key, value in tree.items():
        if not isinstance(key, str) or not key or KEY_SEP in key:
            raise FormatError(f"Invalid tree key: {key!r}")
        path = prefix + key
        if isinstance(value, dict):
            if not value:
                yield path, "t"
            else:
                yield from _flatten(value, path + KEY_SEP)
        else:
            yield path, _render(value, path)


def _parse(raw: str, path: str) -> Any:
    tag, body = raw[:1], raw[1:]
    try:
        if tag == "b":
            return b64url_d(body)
        if tag == "s":
            return b64url_d(body).decode("utf-8")
        if tag == "i" and _INT.fullmatch(body):
            return int(body)
        if tag == "f":
            return float(body)
        if tag == "t" and not body:
            return {}
    except ValueError as e:
        raise FormatError(f"Invalid value at {path}: {e}") from e
    raise FormatError(f"Invalid value at {path}")


def _insert(tree: Tree, path: str, value: Any) -> None:
    parts = path.split(KEY_SEP)
    if not all(parts):
        raise FormatError(f"Invalid tree key: {path!r}")
    if len(parts) > MAX_TREE_DEPTH:
        raise FormatError("Tree nesting too deep")
    node = tree
    for part in parts[:-1]:
        child = node.setdefault(part, {})
        if not isinstance(child, dict):
            raise FormatError(f"Conflicting tree key: {path!r}")
        node = child
    if parts[-1] in node:
        raise FormatError(f"Duplicate tree key: {path!r}")
    node[parts[-1]] = value


def encode(env: Envelope) -> str:
    if DELIMITER in env.command:
        raise FormatError(f"Command may not contain {DELIMITER!r}")
    if not env.command and not env.tree:
        return ""
    return env.command + DELIMITER + urlencode(list(_flatten(env.tree)))


def decode(text: str) -> Envelope:
    if not text:
        return Envelope()
    if len(text) > MAX_RELAY_CHARS:
        raise FormatError("Relay text too large")
    command, sep, query = text.partition(DELIMITER)
    if not sep:
        raise FormatError("Poorly formatted workflow inputs")
    try:
        pairs = parse_qsl(
            query, keep_blank_values=True, strict_parsing=True,
            max_num_fields=MAX_TREE_KEYS,
        ) if query else []
    except ValueError as e:
        raise FormatError(f"Poorly formatted workflow inputs: {e}") from e
    tree: Tree = {}
    for path, raw in pairs:
        _insert(tree, path, _parse(raw, path))
    return Envelope(command, tree)
