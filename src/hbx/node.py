"""Recursive filesystem-tree model for stored items.

A :class:`Node` pairs an entry name with its :data:`Meta`: a :class:`File`
(content fingerprint), a :class:`Symlink` (literal target) or a
:class:`Directory` (child nodes sorted by name).  Trees are immutable once
built; the store never edits a node in place.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Union

from ._hash import fingerprint
from .exceptions import InvalidPath, SerializationError

logger = logging.getLogger("hbx.node")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class File:
    fingerprint: str


@dataclass(frozen=True)
class Symlink:
    target: str


@dataclass(frozen=True)
class Directory:
    children: tuple[Node, ...] = ()


Meta = Union[File, Symlink, Directory]

# Tags used in the config file, one per Meta variant.
_TAG_FILE = "FILE"
_TAG_SYMLINK = "SYMLINK"
_TAG_DIRECTORY = "DIRECTORY"


@dataclass(frozen=True)
class Node:
    """One filesystem entry and, for directories, everything below it."""

    name: str
    meta: Meta

    @property
    def is_file(self) -> bool:
        return isinstance(self.meta, File)

    @property
    def is_symlink(self) -> bool:
        return isinstance(self.meta, Symlink)

    @property
    def is_dir(self) -> bool:
        return isinstance(self.meta, Directory)

    @classmethod
    def build(cls, path: str | os.PathLike[str]) -> Node:
        """Build a tree from the filesystem entry at *path*.

        Symlinks are recorded with their literal target and never followed.
        Directory children are visited in name order.

        Raises:
            InvalidPath: If *path* has no usable final component.
            OSError: If an entry vanishes or cannot be read mid-walk.
        """
        path = os.fspath(path)
        name = entry_name(path)
        if os.path.islink(path):
            meta: Meta = Symlink(os.readlink(path))
        elif os.path.isdir(path):
            logger.debug("build %s", path)
            children = tuple(
                cls.build(os.path.join(path, child))
                for child in sorted(os.listdir(path))
            )
            meta = Directory(children)
        else:
            meta = File(fingerprint(path))
        return cls(name, meta)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form used in the config file."""
        meta = self.meta
        if isinstance(meta, File):
            tagged: dict[str, Any] = {_TAG_FILE: meta.fingerprint}
        elif isinstance(meta, Symlink):
            tagged = {_TAG_SYMLINK: meta.target}
        else:
            tagged = {_TAG_DIRECTORY: [child.to_dict() for child in meta.children]}
        return {"name": self.name, "meta": tagged}

    @classmethod
    def from_dict(cls, data: Any) -> Node:
        """Inverse of :meth:`to_dict`.

        Raises:
            SerializationError: If *data* is not a well-formed node.
        """
        if not isinstance(data, dict):
            raise SerializationError(f"Expected a node object, got {type(data).__name__}")
        name = data.get("name")
        tagged = data.get("meta")
        if not isinstance(name, str) or not isinstance(tagged, dict) or len(tagged) != 1:
            raise SerializationError(f"Malformed node: {data!r}")
        (tag, value), = tagged.items()
        if tag == _TAG_FILE and isinstance(value, str):
            return cls(name, File(value))
        if tag == _TAG_SYMLINK and isinstance(value, str):
            return cls(name, Symlink(value))
        if tag == _TAG_DIRECTORY and isinstance(value, list):
            return cls(name, Directory(tuple(cls.from_dict(child) for child in value)))
        raise SerializationError(f"Unknown meta for node {name!r}: {tag!r}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def entry_name(path: str | os.PathLike[str]) -> str:
    """Return the final component of *path*, rejecting ``/``, ``.`` and ``..``."""
    p = os.fspath(path)
    if os.name == "nt":
        p = p.replace("\\", "/")
    name = p.rstrip("/").rsplit("/", 1)[-1]
    if name in ("", ".", ".."):
        raise InvalidPath(f"Cannot determine a name for path: {os.fspath(path)!r}")
    return name


def iter_fingerprints(node: Node) -> Iterator[str]:
    """Yield every File fingerprint in *node*'s subtree, depth-first."""
    meta = node.meta
    if isinstance(meta, File):
        yield meta.fingerprint
    elif isinstance(meta, Directory):
        for child in meta.children:
            yield from iter_fingerprints(child)


def collect_fingerprints(nodes: Iterable[Node]) -> set[str]:
    """Return the set of fingerprints reachable from *nodes*."""
    marked: set[str] = set()
    for node in nodes:
        marked.update(iter_fingerprints(node))
    return marked


def dumps(nodes: Iterable[Node]) -> str:
    """Serialize root nodes to config-file text."""
    return json.dumps([node.to_dict() for node in nodes])


def loads(text: str) -> dict[str, Node]:
    """Parse config-file text into a name -> root node mapping.

    When the same name appears twice, the first entry wins.

    Raises:
        SerializationError: If *text* is not a JSON array of nodes.
    """
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise SerializationError(f"Invalid config content: {exc}") from exc
    if not isinstance(data, list):
        raise SerializationError("Config content must be a JSON array")
    items: dict[str, Node] = {}
    for entry in data:
        node = Node.from_dict(entry)
        items.setdefault(node.name, node)
    return items
