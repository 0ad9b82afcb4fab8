"""Store: named item trees over a hard-linked, content-addressed blob directory."""

from __future__ import annotations

import errno
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from ._lock import store_lock
from .config import StoreConfig
from .exceptions import CrossDeviceError, NotADirectory, NotFound, UnknownItem
from .node import Directory, File, Node, Symlink, collect_fingerprints, dumps, entry_name, loads

if TYPE_CHECKING:
    from .remote import RemoteAgent
    from .sync import SyncPlan

logger = logging.getLogger("hbx.store")


def _hard_link(src: Path, dst: Path) -> None:
    """``os.link`` with cross-device failures raised as :class:`CrossDeviceError`."""
    try:
        os.link(src, dst)
    except OSError as exc:
        if exc.errno == errno.EXDEV:
            raise CrossDeviceError(
                errno.EXDEV, f"Cannot hard-link across filesystems: {src} -> {dst}"
            ) from exc
        raise


def _write_atomic(path: Path, text: str) -> None:
    """Replace *path* with *text* in a single rename."""
    handle = tempfile.NamedTemporaryFile(
        "w", delete=False, dir=path.parent, prefix=f".{path.name}.",
        encoding="utf-8", newline="\n",
    )
    temp_path = Path(handle.name)
    try:
        with handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


class Store:
    """A personal artifact store.

    ``items`` maps each top-level name to its root :class:`Node`.  File
    content lives once per fingerprint in :attr:`store_dir`, hard-linked
    from wherever it was added.
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self.items: dict[str, Node] = {}
        config.store_dir.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return f"Store({str(self.path)!r}, items={len(self.items)})"

    @classmethod
    def open(cls, home: str | os.PathLike[str] | None = None, *,
             config: StoreConfig | None = None) -> Store:
        """Open (creating if needed) the store at *home* and load its items.

        Args:
            home: Store home directory.  Defaults to ``HBX_HOME`` or ``~/.hbx``.
            config: A fully resolved config; overrides *home*.
        """
        if config is None:
            config = StoreConfig.from_env(home)
        store = cls(config)
        store.load()
        return store

    @property
    def path(self) -> Path:
        return self.config.home

    @property
    def config_path(self) -> Path:
        return self.config.config_path

    @property
    def store_dir(self) -> Path:
        return self.config.store_dir

    def _locked(self):
        return store_lock(self.config.lock_path)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Merge the on-disk item list into ``items``.

        Names already present in memory keep their in-memory node.  A
        missing config file is created empty.

        Raises:
            SerializationError: If the config file is malformed.
        """
        path = self.config_path
        if not path.exists():
            with self._locked():
                _write_atomic(path, "[]")
            return
        for name, node in loads(path.read_text(encoding="utf-8")).items():
            self.items.setdefault(name, node)

    def save(self) -> None:
        """Atomically write ``items`` to the config file."""
        with self._locked():
            self._save()

    def _save(self) -> None:
        _write_atomic(self.config_path, dumps(self.items.values()))
        logger.debug("saved %s", self.config_path)

    # ------------------------------------------------------------------
    # add
    # ------------------------------------------------------------------

    def add(self, path: str | os.PathLike[str]) -> Node | None:
        """Snapshot *path* under its file name.

        Does nothing when *path* does not exist or an item with the same
        name is already stored.

        Returns:
            The new root node, or ``None`` if nothing was added.

        Raises:
            InvalidPath: If *path* has no usable name.
            CrossDeviceError: If *path* and the store are on different volumes.
        """
        path = Path(path)
        if not os.path.lexists(path):
            logger.info("skip %s: does not exist", path)
            return None
        name = entry_name(path)
        if name in self.items:
            logger.info("skip %s: %r already stored", path, name)
            return None

        with self._locked():
            root = Node.build(path)
            self._link_in(root, path)
            self.items.setdefault(root.name, root)
            self._save()
        return root

    def _link_in(self, node: Node, src: Path) -> None:
        meta = node.meta
        if isinstance(meta, File):
            dst = self.store_dir / meta.fingerprint
            if os.path.lexists(dst):
                return
            logger.info("l %s -> %s", src, dst)
            _hard_link(src, dst)
        elif isinstance(meta, Directory):
            for child in meta.children:
                self._link_in(child, src / child.name)

    # ------------------------------------------------------------------
    # get
    # ------------------------------------------------------------------

    def get(self, name: str, destination: str | os.PathLike[str] = ".") -> Path:
        """Restore item *name* to ``destination/<name>``.

        Existing files are left alone, so an interrupted restore can simply
        be run again.

        Returns:
            Path of the restored root.

        Raises:
            NotFound: If *destination* does not exist.
            NotADirectory: If *destination* is not a directory.
            UnknownItem: If no item is called *name*.
        """
        destination = Path(destination)
        if not destination.exists():
            raise NotFound(f"Destination not found: {destination}")
        if not destination.is_dir():
            raise NotADirectory(f"Destination is not a directory: {destination}")
        try:
            root = self.items[name]
        except KeyError:
            raise UnknownItem(name) from None

        target = destination / root.name
        symlinks: list[tuple[Path, str]] = []
        self._materialize(root, target, symlinks)
        for link, link_target in symlinks:
            self._restore_symlink(link, link_target)
        return target

    def _materialize(self, node: Node, dst: Path, symlinks: list[tuple[Path, str]]) -> None:
        meta = node.meta
        if isinstance(meta, File):
            if os.path.lexists(dst):
                return
            src = self.store_dir / meta.fingerprint
            logger.info("l %s -> %s", src, dst)
            _hard_link(src, dst)
        elif isinstance(meta, Directory):
            logger.info("d %s", dst)
            dst.mkdir(exist_ok=True)
            for child in meta.children:
                self._materialize(child, dst / child.name, symlinks)
        else:
            symlinks.append((dst, meta.target))

    @staticmethod
    def _restore_symlink(link: Path, target: str) -> None:
        if os.path.lexists(link):
            return
        resolved = link.parent / target
        if not os.path.lexists(resolved):
            logger.warning("dangling symlink %s -> %s", link, target)
        logger.info("s %s -> %s", link, target)
        os.symlink(target, link, target_is_directory=resolved.is_dir())

    # ------------------------------------------------------------------
    # delete / clear
    # ------------------------------------------------------------------

    def delete(self, name: str) -> bool:
        """Remove item *name* and collect blobs nothing else references.

        Returns:
            True if an item was removed.
        """
        with self._locked():
            removed = self.items.pop(name, None) is not None
            if removed:
                logger.info("delete item %s", name)
                self._save()
            self._sweep()
        return removed

    def clear(self) -> list[str]:
        """Delete every blob not reachable from ``items``.

        Returns:
            Sorted fingerprints of the removed blobs.
        """
        with self._locked():
            return self._sweep()

    def _sweep(self) -> list[str]:
        marked = collect_fingerprints(self.items.values())
        universe = set(os.listdir(self.store_dir))
        removed = sorted(universe - marked)
        for fp in removed:
            path = self.store_dir / fp
            logger.info("delete %s", path)
            path.unlink()
        return removed

    # ------------------------------------------------------------------
    # list / info
    # ------------------------------------------------------------------

    def list(self) -> list[str]:
        """Return item names."""
        return list(self.items)

    def info(self) -> dict[str, str]:
        """Return absolute paths of the config file and blob directory.

        This mapping is what the remote side of pull/push reads.
        """
        return {
            "config": str(self.config_path.resolve()),
            "storage": str(self.store_dir.resolve()),
        }

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def merge(self, nodes: Iterable[Node]) -> list[str]:
        """Insert *nodes* whose names are not stored yet (first writer wins).

        Returns:
            Names that were inserted.
        """
        added = []
        for node in nodes:
            if node.name not in self.items:
                self.items[node.name] = node
                added.append(node.name)
        return added

    def pull(self, address: str, names: Iterable[str] = (), *, all_: bool = False,
             port: int | None = None, dry_run: bool = False,
             agent: RemoteAgent | None = None,
             progress: Callable[[str], None] | None = None) -> SyncPlan:
        """Fetch items *names* (or every item) from the store at *address*.

        Returns a :class:`~hbx.sync.SyncPlan` describing what changed (or
        would change).
        """
        from .sync import pull
        return pull(self, address, names, all_=all_, port=port, dry_run=dry_run,
                    agent=agent, progress=progress)

    def push(self, address: str, names: Iterable[str] = (), *, all_: bool = False,
             port: int | None = None, install: bool = False, dry_run: bool = False,
             agent: RemoteAgent | None = None,
             progress: Callable[[str], None] | None = None) -> SyncPlan:
        """Send items *names* (or every item) to the store at *address*.

        Returns a :class:`~hbx.sync.SyncPlan` describing what changed (or
        would change).
        """
        from .sync import push
        return push(self, address, names, all_=all_, port=port, install=install,
                    dry_run=dry_run, agent=agent, progress=progress)
