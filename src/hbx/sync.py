"""Two-way synchronization (pull/push) between a local and a remote store.

Both directions run the same protocol with source and destination swapped:

1. connect to the remote host and check that hbx is installed there;
2. run ``hbx info`` remotely and download the remote config file;
3. select items on the source side and compute the blobs the destination
   lacks;
4. transfer those blobs one at a time and merge the selected items into the
   destination (names already present there are left alone).
"""

from __future__ import annotations

import json
import logging
import os
import posixpath
import shlex
import shutil
import tempfile
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .config import CONFIG_NAME
from .exceptions import RemoteInfoError, RemoteNotInstalled, UnknownItem
from .node import Node, collect_fingerprints, dumps, loads
from .remote import RemoteAgent, SSHAgent

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger("hbx.sync")

DEFAULT_PORT = 22


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Address:
    """A remote store location: ``[user@]host[:port]``."""
    host: str
    user: str | None = None
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        prefix = f"{self.user}@" if self.user else ""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{prefix}{host}:{self.port}"

    @classmethod
    def parse(cls, text: str, port: int | None = None) -> Address:
        """Parse ``[user@]host[:port]``; an explicit *port* wins over the text.

        IPv6 hosts must be bracketed when a port is given (``[::1]:2222``).

        Raises:
            ValueError: On an empty host or a non-numeric port.
        """
        user, sep, hostport = text.rpartition("@")
        if not sep:
            user = ""
        parsed_port: str | None = None
        if hostport.startswith("["):
            host, bracket, rest = hostport[1:].partition("]")
            if not bracket or (rest and not rest.startswith(":")):
                raise ValueError(f"Invalid address: {text!r}")
            parsed_port = rest[1:] or None
        elif hostport.count(":") == 1:
            host, _, parsed_port = hostport.partition(":")
        else:
            host = hostport
        if not host:
            raise ValueError(f"Invalid address: {text!r} (missing host)")
        if port is None:
            if parsed_port is None:
                port = DEFAULT_PORT
            elif parsed_port.isdigit():
                port = int(parsed_port)
            else:
                raise ValueError(f"Invalid port in address: {text!r}")
        return cls(host=host, user=user or None, port=port)


@dataclass
class SyncPlan:
    """What a pull or push did (or, for a dry run, would do).

    Attributes:
        items: Item names merged into the destination.
        skipped: Selected names the destination already had.
        blobs: Fingerprints transferred to the destination.
    """
    items: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    blobs: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.items and not self.blobs

    @property
    def total(self) -> int:
        return len(self.items) + len(self.blobs)


# ---------------------------------------------------------------------------
# Selection and diff
# ---------------------------------------------------------------------------

def select(items: Mapping[str, Node], names: Iterable[str], all_: bool = False) -> list[Node]:
    """Resolve a ``names``/``all_`` selector against *items*.

    ``all_`` selects everything and ignores *names*.

    Raises:
        UnknownItem: If a requested name is absent.
    """
    if all_:
        return list(items.values())
    selected: dict[str, Node] = {}
    for name in names:
        try:
            selected[name] = items[name]
        except KeyError:
            raise UnknownItem(name) from None
    return list(selected.values())


def plan(selected: Iterable[Node], destination: Mapping[str, Node]) -> SyncPlan:
    """Diff *selected* source items against the *destination* item set.

    Items whose name already exists on the destination are skipped and
    contribute no blobs.  The blob list is the fingerprints of the merged
    items minus every fingerprint the destination already references.
    """
    result = SyncPlan()
    merged: list[Node] = []
    for node in selected:
        if node.name in destination:
            result.skipped.append(node.name)
        else:
            result.items.append(node.name)
            merged.append(node)
    have = collect_fingerprints(destination.values())
    result.blobs = sorted(collect_fingerprints(merged) - have)
    return result


# ---------------------------------------------------------------------------
# Remote helpers
# ---------------------------------------------------------------------------

def _connect(address: str, port: int | None, agent: RemoteAgent | None) -> RemoteAgent:
    addr = Address.parse(address, port)
    if agent is None:
        agent = SSHAgent()
    logger.info("login %s", addr)
    agent.login(addr.user, addr.host, addr.port)
    return agent


def _is_installed(agent: RemoteAgent, remote_bin: str) -> bool:
    out = agent.execute(f"[ -f {shlex.quote(remote_bin)} ] && echo ok || echo fail")
    return out.strip() == "ok"


def _install(agent: RemoteAgent, remote_bin: str, local_bin: str | None) -> None:
    local_bin = local_bin or shutil.which("hbx")
    if local_bin is None:
        raise RemoteNotInstalled(
            f"hbx is not installed at {remote_bin} and no local executable was found to upload"
        )
    logger.info("upload %s -> %s", local_bin, remote_bin)
    agent.upload(local_bin, remote_bin)
    agent.execute(f"chmod 755 {shlex.quote(remote_bin)}")


def _remote_info(agent: RemoteAgent, remote_bin: str) -> dict[str, str]:
    out = agent.execute(f"{shlex.quote(remote_bin)} info")
    try:
        info = json.loads(out)
    except ValueError as exc:
        raise RemoteInfoError(f"Remote info is not JSON: {out.strip()!r}") from exc
    if not isinstance(info, dict):
        raise RemoteInfoError(f"Remote info is not a mapping: {out.strip()!r}")
    for key in ("config", "storage"):
        if not isinstance(info.get(key), str):
            raise RemoteInfoError(f"Remote info has no {key!r} entry")
    return info


def _remote_items(agent: RemoteAgent, remote_config: str) -> dict[str, Node]:
    with tempfile.TemporaryDirectory(prefix="hbx-") as tmp:
        local = Path(tmp) / CONFIG_NAME
        logger.info("download config %s", remote_config)
        agent.download(local, remote_config)
        return loads(local.read_text(encoding="utf-8"))


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _download_blob(agent: RemoteAgent, store: Store, remote_path: str, fp: str) -> None:
    """Download into a temp file beside the store, then rename into place.

    An interrupted transfer never leaves a partial blob under its
    fingerprint.
    """
    fd, tmp = tempfile.mkstemp(dir=store.path, prefix=".download-")
    os.close(fd)
    try:
        agent.download(tmp, remote_path)
        # mkstemp files are 0600; blobs get the mode a plain create would
        os.chmod(tmp, _default_file_mode())
        os.replace(tmp, store.store_dir / fp)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _report(progress: Callable[[str], None] | None, msg: str) -> None:
    if progress is not None:
        progress(msg)


# ---------------------------------------------------------------------------
# pull / push
# ---------------------------------------------------------------------------

def pull(
    store: Store,
    address: str,
    names: Iterable[str] = (),
    *,
    all_: bool = False,
    port: int | None = None,
    dry_run: bool = False,
    agent: RemoteAgent | None = None,
    remote_bin: str | None = None,
    progress: Callable[[str], None] | None = None,
) -> SyncPlan:
    """Copy remote items into *store*.

    Returns a :class:`SyncPlan` describing what changed (or would change).

    Raises:
        AuthenticationFailed: If the remote login is rejected.
        RemoteNotInstalled: If hbx is missing on the remote host.
        RemoteInfoError: If ``hbx info`` output is unusable.
        UnknownItem: If a requested name is not stored remotely.
    """
    remote_bin = remote_bin or store.config.remote_bin
    names = list(names)
    logger.info("pull %s from %s", "all" if all_ else names, address)
    agent = _connect(address, port, agent)
    try:
        if not _is_installed(agent, remote_bin):
            raise RemoteNotInstalled(f"hbx is not installed on {address} ({remote_bin})")
        info = _remote_info(agent, remote_bin)
        remote_items = _remote_items(agent, info["config"])
        selected = select(remote_items, names, all_)
        result = plan(selected, store.items)
        if dry_run:
            return result

        with store._locked():
            for fp in result.blobs:
                if os.path.lexists(store.store_dir / fp):
                    logger.info("skip %s: already present", fp)
                    continue
                remote = posixpath.join(info["storage"], fp)
                logger.info("download %s", remote)
                _report(progress, f"download {fp}")
                _download_blob(agent, store, remote, fp)
            store.merge(selected)
            store._save()
            store._sweep()
        return result
    finally:
        agent.close()


def push(
    store: Store,
    address: str,
    names: Iterable[str] = (),
    *,
    all_: bool = False,
    port: int | None = None,
    install: bool = False,
    dry_run: bool = False,
    agent: RemoteAgent | None = None,
    remote_bin: str | None = None,
    local_bin: str | None = None,
    progress: Callable[[str], None] | None = None,
) -> SyncPlan:
    """Copy items of *store* to the remote store.

    With *install*, a missing remote hbx is uploaded from *local_bin*
    (default: ``hbx`` on ``PATH``) first.  A dry run never installs.

    Returns a :class:`SyncPlan` describing what changed (or would change).

    Raises:
        AuthenticationFailed: If the remote login is rejected.
        RemoteNotInstalled: If hbx is missing remotely and cannot be installed.
        RemoteInfoError: If ``hbx info`` output is unusable.
        UnknownItem: If a requested name is not stored locally.
    """
    remote_bin = remote_bin or store.config.remote_bin
    names = list(names)
    logger.info("push %s to %s", "all" if all_ else names, address)
    agent = _connect(address, port, agent)
    try:
        if not _is_installed(agent, remote_bin):
            if not install or dry_run:
                raise RemoteNotInstalled(f"hbx is not installed on {address} ({remote_bin})")
            _install(agent, remote_bin, local_bin)
        info = _remote_info(agent, remote_bin)
        remote_items = _remote_items(agent, info["config"])
        selected = select(store.items, names, all_)
        result = plan(selected, remote_items)
        if dry_run or result.in_sync:
            return result

        with store._locked():
            for fp in result.blobs:
                remote = posixpath.join(info["storage"], fp)
                logger.info("upload %s", remote)
                _report(progress, f"upload {fp}")
                agent.upload(store.store_dir / fp, remote)
        for node in selected:
            remote_items.setdefault(node.name, node)
        logger.info("write config %s", info["config"])
        agent.write_remote_file(dumps(remote_items.values()), info["config"])
        return result
    finally:
        agent.close()
