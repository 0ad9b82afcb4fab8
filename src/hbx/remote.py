"""Remote sessions used by pull/push: command execution and whole-file transfer."""

from __future__ import annotations

import logging
import os
from typing import Protocol

import paramiko

from .exceptions import AuthenticationFailed

logger = logging.getLogger("hbx.remote")


class RemoteAgent(Protocol):
    """What pull/push need from a remote host."""

    def login(self, user: str | None, host: str, port: int = 22) -> None: ...

    def execute(self, command: str) -> str: ...

    def download(self, local_path: str | os.PathLike[str], remote_path: str) -> None: ...

    def upload(self, local_path: str | os.PathLike[str], remote_path: str) -> None: ...

    def write_remote_file(self, content: str, remote_path: str) -> None: ...

    def close(self) -> None: ...


class SSHAgent:
    """RemoteAgent over paramiko: exec channels for commands, SFTP for files.

    Authenticates with the running ssh-agent or the user's default keys.
    """

    def __init__(self, *, timeout: float = 20, key_filename: str | None = None):
        self._timeout = timeout
        self._key_filename = key_filename
        self._ssh: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    def __enter__(self) -> SSHAgent:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- connection --------------------------------------------------------

    def login(self, user: str | None, host: str, port: int = 22) -> None:
        logger.info("connecting to %s@%s:%d", user or "", host, port)
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=host, port=port, username=user,
                        timeout=self._timeout, banner_timeout=self._timeout,
                        auth_timeout=self._timeout, allow_agent=True, look_for_keys=True)
        if self._key_filename:
            kw["key_filename"] = self._key_filename
        try:
            client.connect(**kw)
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthenticationFailed(f"Authentication failed for {user or ''}@{host}:{port}") from exc
        self._ssh = client
        logger.info("authenticated")

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._ssh is not None:
            self._ssh.close()
            self._ssh = None

    def _client(self) -> paramiko.SSHClient:
        if self._ssh is None:
            raise RuntimeError("SSHAgent.login() must be called first")
        return self._ssh

    def _sftp_client(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            self._sftp = self._client().open_sftp()
        return self._sftp

    # -- commands ----------------------------------------------------------

    def execute(self, command: str) -> str:
        """Run *command* remotely and return its stdout."""
        logger.debug("exec %s", command)
        _, stdout, stderr = self._client().exec_command(command, timeout=self._timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        if rc != 0:
            logger.warning("remote command exited %d: %r: %s", rc, command, err.strip())
        return out

    # -- files -------------------------------------------------------------

    def download(self, local_path: str | os.PathLike[str], remote_path: str) -> None:
        logger.debug("download %s -> %s", remote_path, local_path)
        self._sftp_client().get(remote_path, os.fspath(local_path))

    def upload(self, local_path: str | os.PathLike[str], remote_path: str) -> None:
        logger.debug("upload %s -> %s", local_path, remote_path)
        self._sftp_client().put(os.fspath(local_path), remote_path)

    def write_remote_file(self, content: str, remote_path: str) -> None:
        logger.debug("write %s (%d bytes)", remote_path, len(content))
        with self._sftp_client().open(remote_path, "w") as f:
            f.write(content.encode("utf-8"))
