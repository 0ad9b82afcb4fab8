"""Shared fixtures for hbx tests."""

import shlex
import shutil
from pathlib import Path

import pytest
from click.testing import CliRunner

from hbx import Store
from hbx.cli import main
from hbx.config import DEFAULT_REMOTE_BIN


# ---------------------------------------------------------------------------
# Fake remote host
# ---------------------------------------------------------------------------

class LocalAgent:
    """RemoteAgent whose "remote host" is a second store on local disk.

    ``hbx info`` is answered by running the real CLI against that store;
    transfers are plain file copies.  Every call is recorded.
    """

    def __init__(self, home, *, installed=True, remote_bin=DEFAULT_REMOTE_BIN):
        self.home = str(home)
        self.installed = installed
        self.remote_bin = remote_bin
        self.logins = []
        self.commands = []
        self.downloads = []
        self.uploads = []
        self.writes = []
        self.closed = False

    def login(self, user, host, port=22):
        self.logins.append((user, host, port))

    def execute(self, command):
        self.commands.append(command)
        bin_ = shlex.quote(self.remote_bin)
        if command == f"[ -f {bin_} ] && echo ok || echo fail":
            return "ok\n" if self.installed else "fail\n"
        if command == f"{bin_} info":
            result = CliRunner().invoke(main, ["--home", self.home, "info"])
            assert result.exit_code == 0, result.output
            return result.output
        if command == f"chmod 755 {bin_}":
            return ""
        raise AssertionError(f"unexpected remote command: {command!r}")

    def download(self, local_path, remote_path):
        self.downloads.append(remote_path)
        shutil.copyfile(remote_path, local_path)

    def upload(self, local_path, remote_path):
        self.uploads.append(remote_path)
        if remote_path == self.remote_bin:
            self.installed = True
            return
        shutil.copyfile(local_path, remote_path)

    def write_remote_file(self, content, remote_path):
        self.writes.append(remote_path)
        Path(remote_path).write_text(content, encoding="utf-8")

    def close(self):
        self.closed = True

    @property
    def blob_downloads(self):
        return [p for p in self.downloads if Path(p).parent.name == "store"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path):
    """Path to a not-yet-created local store home."""
    return tmp_path / "home"


@pytest.fixture
def store(home):
    return Store.open(home)


@pytest.fixture
def remote_home(tmp_path):
    """Home of the store playing the remote side."""
    return tmp_path / "remote"


@pytest.fixture
def remote_store(remote_home):
    return Store.open(remote_home)


@pytest.fixture
def agent(remote_home):
    return LocalAgent(remote_home)


@pytest.fixture
def src(tmp_path):
    """Directory to create source trees in."""
    p = tmp_path / "src"
    p.mkdir()
    return p


@pytest.fixture
def proj(src):
    """proj/a.txt and proj/sub/b.txt, both containing "hi"."""
    root = src / "proj"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("hi")
    (root / "sub" / "b.txt").write_text("hi")
    return root


def make_tree(base, name, files):
    """Create directory *base/name* holding ``{relpath: text}`` files."""
    root = base / name
    for rel, text in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text)
    return root


@pytest.fixture(name="make_tree")
def make_tree_fixture():
    return make_tree
