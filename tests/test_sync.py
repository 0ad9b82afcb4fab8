"""Tests for pull/push between a local store and a (fake) remote store."""

import hashlib
import os
import stat

import pytest

from hbx import (
    Address,
    File,
    Node,
    RemoteInfoError,
    RemoteNotInstalled,
    SerializationError,
    Store,
    SyncPlan,
    UnknownItem,
)
from hbx.sync import plan, pull, push, select

from conftest import LocalAgent


def _md5(text):
    return hashlib.md5(text.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Address
# ---------------------------------------------------------------------------

class TestAddress:
    def test_user_host(self):
        assert Address.parse("root@example.com") == Address("example.com", "root", 22)

    def test_port_in_text(self):
        assert Address.parse("me@10.0.0.1:2222") == Address("10.0.0.1", "me", 2222)

    def test_explicit_port_wins(self):
        assert Address.parse("me@host:2222", port=23).port == 23

    def test_no_user(self):
        assert Address.parse("host") == Address("host", None, 22)

    def test_ipv6(self):
        assert Address.parse("me@[::1]:2200") == Address("::1", "me", 2200)

    def test_str(self):
        assert str(Address("host", "me", 2222)) == "me@host:2222"

    @pytest.mark.parametrize("text", ["me@", "me@:22", "me@host:abc", "me@[::1"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            Address.parse(text)


# ---------------------------------------------------------------------------
# Selection and diff
# ---------------------------------------------------------------------------

class TestSelect:
    ITEMS = {"a": Node("a", File("1")), "b": Node("b", File("2"))}

    def test_names(self):
        assert select(self.ITEMS, ["b"]) == [self.ITEMS["b"]]

    def test_all_ignores_names(self):
        assert select(self.ITEMS, ["nope"], all_=True) == list(self.ITEMS.values())

    def test_unknown(self):
        with pytest.raises(UnknownItem):
            select(self.ITEMS, ["a", "nope"])

    def test_duplicate_names(self):
        assert select(self.ITEMS, ["a", "a"]) == [self.ITEMS["a"]]


class TestPlan:
    def test_missing_blobs_only(self):
        dest = {"x": Node("x", File("1"))}
        result = plan([Node("y", File("1")), Node("z", File("2"))], dest)
        assert result.items == ["y", "z"]
        assert result.blobs == ["2"]

    def test_existing_names_skipped(self):
        dest = {"x": Node("x", File("1"))}
        result = plan([Node("x", File("9"))], dest)
        assert result.skipped == ["x"]
        assert result.blobs == []
        assert result.in_sync

    def test_total(self):
        assert SyncPlan(items=["a"], blobs=["1", "2"]).total == 3


# ---------------------------------------------------------------------------
# pull
# ---------------------------------------------------------------------------

class TestPull:
    def test_pull_item(self, store, remote_store, agent, make_tree, src):
        remote_store.add(make_tree(src, "tools", {"run.sh": "run", "lib/x": "x"}))
        result = store.pull("me@box:2222", ["tools"], agent=agent)
        assert result.items == ["tools"]
        assert sorted(result.blobs) == sorted([_md5("run"), _md5("x")])
        assert store.items["tools"] == remote_store.items["tools"]
        assert set(os.listdir(store.store_dir)) == {_md5("run"), _md5("x")}
        assert agent.logins == [("me", "box", 2222)]
        assert agent.closed

    def test_pulled_item_restores(self, store, remote_store, agent, proj, tmp_path):
        remote_store.add(proj)
        store.pull("me@box", ["proj"], agent=agent)
        dest = tmp_path / "dest"
        dest.mkdir()
        store.get("proj", dest)
        assert (dest / "proj" / "sub" / "b.txt").read_text() == "hi"

    def test_pulled_file_keeps_default_mode(self, store, remote_store, agent, proj, tmp_path):
        remote_store.add(proj)
        store.pull("me@box", ["proj"], agent=agent)
        dest = tmp_path / "dest"
        dest.mkdir()
        store.get("proj", dest)
        expected = stat.S_IMODE(os.stat(proj / "a.txt").st_mode)
        assert stat.S_IMODE(os.stat(dest / "proj" / "a.txt").st_mode) == expected
        assert stat.S_IMODE(os.stat(store.store_dir / _md5("hi")).st_mode) == expected

    def test_persists(self, store, remote_store, agent, proj, home):
        remote_store.add(proj)
        store.pull("me@box", ["proj"], agent=agent)
        assert "proj" in Store.open(home).items

    def test_skips_blobs_already_present(self, store, remote_store, agent, make_tree, src, tmp_path):
        store.add(make_tree(src, "mine", {"f": "shared"}))
        other = tmp_path / "other"
        remote_store.add(make_tree(other, "theirs", {"g": "shared", "h": "new"}))
        result = store.pull("me@box", ["theirs"], agent=agent)
        assert result.blobs == [_md5("new")]
        assert [os.path.basename(p) for p in agent.blob_downloads] == [_md5("new")]

    def test_only_selected(self, store, remote_store, agent, make_tree, src):
        remote_store.add(make_tree(src, "a", {"f": "1"}))
        remote_store.add(make_tree(src, "b", {"f": "2"}))
        store.pull("me@box", ["a"], agent=agent)
        assert store.list() == ["a"]
        assert set(os.listdir(store.store_dir)) == {_md5("1")}

    def test_all(self, store, remote_store, agent, make_tree, src):
        remote_store.add(make_tree(src, "a", {"f": "1"}))
        remote_store.add(make_tree(src, "b", {"f": "2"}))
        store.pull("me@box", ["ignored"], all_=True, agent=agent)
        assert sorted(store.list()) == ["a", "b"]

    def test_unknown_item(self, store, remote_store, agent):
        with pytest.raises(UnknownItem):
            store.pull("me@box", ["nope"], agent=agent)
        assert agent.closed

    def test_first_writer_wins(self, store, remote_store, agent, make_tree, src, tmp_path):
        store.add(make_tree(src, "cfg", {"f": "local"}))
        remote_store.add(make_tree(tmp_path / "r", "cfg", {"f": "remote"}))
        result = store.pull("me@box", ["cfg"], agent=agent)
        assert result.skipped == ["cfg"]
        assert agent.blob_downloads == []
        assert store.items["cfg"].meta.children[0].meta == File(_md5("local"))

    def test_not_installed(self, store, remote_home):
        agent = LocalAgent(remote_home, installed=False)
        with pytest.raises(RemoteNotInstalled):
            store.pull("me@box", ["x"], agent=agent)
        assert agent.closed

    def test_dry_run(self, store, remote_store, agent, proj):
        remote_store.add(proj)
        result = store.pull("me@box", ["proj"], dry_run=True, agent=agent)
        assert result.items == ["proj"]
        assert result.blobs == [_md5("hi")]
        assert store.items == {}
        assert os.listdir(store.store_dir) == []
        assert agent.blob_downloads == []

    def test_custom_remote_bin(self, store, remote_store, remote_home, proj):
        remote_store.add(proj)
        agent = LocalAgent(remote_home, remote_bin="/opt/hbx/bin/hbx")
        pull(store, "me@box", ["proj"], agent=agent, remote_bin="/opt/hbx/bin/hbx")
        assert "/opt/hbx/bin/hbx info" in agent.commands

    def test_retry_after_partial_failure(self, store, remote_store, remote_home, make_tree, src, home):
        remote_store.add(make_tree(src, "data", {"1": "one", "2": "two"}))
        failing = sorted([_md5("one"), _md5("two")])[1]

        class FlakyAgent(LocalAgent):
            def download(self, local_path, remote_path):
                if os.path.basename(remote_path) == failing:
                    raise OSError("connection reset")
                super().download(local_path, remote_path)

        with pytest.raises(OSError):
            store.pull("me@box", ["data"], agent=FlakyAgent(remote_home))
        assert Store.open(home).items == {}
        assert failing not in os.listdir(store.store_dir)
        assert [n for n in os.listdir(store.path) if n.startswith(".download-")] == []

        agent = LocalAgent(remote_home)
        store.pull("me@box", ["data"], agent=agent)
        assert [os.path.basename(p) for p in agent.blob_downloads] == [failing]
        assert "data" in store.items


class TestRemoteInfo:
    class _InfoAgent(LocalAgent):
        info_output = "{}"

        def execute(self, command):
            if command.endswith(" info"):
                self.commands.append(command)
                return self.info_output
            return super().execute(command)

    @pytest.mark.parametrize("output", [
        "{}",
        '{"config": "/x"}',
        '{"storage": "/x"}',
        "[]",
        "hbx: command not found",
    ])
    def test_bad_info(self, store, remote_home, output):
        agent = self._InfoAgent(remote_home)
        agent.info_output = output
        with pytest.raises(RemoteInfoError):
            store.pull("me@box", ["x"], agent=agent)

    def test_bad_remote_config(self, store, remote_store, remote_home):
        class GarbageAgent(LocalAgent):
            def download(self, local_path, remote_path):
                with open(local_path, "w") as f:
                    f.write("garbage")

        with pytest.raises(SerializationError):
            store.pull("me@box", ["x"], agent=GarbageAgent(remote_home))


# ---------------------------------------------------------------------------
# push
# ---------------------------------------------------------------------------

class TestPush:
    def test_push_item(self, store, remote_home, agent, proj):
        store.add(proj)
        result = store.push("me@box", ["proj"], agent=agent)
        assert result.items == ["proj"]
        assert result.blobs == [_md5("hi")]
        remote = Store.open(remote_home)
        assert remote.items["proj"] == store.items["proj"]
        assert os.listdir(remote.store_dir) == [_md5("hi")]
        assert agent.writes == [str(remote.config_path.resolve())]
        assert agent.closed

    def test_pushed_item_restores_remotely(self, store, remote_home, agent, proj, tmp_path):
        store.add(proj)
        store.push("me@box", ["proj"], agent=agent)
        dest = tmp_path / "remote-dest"
        dest.mkdir()
        Store.open(remote_home).get("proj", dest)
        assert (dest / "proj" / "a.txt").read_text() == "hi"

    def test_keeps_remote_items(self, store, remote_store, remote_home, agent, make_tree, src, tmp_path):
        remote_store.add(make_tree(tmp_path / "r", "theirs", {"f": "r"}))
        store.add(make_tree(src, "mine", {"f": "l"}))
        store.push("me@box", ["mine"], agent=agent)
        assert sorted(Store.open(remote_home).list()) == ["mine", "theirs"]

    def test_uploads_only_missing(self, store, remote_store, agent, make_tree, src, tmp_path):
        remote_store.add(make_tree(tmp_path / "r", "theirs", {"f": "shared"}))
        store.add(make_tree(src, "mine", {"f": "shared", "g": "new"}))
        store.push("me@box", ["mine"], agent=agent)
        assert [os.path.basename(p) for p in agent.uploads] == [_md5("new")]

    def test_unknown_item(self, store, remote_store, agent):
        with pytest.raises(UnknownItem):
            store.push("me@box", ["nope"], agent=agent)

    def test_not_installed(self, store, proj, remote_home):
        store.add(proj)
        agent = LocalAgent(remote_home, installed=False)
        with pytest.raises(RemoteNotInstalled):
            store.push("me@box", ["proj"], agent=agent)
        assert agent.uploads == []

    def test_install(self, store, proj, remote_home, tmp_path):
        store.add(proj)
        exe = tmp_path / "hbx-bin"
        exe.write_text("#!/bin/sh\n")
        agent = LocalAgent(remote_home, installed=False)
        push(store, "me@box", ["proj"], install=True, agent=agent, local_bin=str(exe))
        assert agent.uploads[0] == "/usr/local/bin/hbx"
        assert "chmod 755 /usr/local/bin/hbx" in agent.commands
        assert "proj" in Store.open(remote_home).items

    def test_install_without_local_executable(self, store, proj, remote_home, monkeypatch):
        store.add(proj)
        monkeypatch.setattr("hbx.sync.shutil.which", lambda name: None)
        agent = LocalAgent(remote_home, installed=False)
        with pytest.raises(RemoteNotInstalled):
            store.push("me@box", ["proj"], install=True, agent=agent)

    def test_dry_run(self, store, remote_home, agent, proj):
        store.add(proj)
        result = store.push("me@box", ["proj"], dry_run=True, agent=agent)
        assert result.items == ["proj"]
        assert agent.uploads == []
        assert agent.writes == []
        assert Store.open(remote_home).items == {}

    def test_in_sync_writes_nothing(self, store, remote_home, proj):
        store.add(proj)
        store.push("me@box", ["proj"], agent=LocalAgent(remote_home))
        agent = LocalAgent(remote_home)
        result = store.push("me@box", ["proj"], agent=agent)
        assert result.in_sync
        assert agent.uploads == []
        assert agent.writes == []


# ---------------------------------------------------------------------------
# Convergence
# ---------------------------------------------------------------------------

class TestConvergence:
    def test_pull_then_push(self, store, remote_store, remote_home, make_tree, src, tmp_path):
        store.add(make_tree(src, "local-a", {"f": "la", "g": "common"}))
        remote_store.add(make_tree(tmp_path / "r", "remote-b", {"f": "rb", "g": "common"}))

        store.pull("me@box", all_=True, agent=LocalAgent(remote_home))
        store.push("me@box", all_=True, agent=LocalAgent(remote_home))

        remote = Store.open(remote_home)
        assert remote.items == store.items
        assert sorted(store.list()) == ["local-a", "remote-b"]
        assert set(os.listdir(store.store_dir)) == set(os.listdir(remote.store_dir))

        again = LocalAgent(remote_home)
        assert store.pull("me@box", all_=True, agent=again).in_sync
        assert store.push("me@box", all_=True, agent=again).in_sync
        assert again.blob_downloads == []
        assert again.uploads == []

    def test_push_then_pull(self, store, remote_store, remote_home, make_tree, src, tmp_path):
        store.add(make_tree(src, "x", {"f": "1"}))
        remote_store.add(make_tree(tmp_path / "r", "y", {"f": "2"}))

        store.push("me@box", all_=True, agent=LocalAgent(remote_home))
        store.pull("me@box", all_=True, agent=LocalAgent(remote_home))

        assert sorted(store.list()) == ["x", "y"]
        assert sorted(Store.open(remote_home).list()) == ["x", "y"]
