"""Tests for the virtual file system."""

import pytest

from core.vfs import VirtualFS

SPEC = {
    "home": "/home/agent",
    "directories": ["/home/agent/Downloads", "/var/log"],
    "files": {
        "/home/agent/notes.txt": "remember the milk",
        "/home/agent/.bashrc": "export PS1",
        "/home/agent/Documents/passwords.enc": {
            "content": "admin:hunter2",
            "encrypted": True,
            "unlocks": "server-01",
        },
        "/var/log/auth.log": None,
    },
}


@pytest.fixture
def fs():
    return VirtualFS.from_spec(SPEC)


class TestPaths:
    def test_normalize(self, fs):
        assert fs.normalize("Documents", "/home/agent") == "/home/agent/Documents"
        assert fs.normalize("../..", "/home/agent") == "/"
        assert fs.normalize("~") == "/home/agent"
        assert fs.normalize("~/Downloads") == "/home/agent/Downloads"
        assert fs.normalize("/var//log/./") == "/var/log"
        assert fs.normalize("") == "/home/agent"

    def test_default_home(self):
        fs = VirtualFS.from_spec(None, default_home="/root")
        assert fs.home == "/root"
        assert fs.is_dir("/root")


class TestTree:
    def test_implied_directories(self, fs):
        assert fs.is_dir("/home/agent/Documents")
        assert fs.is_dir("/home")
        assert fs.is_file("/home/agent/notes.txt")
        assert not fs.exists("/nope")

    def test_list_dir(self, fs):
        dirs, files = fs.list_dir("/home/agent")
        assert dirs == ["Documents", "Downloads"]
        assert files == ["notes.txt"]
        _, files = fs.list_dir("/home/agent", show_hidden=True)
        assert files == [".bashrc", "notes.txt"]

    def test_list_not_a_directory(self, fs):
        with pytest.raises(NotADirectoryError):
            fs.list_dir("/home/agent/notes.txt")

    def test_encrypted_entry(self, fs):
        f = fs.read("/home/agent/Documents/passwords.enc")
        assert f.encrypted is True
        assert f.unlocks == "server-01"
        assert f.cipher == "basic"
        assert f.size == len("admin:hunter2")

    def test_none_content_is_empty(self, fs):
        assert fs.read("/var/log/auth.log").content == ""

    def test_write_over_directory(self, fs):
        with pytest.raises(IsADirectoryError):
            fs.write("/home/agent/Documents", "x")

    def test_remove(self, fs):
        assert fs.remove("/home/agent/notes.txt") is True
        assert fs.remove("/home/agent/notes.txt") is False
        assert "/home/agent/notes.txt" not in fs.walk_files()
