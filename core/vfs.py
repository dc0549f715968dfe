"""Virtual file system — per-host in-memory file trees."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class VFile:
    name: str
    content: str = ""
    encrypted: bool = False
    unlocks: str | None = None   # host id whose credentials this file holds
    cipher: str = "basic"

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))


class VirtualFS:
    """Flat path → VFile map with implied directories."""

    def __init__(self, home: str = "/") -> None:
        self.home = home
        self._files: dict[str, VFile] = {}
        self._dirs: set[str] = {"/"}
        self.mkdir(home)

    @classmethod
    def from_spec(cls, spec: dict[str, Any] | None, *, default_home: str = "/") -> VirtualFS:
        spec = spec or {}
        fs = cls(spec.get("home", default_home))
        for d in spec.get("directories", ()):
            fs.mkdir(d)
        for path, entry in (spec.get("files") or {}).items():
            if isinstance(entry, dict):
                fs.write(path, entry.get("content", ""),
                         encrypted=entry.get("encrypted", False),
                         unlocks=entry.get("unlocks"),
                         cipher=entry.get("cipher", "basic"))
            else:
                fs.write(path, "" if entry is None else str(entry))
        return fs

    # ── Paths ────────────────────────────────────────────────────

    def normalize(self, path: str, cwd: str | None = None) -> str:
        cwd = cwd or self.home
        if not path or path == "~":
            return self.home
        if path.startswith("~/"):
            path = posixpath.join(self.home, path[2:])
        elif not path.startswith("/"):
            path = posixpath.join(cwd, path)
        norm = posixpath.normpath(path)
        # normpath keeps a leading "//"
        if norm.startswith("//"):
            norm = "/" + norm.lstrip("/")
        return norm

    def is_dir(self, path: str) -> bool:
        return path in self._dirs

    def is_file(self, path: str) -> bool:
        return path in self._files

    def exists(self, path: str) -> bool:
        return self.is_dir(path) or self.is_file(path)

    # ── Mutation ─────────────────────────────────────────────────

    def mkdir(self, path: str) -> None:
        path = self.normalize(path, "/")
        while path not in self._dirs:
            self._dirs.add(path)
            path = posixpath.dirname(path)

    def write(self, path: str, content: str, *, encrypted: bool = False,
              unlocks: str | None = None, cipher: str = "basic") -> VFile:
        path = self.normalize(path, "/")
        if path in self._dirs:
            raise IsADirectoryError(path)
        self.mkdir(posixpath.dirname(path))
        f = VFile(posixpath.basename(path), content, encrypted, unlocks, cipher)
        self._files[path] = f
        return f

    def remove(self, path: str) -> bool:
        return self._files.pop(path, None) is not None

    # ── Reading ──────────────────────────────────────────────────

    def read(self, path: str) -> VFile | None:
        return self._files.get(path)

    def list_dir(self, path: str, *, show_hidden: bool = False) -> tuple[list[str], list[str]]:
        """(subdirectory names, file names) directly under path, sorted."""
        if path not in self._dirs:
            raise NotADirectoryError(path)
        dirs = sorted(
            posixpath.basename(d) for d in self._dirs
            if d != path and posixpath.dirname(d) == path
        )
        files = sorted(
            posixpath.basename(p) for p in self._files
            if posixpath.dirname(p) == path
        )
        if not show_hidden:
            dirs = [d for d in dirs if not d.startswith(".")]
            files = [f for f in files if not f.startswith(".")]
        return dirs, files

    def walk_files(self) -> list[str]:
        return sorted(self._files)
