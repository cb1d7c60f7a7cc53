"""Filesystem views used by the migration steps.

Steps never read the disk directly; they ask a view. ``RealView`` reads the
disk as it is. ``ShadowView`` reads the disk through the log of changes a
dry run has planned so far, so the dry run sees the tree an apply run would
see at the same point.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import errno
import fnmatch
import os
from pathlib import Path
import stat

_MAX_LINK_HOPS = 40


def _norm(path: Path | str) -> Path:
    return Path(os.path.normpath(os.path.abspath(str(path))))


def within(path: Path, base: Path) -> bool:
    return path == base or path.is_relative_to(base)


def strictly_within(path: Path, base: Path) -> bool:
    return path != base and path.is_relative_to(base)


def _has_magic(part: str) -> bool:
    return any(c in part for c in "*?[")


class FileView:
    """Read-only questions the steps ask about the tree."""

    def lexists(self, path: Path) -> bool:
        raise NotImplementedError

    def is_symlink(self, path: Path) -> bool:
        raise NotImplementedError

    def readlink(self, path: Path) -> str:
        raise NotImplementedError

    def is_dir(self, path: Path) -> bool:
        raise NotImplementedError

    def is_file(self, path: Path) -> bool:
        raise NotImplementedError

    def read_bytes(self, path: Path) -> bytes:
        raise NotImplementedError

    def listdir(self, path: Path) -> list[str]:
        raise NotImplementedError

    def mode(self, path: Path) -> int | None:
        """Permission bits of ``path`` itself (symlinks not followed)."""
        raise NotImplementedError

    def resolve(self, path: Path) -> Path:
        raise NotImplementedError

    def exists(self, path: Path) -> bool:
        return self.lexists(self.resolve(path))

    def read_text(self, path: Path) -> str:
        return self.read_bytes(path).decode("utf-8")

    def samefile(self, a: Path, b: Path) -> bool:
        return self.exists(a) and self.exists(b) and self.resolve(a) == self.resolve(b)

    def glob(self, root: Path, pattern: str) -> list[Path]:
        """Match ``pattern`` (``/``-separated, fnmatch per component) under ``root``."""

        parts = [p for p in pattern.split("/") if p]
        matches = [Path(root)]
        for part in parts:
            found: list[Path] = []
            for base in matches:
                if not self.is_dir(base):
                    continue
                if _has_magic(part):
                    names = [n for n in self.listdir(base) if fnmatch.fnmatchcase(n, part)]
                else:
                    names = [part] if self.lexists(base / part) else []
                found.extend(base / n for n in names)
            matches = found
        return sorted(set(matches))

    def walk_files(self, root: Path, skip: tuple[Path, ...] = ()) -> list[Path]:
        """Regular files anywhere under ``root``.

        Symlinks are neither listed nor followed. A directory in ``skip`` is
        not entered.
        """

        found: list[Path] = []
        if not self.is_dir(root) or self.is_symlink(root):
            return found
        pending = [Path(root)]
        while pending:
            base = pending.pop()
            for name in self.listdir(base):
                path = base / name
                if path in skip or self.is_symlink(path):
                    continue
                if self.is_dir(path):
                    pending.append(path)
                elif self.is_file(path):
                    found.append(path)
        return sorted(found)


class RealView(FileView):
    def lexists(self, path: Path) -> bool:
        return os.path.lexists(path)

    def is_symlink(self, path: Path) -> bool:
        return os.path.islink(path)

    def readlink(self, path: Path) -> str:
        return os.readlink(path)

    def is_dir(self, path: Path) -> bool:
        return os.path.isdir(path)

    def is_file(self, path: Path) -> bool:
        return os.path.isfile(path)

    def read_bytes(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def listdir(self, path: Path) -> list[str]:
        return sorted(os.listdir(path))

    def mode(self, path: Path) -> int | None:
        try:
            return os.lstat(path).st_mode & 0o7777
        except OSError:
            return None

    def resolve(self, path: Path) -> Path:
        return Path(os.path.realpath(path))


@dataclass(frozen=True)
class _Event:
    kind: str
    path: Path
    dst: Path | None = None
    data: bytes | None = None
    target: str | None = None
    mode: int | None = None


@dataclass(frozen=True)
class _Node:
    kind: str
    origin: Path | None = None
    data: bytes | None = None
    target: str | None = None
    mode: int | None = None


_MISSING = _Node("missing")


class ShadowView(FileView):
    """The real tree with a log of planned changes laid over it.

    Lookups walk the log backwards: the newest event that says something
    about a path wins, a planned move maps the path back to where it came
    from, and a path no event mentions is read from disk. All recorded
    paths are physical (no symlinked ancestors).
    """

    def __init__(self) -> None:
        self._events: list[_Event] = []

    # -- recording -------------------------------------------------------

    def _physical(self, path: Path) -> Path:
        p = _norm(path)
        if p.parent == p:
            return p
        return self.resolve(p.parent) / p.name

    def record_put(self, path: Path, data: bytes, mode: int) -> None:
        self._events.append(_Event("put", self._physical(path), data=data, mode=mode))

    def record_mkdir(self, path: Path, mode: int | None = None) -> None:
        self._events.append(_Event("mkdir", self._physical(path), mode=mode))

    def record_symlink(self, path: Path, target: str) -> None:
        self._events.append(_Event("symlink", self._physical(path), target=str(target)))

    def record_remove(self, path: Path) -> None:
        self._events.append(_Event("remove", self._physical(path)))

    def record_move(self, src: Path, dst: Path) -> None:
        self._events.append(_Event("move", self._physical(src), dst=self._physical(dst)))

    def record_chmod(self, path: Path, mode: int) -> None:
        self._events.append(_Event("chmod", self._physical(path), mode=mode))

    # -- lookup ----------------------------------------------------------

    @staticmethod
    def _real(path: Path) -> _Node:
        try:
            st = os.lstat(path)
        except OSError:
            return _MISSING
        if stat.S_ISLNK(st.st_mode):
            return _Node("link", origin=path, target=os.readlink(path))
        if stat.S_ISDIR(st.st_mode):
            return _Node("dir", origin=path, mode=st.st_mode & 0o7777)
        return _Node("file", origin=path, mode=st.st_mode & 0o7777)

    @staticmethod
    def _settle(node: _Node, implied_dir: bool, mode: int | None) -> _Node:
        if implied_dir and node.kind != "dir":
            node = _Node("dir", mode=0o755)
        if mode is not None:
            node = replace(node, mode=mode)
        return node

    def _node(self, path: Path, upto: int | None = None) -> _Node:
        end = len(self._events) if upto is None else upto
        implied_dir = False
        mode: int | None = None
        for i in range(end - 1, -1, -1):
            ev = self._events[i]
            if ev.kind == "chmod":
                if ev.path == path and mode is None:
                    mode = ev.mode
                continue
            if ev.kind == "remove":
                if within(path, ev.path):
                    return self._settle(_MISSING, implied_dir, mode)
                continue
            if ev.kind == "move":
                if ev.dst is None:
                    raise ValueError(f"move event without destination: {ev.path}")
                if within(path, ev.dst):
                    # ev.path is the move source
                    earlier = self._node(ev.path / path.relative_to(ev.dst), i)
                    return self._settle(earlier, implied_dir, mode)
                if within(path, ev.path):
                    return self._settle(_MISSING, implied_dir, mode)
                if strictly_within(ev.dst, path):
                    implied_dir = True
                continue
            if ev.path == path:
                if ev.kind == "put":
                    node = _Node("file", data=ev.data, mode=ev.mode)
                elif ev.kind == "symlink":
                    node = _Node("link", target=ev.target)
                else:
                    earlier = self._node(path, i)
                    node = earlier if earlier.kind == "dir" else _Node("dir", mode=ev.mode or 0o755)
                return self._settle(node, implied_dir, mode)
            if strictly_within(ev.path, path):
                implied_dir = True
        return self._settle(self._real(path), implied_dir, mode)

    def _names(self, path: Path, upto: int) -> set[str]:
        names: set[str] = set()
        for i in range(upto - 1, -1, -1):
            ev = self._events[i]
            if ev.kind == "remove" and within(path, ev.path):
                return names
            created = ev.path
            if ev.kind == "move":
                if ev.dst is None:
                    raise ValueError(f"move event without destination: {ev.path}")
                if within(path, ev.dst):
                    return names | self._names(ev.path / path.relative_to(ev.dst), i)
                if within(path, ev.path):
                    return names
                created = ev.dst
            elif ev.kind == "chmod":
                continue
            if strictly_within(created, path):
                names.add(created.relative_to(path).parts[0])
        if os.path.isdir(path) and not os.path.islink(path):
            names.update(os.listdir(path))
        return names

    def _lnode(self, path: Path) -> _Node:
        return self._node(self._physical(path))

    def _fnode(self, path: Path) -> _Node:
        return self._node(self.resolve(path))

    # -- FileView --------------------------------------------------------

    def resolve(self, path: Path) -> Path:
        original = _norm(path)
        current = Path(original.anchor or "/")
        pending = list(original.parts[1:])
        hops = 0
        while pending:
            name = pending.pop(0)
            if name in ("", "."):
                continue
            if name == "..":
                current = current.parent
                continue
            candidate = current / name
            node = self._node(candidate)
            if node.kind == "link":
                hops += 1
                if hops > _MAX_LINK_HOPS:
                    return candidate.joinpath(*pending)
                target = Path(str(node.target))
                if target.is_absolute():
                    current = Path(target.anchor)
                    pending = list(target.parts[1:]) + pending
                else:
                    pending = list(target.parts) + pending
                continue
            current = candidate
        return current

    def lexists(self, path: Path) -> bool:
        return self._lnode(path).kind != "missing"

    def is_symlink(self, path: Path) -> bool:
        return self._lnode(path).kind == "link"

    def readlink(self, path: Path) -> str:
        node = self._lnode(path)
        if node.kind != "link":
            raise OSError(errno.EINVAL, "not a symbolic link", str(path))
        return str(node.target)

    def is_dir(self, path: Path) -> bool:
        return self._fnode(path).kind == "dir"

    def is_file(self, path: Path) -> bool:
        return self._fnode(path).kind == "file"

    def read_bytes(self, path: Path) -> bytes:
        node = self._fnode(path)
        if node.kind == "missing":
            raise FileNotFoundError(errno.ENOENT, "no such file", str(path))
        if node.kind != "file":
            raise IsADirectoryError(errno.EISDIR, "not a regular file", str(path))
        if node.data is not None:
            return node.data
        if node.origin is None:
            raise FileNotFoundError(errno.ENOENT, "no content recorded", str(path))
        return node.origin.read_bytes()

    def listdir(self, path: Path) -> list[str]:
        real = self.resolve(path)
        node = self._node(real)
        if node.kind == "missing":
            raise FileNotFoundError(errno.ENOENT, "no such directory", str(path))
        if node.kind != "dir":
            raise NotADirectoryError(errno.ENOTDIR, "not a directory", str(path))
        names = self._names(real, len(self._events))
        return sorted(n for n in names if self._node(real / n).kind != "missing")

    def mode(self, path: Path) -> int | None:
        node = self._lnode(path)
        if node.kind == "missing":
            return None
        return node.mode
