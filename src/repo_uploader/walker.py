"""Deterministic directory enumeration for uploads."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

from .ignore import IgnoreSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """A regular file selected for upload."""
    relative_path: str  # POSIX, relative to the walk root
    absolute_path: Path

    def read_bytes(self) -> bytes:
        return self.absolute_path.read_bytes()


@dataclass(frozen=True)
class SkippedEntry:
    """An entry the walker refused to upload."""
    relative_path: str
    reason: str


def _is_utf8(name: str) -> bool:
    # Undecodable bytes come back from the OS as lone surrogates
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _sort_key(entry: os.DirEntry) -> str:
    # Ordering directories as "name/" makes the depth-first walk match a
    # global lexicographic sort of relative paths
    if entry.is_dir(follow_symlinks=False):
        return entry.name + "/"
    return entry.name


class DirectoryWalker:
    """Lazy, restartable enumeration of the regular files under a root.

    Each iteration starts a fresh walk, so the same walker can be consumed
    more than once. Files are yielded in lexicographic order of their
    relative path. Symlinks, special files and names that are not valid
    UTF-8 are never yielded; they are collected in ``skipped`` instead.

    Example:
        >>> walker = DirectoryWalker(Path("site"))
        >>> [entry.relative_path for entry in walker]
        ['css/main.css', 'index.html']
    """

    def __init__(
        self,
        root: Union[str, Path],
        ignore: Optional[IgnoreSpec] = None,
        extra_ignore: Iterable[str] = (),
    ):
        self.root = Path(root)
        self._ignore = ignore
        self._extra_ignore = tuple(extra_ignore)
        self.skipped: List[SkippedEntry] = []

    def __iter__(self) -> Iterator[FileEntry]:
        # Root problems surface here rather than on the first next()
        self._check_root()
        ignore = self._ignore or IgnoreSpec(self.root, self._extra_ignore)
        self.skipped = []
        return self._walk(self.root, "", ignore)

    def entries(self) -> List[FileEntry]:
        """Materialize the full walk."""
        return list(self)

    def _check_root(self) -> None:
        if not self.root.exists():
            raise FileNotFoundError(f"Folder not found: {self.root}")
        if not self.root.is_dir():
            raise NotADirectoryError(f"Not a folder: {self.root}")
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise PermissionError(f"Folder is not readable: {self.root}")

    def _skip(self, relpath: str, reason: str) -> None:
        self.skipped.append(SkippedEntry(relative_path=relpath, reason=reason))
        logger.warning("Skipping %r: %s", relpath, reason)

    def _walk(self, directory: Path, prefix: str, ignore: IgnoreSpec) -> Iterator[FileEntry]:
        with os.scandir(directory) as it:
            entries = sorted(it, key=_sort_key)

        for entry in entries:
            relpath = prefix + entry.name
            if not _is_utf8(entry.name):
                self._skip(relpath, "name is not valid UTF-8")
                continue

            if entry.is_dir(follow_symlinks=False):
                if ignore.should_traverse(relpath):
                    yield from self._walk(Path(entry.path), relpath + "/", ignore)
                continue

            if ignore.is_ignored(relpath):
                continue

            if entry.is_symlink():
                self._skip(relpath, "symbolic link")
            elif entry.is_file(follow_symlinks=False):
                yield FileEntry(relative_path=relpath, absolute_path=Path(entry.path))
            else:
                self._skip(relpath, "not a regular file")
