"""Utility functions for repo-uploader."""

import os
import tempfile
from datetime import datetime
from pathlib import Path

import platformdirs

from .constants import APP_AUTHOR, APP_NAME


def get_config_dir() -> Path:
    """Platform-appropriate configuration directory.

    - Linux: ~/.config/repo-uploader
    - macOS: ~/Library/Application Support/repo-uploader
    - Windows: %LOCALAPPDATA%/repo-uploader/repo-uploader
    """
    return Path(platformdirs.user_config_dir(APP_NAME, APP_AUTHOR))


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically write text to file with crash safety.

    1. Writes to temp file with fsync to ensure content is on disk
    2. Atomic rename to target path (appears all-at-once)
    3. Fsync parent directory to ensure rename is durable

    Directory fsync is best-effort (not supported on Windows).

    Args:
        path: Target file path
        text: Text content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Create temp file in same directory
    with tempfile.NamedTemporaryFile(
        mode="w",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.tmp-",
        suffix="",
        encoding="utf-8",
    ) as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
        tmp = Path(f.name)

    try:
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY
        dirfd = os.open(str(path.parent), flags)
        try:
            os.fsync(dirfd)
        finally:
            os.close(dirfd)
    except OSError:
        # Expected on Windows or filesystems without directory fsync
        pass


def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def local_timestamp() -> str:
    """Current local time for commit messages."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")
