"""Durable per-repository upload checkpoints.

One JSON file per repository name records the writes that the remote has
already confirmed::

    {"uploadedBlobs": {"src/app.py": "3b18e5..."}, "uploadedFiles": ["README.md"]}

A missing or unreadable file means "start fresh"; it is never an error.
"""

from __future__ import annotations

import contextlib
import json
import logging
import re
from pathlib import Path
from typing import Iterator, List, Optional

import portalocker
from pydantic import ValidationError as SchemaError

from .constants import LOCK_FILE_SUFFIX, STATE_DIR, STATE_FILE_PREFIX, STATE_FILE_SUFFIX
from .core import UploadState
from .errors import CheckpointError, UploadInProgressError
from .utils import atomic_write_text, get_config_dir

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _safe_name(repo: str) -> str:
    return _UNSAFE_CHARS.sub("_", repo)


class ProgressStore:
    """Checkpoint files in a user-writable directory, keyed by repository."""

    def __init__(self, state_dir: Optional[Path] = None):
        self.state_dir = Path(state_dir) if state_dir else get_config_dir() / STATE_DIR

    def path_for(self, repo: str) -> Path:
        return self.state_dir / f"{STATE_FILE_PREFIX}{_safe_name(repo)}{STATE_FILE_SUFFIX}"

    def exists(self, repo: str) -> bool:
        return self.path_for(repo).exists()

    def load(self, repo: str) -> UploadState:
        """Load the checkpoint for ``repo``; empty state if absent or corrupt."""
        path = self.path_for(repo)
        if not path.exists():
            return UploadState()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return UploadState.model_validate(data)
        except (OSError, ValueError, SchemaError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            logger.warning("Ignoring unreadable checkpoint %s: %s", path, e)
            return UploadState()

    def save(self, repo: str, state: UploadState) -> None:
        """Persist ``state`` synchronously and atomically."""
        path = self.path_for(repo)
        try:
            atomic_write_text(path, json.dumps(state.to_json_dict()))
        except OSError as e:
            raise CheckpointError(f"Could not write checkpoint {path}: {e}") from e

    def clear(self, repo: str) -> None:
        """Delete the checkpoint for ``repo`` (after a successful run)."""
        self.path_for(repo).unlink(missing_ok=True)

    def list_checkpoints(self) -> List[str]:
        """Repository keys (sanitized names) that have a checkpoint."""
        if not self.state_dir.is_dir():
            return []
        names = []
        for path in sorted(self.state_dir.glob(f"{STATE_FILE_PREFIX}*{STATE_FILE_SUFFIX}")):
            names.append(path.name[len(STATE_FILE_PREFIX):-len(STATE_FILE_SUFFIX)])
        return names

    @contextlib.contextmanager
    def lock(self, repo: str) -> Iterator[None]:
        """Hold the per-repository run lock.

        Raises:
            UploadInProgressError: If another process holds the lock
        """
        self.state_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self.state_dir / f"{STATE_FILE_PREFIX}{_safe_name(repo)}{LOCK_FILE_SUFFIX}"
        lock = portalocker.Lock(str(lock_path), "w", timeout=0, fail_when_locked=True)
        try:
            lock.acquire()
        except portalocker.exceptions.LockException as e:
            raise UploadInProgressError(repo) from e
        try:
            yield
        finally:
            # Removed while still held; Windows refuses, leaving it for the next run
            try:
                lock_path.unlink(missing_ok=True)
            except OSError as e:
                logger.debug("Could not remove lock file %s: %s", lock_path, e)
            lock.release()
