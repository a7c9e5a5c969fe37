"""Resumable folder uploads into remote Git repositories."""

from .constants import UPLOADER_VERSION as __version__
from .core import ProgressEvent, UploadMode, UploadResult, UploadState
from .orchestrator import UploadOrchestrator
from .progress_store import ProgressStore
from .retry import RetryPolicy
from .walker import DirectoryWalker, FileEntry

__all__ = [
    "DirectoryWalker",
    "FileEntry",
    "ProgressEvent",
    "ProgressStore",
    "RetryPolicy",
    "UploadMode",
    "UploadOrchestrator",
    "UploadResult",
    "UploadState",
    "__version__",
]
