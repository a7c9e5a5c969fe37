"""Core data models for repo-uploader.

Upload Strategy:
----------------
A repository that already has a commit on the target branch is updated in
one shot: every file becomes a blob, all blobs go into a single tree based
on the branch's current tree, one commit points at that tree, and the branch
ref is moved to the commit ("batch" mode).

An empty or missing repository has no commit to base a tree on, so each file
is written with the contents API, one commit per file ("bootstrap" mode).

In both modes every confirmed write is checkpointed before the next one
starts, which is what makes an interrupted upload resumable.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import BLOB_FILE_MODE


# ============= Upload State =============

class UploadMode(str, Enum):
    """Strategy selected for a run."""
    BOOTSTRAP = "bootstrap"
    BATCH = "batch"


class UploadPhase(str, Enum):
    """Orchestrator state machine."""
    INIT = "init"
    ENUMERATING = "enumerating"
    DETERMINING_REMOTE_STATE = "determining_remote_state"
    BOOTSTRAP_EMPTY_REPO = "bootstrap_empty_repo"
    BATCH_TREE_UPLOAD = "batch_tree_upload"
    COMMITTING = "committing"
    UPDATING_REF = "updating_ref"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadPhase.DONE, UploadPhase.FAILED)


class UploadState(BaseModel):
    """Checkpoint of confirmed remote writes for one repository.

    Serialized as ``{"uploadedBlobs": {...}, "uploadedFiles": [...]}``.
    """
    model_config = ConfigDict(populate_by_name=True)

    uploaded_blobs: Dict[str, str] = Field(default_factory=dict, alias="uploadedBlobs")  # path -> blob id
    uploaded_files: List[str] = Field(default_factory=list, alias="uploadedFiles")

    def record_blob(self, path: str, blob_id: str) -> None:
        self.uploaded_blobs[path] = blob_id

    def record_file(self, path: str) -> None:
        if path not in self.uploaded_files:
            self.uploaded_files.append(path)

    def has_file(self, path: str) -> bool:
        return path in self.uploaded_files

    @property
    def is_empty(self) -> bool:
        return not self.uploaded_blobs and not self.uploaded_files

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class RemoteRefState(BaseModel):
    """Branch state of the target repository, resolved fresh every run.

    ``default_branch`` is the branch the upload writes to. When it does not
    exist yet but the repository's own default branch has commits, the new
    branch starts from that head and ``source_branch`` names it.
    """
    default_branch: str
    repository_exists: bool = True
    repository_default_branch: Optional[str] = None
    parent_commit_id: Optional[str] = None
    base_tree_id: Optional[str] = None
    source_branch: Optional[str] = None

    @property
    def mode(self) -> UploadMode:
        return UploadMode.BATCH if self.parent_commit_id else UploadMode.BOOTSTRAP

    @property
    def repository_empty(self) -> bool:
        return self.parent_commit_id is None

    @property
    def may_write_default_branch(self) -> bool:
        """Whether a refused branch write may retry without a branch.

        Only for an empty repository whose target is its own default
        branch, where the branch-less write lands on the same branch.
        """
        if not self.repository_empty:
            return False
        return self.repository_default_branch in (None, self.default_branch)


# ============= Remote Objects =============

class RepositoryProbe(BaseModel):
    """Result of a repository existence check."""
    exists: bool
    default_branch: Optional[str] = None


class TreeEntry(BaseModel):
    """One file in a tree creation request."""
    path: str
    blob_id: str
    mode: str = BLOB_FILE_MODE

    def to_api(self) -> dict:
        return {"path": self.path, "mode": self.mode, "type": "blob", "sha": self.blob_id}


class RepositoryInfo(BaseModel):
    """Summary of a repository for listings."""
    name: str
    full_name: str
    default_branch: Optional[str] = None
    private: bool = False
    html_url: str = ""
    description: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def _empty_description(cls, v):
        return v or None


class ContentEntry(BaseModel):
    """One item of a repository directory listing."""
    name: str
    path: str
    type: str  # "file", "dir", "symlink", "submodule"
    size: int = 0
    sha: Optional[str] = None


# ============= Progress and Results =============

class ProgressEvent(BaseModel):
    """Progress notification for listeners."""
    message: str
    percent: int = Field(ge=0, le=100)


class UploadResult(BaseModel):
    """Outcome of one orchestrator run."""
    success: bool
    repo: str
    url: Optional[str] = None
    files_count: int = 0
    mode: Optional[UploadMode] = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    can_resume: bool = False
    skipped: List[str] = Field(default_factory=list)

    def summary(self) -> str:
        if self.success:
            return f"Uploaded {self.files_count} files to {self.url}"
        resume = "can resume" if self.can_resume else "cannot resume"
        return f"Upload to {self.repo} failed ({self.error_category}, {resume}): {self.error}"
