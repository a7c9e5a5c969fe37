"""Typed client for repository, blob, tree, commit and ref operations.

Every method goes through the client's ``RetryPolicy``; callers only ever
see fatal errors or exhausted retries. "Not found" answers that drive the
bootstrap/batch decision are returned as values, not raised.
"""

import base64
import logging
from typing import Iterable, List, Optional
from urllib.parse import quote

from .core import ContentEntry, RepositoryInfo, RepositoryProbe, TreeEntry
from .errors import NotFoundError, ValidationError
from .retry import RetryPolicy
from .session import Session

logger = logging.getLogger(__name__)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class RemoteRepositoryClient:
    """Facade over the hosting service's Git data and contents APIs."""

    def __init__(self, session: Session, retry: Optional[RetryPolicy] = None):
        self.session = session
        self.retry = retry or RetryPolicy()

    @property
    def owner(self) -> str:
        return self.session.owner

    def repository_url(self, repo: str) -> str:
        return self.session.repository_url(repo)

    def _repo_path(self, repo: str, suffix: str = "") -> str:
        return f"/repos/{quote(self.owner, safe='')}/{quote(repo, safe='')}{suffix}"

    def _call(self, method: str, path: str, json: Optional[dict] = None, params: Optional[dict] = None):
        return self.retry.call(
            self.session.request, method, path,
            json=json, params=params, description=f"{method} {path}",
        )

    # ============= Repository State =============

    def get_repository(self, repo: str) -> RepositoryProbe:
        """Check whether ``repo`` exists and return its default branch."""
        try:
            data = self._call("GET", self._repo_path(repo))
        except NotFoundError:
            return RepositoryProbe(exists=False)
        return RepositoryProbe(exists=True, default_branch=data.get("default_branch"))

    def get_branch_head(self, repo: str, branch: str) -> Optional[str]:
        """Commit id the branch points at, or None if it does not resolve."""
        try:
            data = self._call("GET", self._repo_path(repo, f"/git/ref/heads/{quote(branch)}"))
        except NotFoundError:
            return None
        except ValidationError:
            # 409 "Git Repository is empty"
            return None
        return data["object"]["sha"]

    def get_commit(self, repo: str, commit_id: str) -> str:
        """Tree id of a commit."""
        data = self._call("GET", self._repo_path(repo, f"/git/commits/{commit_id}"))
        return data["tree"]["sha"]

    # ============= Object Creation =============

    def create_blob(self, repo: str, data: bytes) -> str:
        """Store ``data`` as a blob and return its content id.

        Blobs are content-addressed, so repeating the call is harmless.
        """
        result = self._call(
            "POST", self._repo_path(repo, "/git/blobs"),
            json={"content": _b64(data), "encoding": "base64"},
        )
        return result["sha"]

    def create_tree(
        self, repo: str, entries: Iterable[TreeEntry], base_tree_id: Optional[str] = None
    ) -> str:
        body = {"tree": [entry.to_api() for entry in entries]}
        if base_tree_id:
            body["base_tree"] = base_tree_id
        result = self._call("POST", self._repo_path(repo, "/git/trees"), json=body)
        return result["sha"]

    def create_commit(
        self, repo: str, tree_id: str, message: str, parent_id: Optional[str] = None
    ) -> str:
        """Create a commit. Not idempotent: two calls make two commits."""
        body = {
            "message": message,
            "tree": tree_id,
            "parents": [parent_id] if parent_id else [],
        }
        result = self._call("POST", self._repo_path(repo, "/git/commits"), json=body)
        return result["sha"]

    # ============= Refs =============

    def update_ref(self, repo: str, branch: str, commit_id: str) -> None:
        self._call(
            "PATCH", self._repo_path(repo, f"/git/refs/heads/{quote(branch)}"),
            json={"sha": commit_id},
        )

    def create_ref(self, repo: str, branch: str, commit_id: str) -> None:
        self._call(
            "POST", self._repo_path(repo, "/git/refs"),
            json={"ref": f"refs/heads/{branch}", "sha": commit_id},
        )

    def set_branch(self, repo: str, branch: str, commit_id: str) -> None:
        """Point ``branch`` at ``commit_id``, creating the ref if needed."""
        try:
            self.update_ref(repo, branch, commit_id)
        except (NotFoundError, ValidationError):
            logger.debug("Ref heads/%s missing in %s, creating it", branch, repo)
            self.create_ref(repo, branch, commit_id)

    # ============= Contents API =============

    def _content_sha(self, repo: str, path: str, branch: Optional[str]) -> Optional[str]:
        params = {"ref": branch} if branch else None
        try:
            data = self._call("GET", self._repo_path(repo, f"/contents/{quote(path)}"), params=params)
        except (NotFoundError, ValidationError):
            return None
        if isinstance(data, dict):
            return data.get("sha")
        return None

    def put_file_direct(
        self, repo: str, branch: str, path: str, data: bytes, message: str,
        fallback_to_default: bool = False,
    ) -> str:
        """Write a single file with its own commit and return the commit id.

        Used when the repository has no commit to base a tree on. If the
        branch-qualified write is refused and the path already exists (a
        write that landed before an interruption), it is overwritten. If the
        branch itself is missing, the write goes to the default branch only
        when ``fallback_to_default`` is set; otherwise the refusal is raised.
        """
        url = self._repo_path(repo, f"/contents/{quote(path)}")
        body = {"message": message, "content": _b64(data), "branch": branch}
        try:
            result = self._call("PUT", url, json=body)
        except (NotFoundError, ValidationError) as e:
            existing = self._content_sha(repo, path, branch)
            if existing:
                logger.debug("%s already present in %s, overwriting", path, repo)
                body["sha"] = existing
            elif fallback_to_default:
                logger.debug("Write to branch %s refused (%s), using default branch", branch, e)
                body.pop("branch")
            else:
                raise
            result = self._call("PUT", url, json=body)
        return result["commit"]["sha"]

    def get_file_content(self, repo: str, path: str, ref: Optional[str] = None) -> bytes:
        """Raw bytes of the file at ``path``.

        Files too large for the contents API come back without inline
        content and are read through their blob instead.
        """
        params = {"ref": ref} if ref else None
        data = self._call("GET", self._repo_path(repo, f"/contents/{quote(path)}"), params=params)
        if isinstance(data, list) or data.get("type") != "file":
            raise ValidationError(f"{path} is not a file")
        if data.get("encoding") == "base64" and data.get("content"):
            return base64.b64decode(data["content"])
        blob = self._call("GET", self._repo_path(repo, f"/git/blobs/{data['sha']}"))
        return base64.b64decode(blob["content"])

    # ============= Browsing =============

    def list_repositories(self, per_page: int = 100) -> List[RepositoryInfo]:
        """Repositories of the authenticated user, most recently updated first."""
        repos: List[RepositoryInfo] = []
        page = 1
        while True:
            data = self._call(
                "GET", "/user/repos",
                params={"sort": "updated", "per_page": per_page, "page": page},
            )
            repos.extend(RepositoryInfo.model_validate(item) for item in data)
            if len(data) < per_page:
                return repos
            page += 1

    def get_contents(self, repo: str, path: str = "", ref: Optional[str] = None) -> List[ContentEntry]:
        """List a directory (or describe a single file) in ``repo``."""
        suffix = f"/contents/{quote(path)}" if path else "/contents"
        params = {"ref": ref} if ref else None
        data = self._call("GET", self._repo_path(repo, suffix), params=params)
        items = data if isinstance(data, list) else [data]
        return [ContentEntry.model_validate(item) for item in items]

    def create_repository(self, name: str, description: str = "", private: bool = False) -> RepositoryInfo:
        """Create an empty repository (no initial commit)."""
        data = self._call(
            "POST", "/user/repos",
            json={"name": name, "description": description, "private": private, "auto_init": False},
        )
        logger.info("Created repository %s", data.get("full_name", name))
        return RepositoryInfo.model_validate(data)
