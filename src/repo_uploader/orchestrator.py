"""Resumable upload of a local folder into a remote repository.

State machine::

    init -> enumerating -> determining_remote_state
         -> bootstrap_empty_repo -------------------------------> done
         -> batch_tree_upload -> committing -> updating_ref ----> done

Any non-terminal state can move to ``failed``. A failed run leaves its
checkpoint in place so the next run with the same repository name picks up
where this one stopped.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed, wait
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from .client import RemoteRepositoryClient
from .constants import (
    ADD_FILE_MESSAGE,
    BATCH_COMMIT_MESSAGE,
    DEFAULT_BRANCH,
    INITIAL_COMMIT_MESSAGE,
    PROGRESS_BOOTSTRAP_START,
    PROGRESS_COMMITTING,
    PROGRESS_DONE,
    PROGRESS_ENUMERATED,
    PROGRESS_FILES_SPAN,
    PROGRESS_FILES_START,
    PROGRESS_PREPARING,
    PROGRESS_REMOTE_RESOLVED,
    PROGRESS_RESUMED,
    PROGRESS_UPDATING_REF,
)
from .core import (
    ProgressEvent,
    RemoteRefState,
    TreeEntry,
    UploadMode,
    UploadPhase,
    UploadResult,
    UploadState,
)
from .errors import UploadCancelledError, UploadInProgressError, ValidationError, error_category
from .progress_store import ProgressStore
from .utils import local_timestamp
from .walker import DirectoryWalker, FileEntry

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


def file_percent(index: int, total: int) -> int:
    """Percent after finishing file ``index`` (0-based) of ``total``."""
    return PROGRESS_FILES_START + ((index + 1) * PROGRESS_FILES_SPAN) // total


class ProgressReporter:
    """Forwards progress to a listener, never letting percent go backwards."""

    def __init__(self, listener: Optional[ProgressListener] = None):
        self.listener = listener
        self.percent = 0

    def emit(self, message: str, percent: int) -> None:
        self.percent = max(self.percent, min(int(percent), 100))
        logger.debug("[%3d%%] %s", self.percent, message)
        if self.listener is not None:
            self.listener(ProgressEvent(message=message, percent=self.percent))


class UploadOrchestrator:
    """Drives one folder upload from enumeration to branch update.

    Args:
        client: Remote repository client (already authenticated)
        store: Checkpoint store
        listener: Optional progress callback
        default_branch: Branch used when neither the caller nor the remote names one
        blob_workers: Concurrent blob uploads in batch mode (1 = sequential)
        cancel_event: Checked between units of work; set it to stop the run
        extra_ignore: Additional gitignore-style patterns for the walk
    """

    def __init__(
        self,
        client: RemoteRepositoryClient,
        store: ProgressStore,
        listener: Optional[ProgressListener] = None,
        default_branch: str = DEFAULT_BRANCH,
        blob_workers: int = 1,
        cancel_event: Optional[threading.Event] = None,
        extra_ignore: Iterable[str] = (),
    ):
        if blob_workers < 1:
            raise ValueError("blob_workers must be at least 1")
        self.client = client
        self.store = store
        self.listener = listener
        self.default_branch = default_branch
        self.blob_workers = blob_workers
        self.cancel_event = cancel_event
        self.extra_ignore = tuple(extra_ignore)
        self.phase = UploadPhase.INIT
        self._progress = ProgressReporter(listener)

    # ============= Entry Point =============

    def run(
        self,
        root: Union[str, Path],
        repo: str,
        branch: Optional[str] = None,
        commit_message: Optional[str] = None,
        create_missing: bool = False,
    ) -> UploadResult:
        """Upload ``root`` into ``repo`` and report the outcome.

        Never raises for upload failures; the result carries the error
        category and whether a later run can resume.
        """
        self.phase = UploadPhase.INIT
        self._progress = ProgressReporter(self.listener)
        repo = (repo or "").strip()
        if not repo:
            return self._fail(repo, ValidationError("Repository name is required"), can_resume=False)

        try:
            with self.store.lock(repo):
                return self._run_locked(Path(root), repo, branch, commit_message, create_missing)
        except UploadInProgressError as e:
            return self._fail(repo, e, can_resume=True)

    def _run_locked(
        self,
        root: Path,
        repo: str,
        branch: Optional[str],
        commit_message: Optional[str],
        create_missing: bool,
    ) -> UploadResult:
        skipped: List[str] = []
        mode: Optional[UploadMode] = None
        try:
            self._progress.emit("Preparing upload...", PROGRESS_PREPARING)
            self._enter(UploadPhase.ENUMERATING)
            walker = DirectoryWalker(root, extra_ignore=self.extra_ignore)
            files = walker.entries()
            skipped = [s.relative_path for s in walker.skipped]
            self._progress.emit(f"Found {len(files)} files", PROGRESS_ENUMERATED)
            if not files:
                raise ValidationError("Folder is empty or contains only ignored files")
        except (ValidationError, OSError) as e:
            return self._fail(repo, e, can_resume=False, skipped=skipped)

        try:
            state = self.store.load(repo)
            if not state.is_empty:
                done = len(set(state.uploaded_files) | set(state.uploaded_blobs))
                self._progress.emit(
                    f"Resuming upload: {done}/{len(files)} files already uploaded", PROGRESS_RESUMED
                )

            self._enter(UploadPhase.DETERMINING_REMOTE_STATE)
            remote = self._resolve_remote(repo, branch, create_missing)
            mode = remote.mode
            if (mode == UploadMode.BATCH and remote.source_branch is None
                    and state.uploaded_files and not state.uploaded_blobs):
                # The head is our own interrupted bootstrap; finish it file by file
                logger.info("Continuing interrupted bootstrap of %s", repo)
                mode = UploadMode.BOOTSTRAP

            if mode == UploadMode.BOOTSTRAP:
                self._enter(UploadPhase.BOOTSTRAP_EMPTY_REPO)
                self._bootstrap(repo, files, state, remote, commit_message)
            else:
                self._enter(UploadPhase.BATCH_TREE_UPLOAD)
                self._batch(repo, files, state, remote, commit_message)

            self.store.clear(repo)
            self._enter(UploadPhase.DONE)
            self._progress.emit("Upload complete!", PROGRESS_DONE)
        except Exception as e:
            return self._fail(repo, e, can_resume=True, mode=mode, skipped=skipped)

        url = self.client.repository_url(repo)
        logger.info("Uploaded %d files to %s (%s mode)", len(files), url, mode.value)
        return UploadResult(
            success=True,
            repo=repo,
            url=url,
            files_count=len(files),
            mode=mode,
            skipped=skipped,
        )

    # ============= Phases =============

    def _resolve_remote(self, repo: str, branch: Optional[str], create_missing: bool) -> RemoteRefState:
        probe = self.client.get_repository(repo)
        source = None
        if probe.exists:
            remote_default = probe.default_branch
            target = branch or remote_default or self.default_branch
            head = self.client.get_branch_head(repo, target)
            if head is None and remote_default and target != remote_default:
                # New branch in a non-empty repository starts at the default head
                head = self.client.get_branch_head(repo, remote_default)
                if head:
                    source = remote_default
        else:
            remote_default = None
            if create_missing:
                remote_default = self.client.create_repository(repo).default_branch
            target = branch or remote_default or self.default_branch
            head = None

        base_tree = self.client.get_commit(repo, head) if head else None
        remote = RemoteRefState(
            default_branch=target,
            repository_exists=probe.exists,
            repository_default_branch=remote_default,
            parent_commit_id=head,
            base_tree_id=base_tree,
            source_branch=source,
        )
        if source:
            message = f"Creating branch {target} from {source}..."
        elif head:
            message = f"Repository exists, updating branch {target}..."
        else:
            message = f"Repository is empty, initializing branch {target}..."
        self._progress.emit(message, PROGRESS_REMOTE_RESOLVED)
        logger.info("Remote %s/%s: %s mode", repo, target, remote.mode.value)
        return remote

    def _bootstrap(
        self,
        repo: str,
        files: List[FileEntry],
        state: UploadState,
        remote: RemoteRefState,
        commit_message: Optional[str],
    ) -> None:
        """One contents-API commit per file; no tree to base a batch on yet."""
        self._progress.emit("Uploading files to empty repository...", PROGRESS_BOOTSTRAP_START)
        total = len(files)
        for index, entry in enumerate(files):
            self._check_cancelled()
            path = entry.relative_path
            if state.has_file(path):
                self._progress.emit(
                    f"Skipping already uploaded: {path} ({index + 1}/{total})",
                    file_percent(index, total),
                )
                continue

            if index == 0:
                message = commit_message or INITIAL_COMMIT_MESSAGE
            else:
                message = ADD_FILE_MESSAGE.format(path=path)
            self.client.put_file_direct(
                repo, remote.default_branch, path, entry.read_bytes(), message,
                fallback_to_default=remote.may_write_default_branch,
            )
            state.record_file(path)
            self.store.save(repo, state)
            self._progress.emit(f"Uploaded {index + 1}/{total}: {path}", file_percent(index, total))

    def _batch(
        self,
        repo: str,
        files: List[FileEntry],
        state: UploadState,
        remote: RemoteRefState,
        commit_message: Optional[str],
    ) -> None:
        """Blobs, then exactly one tree, one commit and one ref update."""
        self._progress.emit("Creating file blobs...", PROGRESS_FILES_START)
        if self.blob_workers > 1:
            self._upload_blobs_parallel(repo, files, state)
        else:
            self._upload_blobs(repo, files, state)

        self._check_cancelled()
        self._enter(UploadPhase.COMMITTING)
        self._progress.emit("Creating commit...", PROGRESS_COMMITTING)
        entries = [
            TreeEntry(path=entry.relative_path, blob_id=state.uploaded_blobs[entry.relative_path])
            for entry in files
        ]
        tree_id = self.client.create_tree(repo, entries, base_tree_id=remote.base_tree_id)
        message = commit_message or BATCH_COMMIT_MESSAGE.format(timestamp=local_timestamp())
        commit_id = self.client.create_commit(repo, tree_id, message, parent_id=remote.parent_commit_id)

        self._enter(UploadPhase.UPDATING_REF)
        self._progress.emit("Updating branch reference...", PROGRESS_UPDATING_REF)
        self.client.set_branch(repo, remote.default_branch, commit_id)

    def _upload_blobs(self, repo: str, files: List[FileEntry], state: UploadState) -> None:
        total = len(files)
        for index, entry in enumerate(files):
            self._check_cancelled()
            path = entry.relative_path
            if path not in state.uploaded_blobs:
                blob_id = self.client.create_blob(repo, entry.read_bytes())
                state.record_blob(path, blob_id)
                self.store.save(repo, state)
            self._progress.emit(f"Processed {index + 1}/{total}: {path}", file_percent(index, total))

    def _upload_blobs_parallel(self, repo: str, files: List[FileEntry], state: UploadState) -> None:
        """Bounded-concurrency blob phase.

        Workers only talk to the remote; recording and checkpointing happen
        here on the orchestrating thread as each blob is confirmed.
        """
        total = len(files)
        pending = [entry for entry in files if entry.relative_path not in state.uploaded_blobs]
        done = total - len(pending)
        if done:
            self._progress.emit(f"Processed {done}/{total} (from checkpoint)", file_percent(done - 1, total))

        def create(entry: FileEntry) -> str:
            return self.client.create_blob(repo, entry.read_bytes())

        with ThreadPoolExecutor(max_workers=self.blob_workers, thread_name_prefix="blob") as pool:
            futures = {pool.submit(create, entry): entry for entry in pending}
            try:
                for future in as_completed(futures):
                    entry = futures[future]
                    state.record_blob(entry.relative_path, future.result())
                    self.store.save(repo, state)
                    done += 1
                    self._progress.emit(
                        f"Processed {done}/{total}: {entry.relative_path}", file_percent(done - 1, total)
                    )
                    self._check_cancelled()
            except BaseException:
                for future in futures:
                    future.cancel()
                wait(futures)
                self._record_finished(repo, futures, state)
                raise

    def _record_finished(self, repo: str, futures: Dict, state: UploadState) -> None:
        """Checkpoint blobs that were confirmed while the phase was failing."""
        changed = False
        for future, entry in futures.items():
            if future.cancelled() or future.exception() is not None:
                continue
            if entry.relative_path not in state.uploaded_blobs:
                state.record_blob(entry.relative_path, future.result())
                changed = True
        if changed:
            self.store.save(repo, state)

    # ============= Helpers =============

    def _enter(self, phase: UploadPhase) -> None:
        logger.debug("Upload phase: %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise UploadCancelledError("Upload cancelled; run again to resume")

    def _fail(
        self,
        repo: str,
        exc: BaseException,
        can_resume: bool,
        mode: Optional[UploadMode] = None,
        skipped: Optional[List[str]] = None,
    ) -> UploadResult:
        self._enter(UploadPhase.FAILED)
        category = error_category(exc)
        logger.error("Upload to %s failed (%s): %s", repo or "<unnamed>", category, exc)
        return UploadResult(
            success=False,
            repo=repo,
            mode=mode,
            error=str(exc),
            error_category=category,
            can_resume=can_resume,
            skipped=skipped or [],
        )
