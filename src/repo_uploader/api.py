"""Stable API for repo-uploader.

Small surface for embedding the uploader in other tools (a GUI, a job
runner) without reaching into the orchestrator internals.

Example:
    >>> from repo_uploader.api import BackgroundUpload, make_client, make_orchestrator
    >>> client = make_client(token)
    >>> upload = BackgroundUpload(make_orchestrator(client), "site", "demo").start()
    >>> for event in upload.iter_events():
    ...     print(event.percent, event.message)
    >>> upload.result().url
    'https://github.com/octocat/demo'
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from pathlib import Path
from typing import Iterator, Optional, Union

import requests

from .client import RemoteRepositoryClient
from .config import UploaderConfig, load_config
from .core import ProgressEvent, UploadResult
from .orchestrator import ProgressListener, UploadOrchestrator
from .progress_store import ProgressStore
from .retry import RetryPolicy
from .session import Session


def make_retry_policy(config: UploaderConfig) -> RetryPolicy:
    return RetryPolicy(max_attempts=config.max_attempts, base_delay=config.base_delay)


def make_client(
    token: str,
    config: Optional[UploaderConfig] = None,
    http: Optional[requests.Session] = None,
) -> RemoteRepositoryClient:
    """Authenticate ``token`` and return a client bound to that session.

    Raises:
        AuthError: If the token is missing or rejected
    """
    config = config or load_config()
    retry = make_retry_policy(config)
    session = Session.authenticate(
        token,
        api_url=config.api_url,
        web_url=config.web_url,
        timeout=config.request_timeout,
        retry=retry,
        http=http,
    )
    return RemoteRepositoryClient(session, retry)


def make_orchestrator(
    client: RemoteRepositoryClient,
    config: Optional[UploaderConfig] = None,
    listener: Optional[ProgressListener] = None,
    blob_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> UploadOrchestrator:
    config = config or load_config()
    return UploadOrchestrator(
        client,
        ProgressStore(config.resolved_state_dir()),
        listener=listener,
        default_branch=config.default_branch,
        blob_workers=blob_workers or config.blob_workers,
        cancel_event=cancel_event,
        extra_ignore=config.extra_ignore,
    )


def upload_folder(
    folder: Union[str, Path],
    repo: str,
    token: str,
    branch: Optional[str] = None,
    commit_message: Optional[str] = None,
    create_missing: bool = False,
    listener: Optional[ProgressListener] = None,
    config: Optional[UploaderConfig] = None,
) -> UploadResult:
    """Upload ``folder`` to ``repo`` on the calling thread.

    Returns:
        UploadResult; failures are reported in the result, not raised
    """
    config = config or load_config()
    client = make_client(token, config)
    try:
        orchestrator = make_orchestrator(client, config, listener=listener)
        return orchestrator.run(folder, repo, branch, commit_message, create_missing)
    finally:
        client.session.close()


class BackgroundUpload:
    """Run an upload on a worker thread and stream its progress.

    Progress events are published on ``events`` (a ``queue.Queue``); the
    stream ends with a sentinel that ``iter_events`` consumes for you.
    ``cancel()`` asks the orchestrator to stop before its next unit of work.
    """

    _DONE = object()

    def __init__(
        self,
        orchestrator: UploadOrchestrator,
        root: Union[str, Path],
        repo: str,
        branch: Optional[str] = None,
        commit_message: Optional[str] = None,
        create_missing: bool = False,
    ):
        self.orchestrator = orchestrator
        self.events: "queue.Queue" = queue.Queue()
        self._args = (root, repo, branch, commit_message, create_missing)
        self._listener = orchestrator.listener
        if orchestrator.cancel_event is None:
            orchestrator.cancel_event = threading.Event()
        self.cancel_event = orchestrator.cancel_event
        orchestrator.listener = self._publish
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="upload")
        self._future: Optional[Future] = None

    def _publish(self, event: ProgressEvent) -> None:
        self.events.put(event)
        if self._listener is not None:
            self._listener(event)

    def _run(self) -> UploadResult:
        try:
            return self.orchestrator.run(*self._args)
        finally:
            self.events.put(self._DONE)

    def start(self) -> "BackgroundUpload":
        if self._future is None:
            self._future = self._executor.submit(self._run)
        return self

    def iter_events(self, timeout: Optional[float] = None) -> Iterator[ProgressEvent]:
        """Yield progress events until the upload finishes.

        Raises:
            queue.Empty: If no event arrives within ``timeout`` seconds
        """
        while True:
            item = self.events.get(timeout=timeout)
            if item is self._DONE:
                return
            yield item

    def cancel(self) -> None:
        self.cancel_event.set()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: Optional[float] = None) -> UploadResult:
        if self._future is None:
            raise RuntimeError("Upload not started")
        try:
            return self._future.result(timeout=timeout)
        finally:
            if self._future.done():
                self._executor.shutdown(wait=False)

    def __enter__(self) -> "BackgroundUpload":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.cancel()
        self._executor.shutdown(wait=True)
