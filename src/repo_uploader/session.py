"""Authenticated session against the hosting service.

A ``Session`` is built once per credential and handed to the client and
orchestrator explicitly, so several sessions can coexist in one process.
"""

import logging
import socket
from typing import Any, Dict, Optional

import requests

from .constants import API_VERSION, DEFAULT_API_URL, DEFAULT_WEB_URL, UPLOADER_VERSION
from .errors import (
    AuthError,
    NetworkError,
    NetworkTimeoutError,
    NotFoundError,
    RateLimitError,
    RemoteError,
    ServerError,
    ValidationError,
)
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def _error_message(resp: requests.Response) -> str:
    """Best-effort extraction of the service's error message."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason or ""
    if isinstance(data, dict):
        return str(data.get("message") or data)
    return str(data)


def raise_for_response(resp: requests.Response, what: str) -> None:
    """Map an HTTP error response onto the typed error hierarchy.

    Args:
        resp: Response to check
        what: Short description of the request for error messages

    Raises:
        AuthError, NotFoundError, ValidationError, RateLimitError,
        ServerError or RemoteError for any status >= 400
    """
    status = resp.status_code
    if status < 400:
        return

    message = f"{what} failed ({status}): {_error_message(resp)}"
    if status == 401:
        raise AuthError(message, status=status)
    if status == 403:
        # Primary rate limit is reported as 403 with an exhausted quota header
        if resp.headers.get("X-RateLimit-Remaining") == "0" or "rate limit" in message.lower():
            raise RateLimitError(message, status=status)
        raise AuthError(message, status=status)
    if status == 404:
        raise NotFoundError(message, status=status)
    if status in (409, 422):
        raise ValidationError(message, status=status)
    if status == 429:
        raise RateLimitError(message, status=status)
    if status >= 500:
        raise ServerError(message, status=status)
    raise RemoteError(message, status=status)


# Text of the underlying socket error as urllib3 reports it
_CONNECTION_MARKERS = (
    ("failed to resolve", "ENOTFOUND"),
    ("name or service not known", "ENOTFOUND"),
    ("nodename nor servname", "ENOTFOUND"),
    ("getaddrinfo failed", "ENOTFOUND"),
    ("temporary failure in name resolution", "ENOTFOUND"),
    ("connection reset", "ECONNRESET"),
    ("connection refused", "ECONNREFUSED"),
)


def _connection_error_code(exc: BaseException) -> Optional[str]:
    """Errno-style code for a connection failure, or None if it is unclear.

    ``requests`` nests the socket error inside urllib3 errors, so every
    level is inspected before falling back to the message text.
    """
    pending = [exc]
    seen = set()
    while pending and len(seen) < 16:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return "ENOTFOUND"
        if isinstance(current, ConnectionResetError):
            return "ECONNRESET"
        if isinstance(current, ConnectionRefusedError):
            return "ECONNREFUSED"
        nested = list(getattr(current, "args", ()))
        nested += [getattr(current, "reason", None), current.__cause__, current.__context__]
        pending.extend(n for n in nested if isinstance(n, BaseException))

    text = str(exc).lower()
    for marker, code in _CONNECTION_MARKERS:
        if marker in text:
            return code
    return None


class Session:
    """Bearer-token session for one authenticated user."""

    def __init__(
        self,
        token: str,
        owner: str,
        api_url: str = DEFAULT_API_URL,
        web_url: str = DEFAULT_WEB_URL,
        timeout: float = 60.0,
        http: Optional[requests.Session] = None,
    ):
        """Create a session for an already-known owner.

        Args:
            token: Opaque bearer credential
            owner: Login of the authenticated user (repository owner)
            api_url: REST API base URL
            web_url: Browser base URL used for result links
            timeout: Per-request timeout in seconds
            http: Optional pre-configured requests session
        """
        if not token:
            raise AuthError("No access token provided")
        self.owner = owner
        self.api_url = api_url.rstrip("/")
        self.web_url = web_url.rstrip("/")
        self.timeout = timeout
        self.http = http if http is not None else requests.Session()
        self.http.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": f"repo-uploader/{UPLOADER_VERSION}",
        })

    @classmethod
    def authenticate(
        cls,
        token: str,
        api_url: str = DEFAULT_API_URL,
        web_url: str = DEFAULT_WEB_URL,
        timeout: float = 60.0,
        retry: Optional[RetryPolicy] = None,
        http: Optional[requests.Session] = None,
    ) -> "Session":
        """Resolve the token owner and return a ready session.

        Raises:
            AuthError: If the token is missing or rejected
        """
        session = cls(token, owner="", api_url=api_url, web_url=web_url, timeout=timeout, http=http)
        policy = retry or RetryPolicy(max_attempts=1)
        user = policy.call(session.request, "GET", "/user", description="GET /user")
        session.owner = user["login"]
        logger.info("Authenticated as %s", session.owner)
        return session

    def url(self, path: str) -> str:
        return f"{self.api_url}/{path.lstrip('/')}"

    def repository_url(self, repo: str) -> str:
        """Canonical browser URL for a repository of this owner."""
        return f"{self.web_url}/{self.owner}/{repo}"

    def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send one API request and return the decoded JSON body.

        Transport failures are mapped to ``NetworkError`` /
        ``NetworkTimeoutError``; HTTP failures via ``raise_for_response``.
        """
        what = f"{method} {path}"
        logger.debug("%s", what)
        try:
            resp = self.http.request(
                method, self.url(path), json=json, params=params, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise NetworkTimeoutError(f"{what} timed out: {e}", code="ETIMEDOUT") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"{what} network error: {e}", code=_connection_error_code(e)) from e

        raise_for_response(resp, what)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
