"""Tests for the HTTP session and repository client.

The ``requests`` transport is replaced with a Mock; responses are queued
per test and every request is inspected through ``http.request.call_args``.
"""

import base64
import json
import socket
from unittest.mock import MagicMock, Mock

import pytest
import requests

from repo_uploader.client import RemoteRepositoryClient
from repo_uploader.core import TreeEntry
from repo_uploader.errors import (
    AuthError,
    NetworkError,
    NetworkTimeoutError,
    NotFoundError,
    RateLimitError,
    RemoteError,
    ServerError,
    ValidationError,
)
from repo_uploader.retry import RetryPolicy
from repo_uploader.session import Session, raise_for_response


def make_response(status=200, body=None, headers=None):
    resp = Mock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.reason = "Reason"
    if body is None:
        resp.content = b""
        resp.text = ""
        resp.json = Mock(side_effect=ValueError("no body"))
    else:
        resp.content = json.dumps(body).encode()
        resp.text = json.dumps(body)
        resp.json = Mock(return_value=body)
    return resp


@pytest.fixture
def http():
    mock = MagicMock(spec=requests.Session)
    mock.headers = {}
    return mock


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def session(http):
    return Session("tok", owner="octocat", http=http)


@pytest.fixture
def client(session, sleeps):
    return RemoteRepositoryClient(session, RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleeps.append))


def sent(http, index=-1):
    """(method, url, json, params) of a recorded request."""
    call = http.request.call_args_list[index]
    method, url = call.args
    return method, url, call.kwargs.get("json"), call.kwargs.get("params")


class TestResponseMapping:

    @pytest.mark.parametrize("status,headers,error", [
        (401, {}, AuthError),
        (403, {}, AuthError),
        (403, {"X-RateLimit-Remaining": "0"}, RateLimitError),
        (404, {}, NotFoundError),
        (409, {}, ValidationError),
        (422, {}, ValidationError),
        (429, {}, RateLimitError),
        (500, {}, ServerError),
        (502, {}, ServerError),
        (418, {}, RemoteError),
    ])
    def test_status_to_error(self, status, headers, error):
        resp = make_response(status, {"message": "nope"}, headers)

        with pytest.raises(error) as exc_info:
            raise_for_response(resp, "GET /thing")

        assert exc_info.value.status == status
        assert "GET /thing failed" in str(exc_info.value)
        assert "nope" in str(exc_info.value)

    def test_secondary_rate_limit_message(self):
        resp = make_response(403, {"message": "You have exceeded a secondary rate limit."})

        with pytest.raises(RateLimitError):
            raise_for_response(resp, "POST /blobs")

    def test_success_passes(self):
        raise_for_response(make_response(201, {"sha": "abc"}), "POST /blobs")

    def test_non_json_error_body(self):
        resp = make_response(502)
        resp.text = "<html>Bad Gateway</html>"

        with pytest.raises(ServerError, match="Bad Gateway"):
            raise_for_response(resp, "GET /")


class TestSession:

    def test_headers(self, session, http):
        assert http.headers["Authorization"] == "Bearer tok"
        assert http.headers["Accept"] == "application/vnd.github+json"
        assert http.headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert http.headers["User-Agent"].startswith("repo-uploader/")

    def test_missing_token(self, http):
        with pytest.raises(AuthError):
            Session("", owner="octocat", http=http)

    def test_request_decodes_json(self, session, http):
        http.request.return_value = make_response(200, {"login": "octocat"})

        assert session.request("GET", "/user") == {"login": "octocat"}
        http.request.assert_called_once_with(
            "GET", "https://api.github.com/user", json=None, params=None, timeout=60.0
        )

    def test_no_content(self, session, http):
        http.request.return_value = make_response(204)

        assert session.request("DELETE", "/thing") is None

    def test_timeout_maps_to_network_timeout(self, session, http):
        http.request.side_effect = requests.exceptions.ReadTimeout("read timed out")

        with pytest.raises(NetworkTimeoutError) as exc_info:
            session.request("GET", "/user")
        assert exc_info.value.code == "ETIMEDOUT"

    def test_connection_error_maps_to_network_error(self, session, http):
        http.request.side_effect = requests.exceptions.ConnectionError("Connection reset by peer")

        with pytest.raises(NetworkError) as exc_info:
            session.request("GET", "/user")
        assert exc_info.value.code == "ECONNRESET"

    @pytest.mark.parametrize("error,code", [
        (requests.exceptions.ConnectionError(socket.gaierror(-2, "Name or service not known")), "ENOTFOUND"),
        (requests.exceptions.ConnectionError("Failed to resolve 'api.github.com'"), "ENOTFOUND"),
        (requests.exceptions.ConnectionError(ConnectionRefusedError(111, "refused")), "ECONNREFUSED"),
        (requests.exceptions.ConnectionError("boom"), None),
    ])
    def test_connection_error_code_follows_cause(self, session, http, error, code):
        http.request.side_effect = error

        with pytest.raises(NetworkError) as exc_info:
            session.request("GET", "/user")
        assert exc_info.value.code == code

    def test_authenticate_resolves_owner(self, http):
        http.request.return_value = make_response(200, {"login": "hubot"})

        session = Session.authenticate("tok", api_url="https://ghe.example.com/api/v3/", http=http)

        assert session.owner == "hubot"
        assert sent(http)[1] == "https://ghe.example.com/api/v3/user"

    def test_authenticate_rejected(self, http):
        http.request.return_value = make_response(401, {"message": "Bad credentials"})

        with pytest.raises(AuthError, match="Bad credentials"):
            Session.authenticate("tok", http=http)

    def test_repository_url(self, session):
        assert session.repository_url("demo") == "https://github.com/octocat/demo"

    def test_context_manager_closes(self, http):
        with Session("tok", owner="octocat", http=http):
            pass
        http.close.assert_called_once()


class TestRepositoryState:

    def test_get_repository(self, client, http):
        http.request.return_value = make_response(200, {"default_branch": "trunk"})

        probe = client.get_repository("demo")

        assert probe.exists and probe.default_branch == "trunk"
        assert sent(http)[1] == "https://api.github.com/repos/octocat/demo"

    def test_get_repository_missing(self, client, http):
        http.request.return_value = make_response(404, {"message": "Not Found"})

        assert not client.get_repository("demo").exists

    def test_branch_head(self, client, http):
        http.request.return_value = make_response(200, {"object": {"sha": "c0ffee"}})

        assert client.get_branch_head("demo", "main") == "c0ffee"
        assert sent(http)[1].endswith("/repos/octocat/demo/git/ref/heads/main")

    @pytest.mark.parametrize("status", [404, 409])
    def test_branch_head_unresolved(self, client, http, status):
        http.request.return_value = make_response(status, {"message": "Git Repository is empty."})

        assert client.get_branch_head("demo", "main") is None

    def test_get_commit_tree(self, client, http):
        http.request.return_value = make_response(200, {"sha": "c0ffee", "tree": {"sha": "7ree"}})

        assert client.get_commit("demo", "c0ffee") == "7ree"


class TestObjects:

    def test_create_blob(self, client, http):
        http.request.return_value = make_response(201, {"sha": "b10b"})

        assert client.create_blob("demo", b"\x00binary\xff") == "b10b"
        method, url, body, _ = sent(http)
        assert (method, url) == ("POST", "https://api.github.com/repos/octocat/demo/git/blobs")
        assert body == {"content": base64.b64encode(b"\x00binary\xff").decode(), "encoding": "base64"}

    def test_create_tree_with_base(self, client, http):
        http.request.return_value = make_response(201, {"sha": "7ree"})

        client.create_tree("demo", [TreeEntry(path="a.txt", blob_id="b1")], base_tree_id="base")

        assert sent(http)[2] == {
            "tree": [{"path": "a.txt", "mode": "100644", "type": "blob", "sha": "b1"}],
            "base_tree": "base",
        }

    def test_create_tree_without_base(self, client, http):
        http.request.return_value = make_response(201, {"sha": "7ree"})

        client.create_tree("demo", [TreeEntry(path="a.txt", blob_id="b1")])

        assert "base_tree" not in sent(http)[2]

    def test_create_commit(self, client, http):
        http.request.return_value = make_response(201, {"sha": "c1"})

        assert client.create_commit("demo", "7ree", "msg", parent_id="c0") == "c1"
        assert sent(http)[2] == {"message": "msg", "tree": "7ree", "parents": ["c0"]}

    def test_root_commit_has_no_parents(self, client, http):
        http.request.return_value = make_response(201, {"sha": "c1"})

        client.create_commit("demo", "7ree", "msg")

        assert sent(http)[2]["parents"] == []


class TestRefs:

    def test_set_branch_updates(self, client, http):
        http.request.return_value = make_response(200, {"ref": "refs/heads/main"})

        client.set_branch("demo", "main", "c1")

        assert http.request.call_count == 1
        method, url, body, _ = sent(http)
        assert method == "PATCH"
        assert url.endswith("/git/refs/heads/main")
        assert body == {"sha": "c1"}

    def test_set_branch_creates_missing_ref(self, client, http):
        http.request.side_effect = [
            make_response(422, {"message": "Reference does not exist"}),
            make_response(201, {"ref": "refs/heads/feature"}),
        ]

        client.set_branch("demo", "feature", "c1")

        method, url, body, _ = sent(http)
        assert (method, url) == ("POST", "https://api.github.com/repos/octocat/demo/git/refs")
        assert body == {"ref": "refs/heads/feature", "sha": "c1"}


class TestPutFileDirect:

    def test_write(self, client, http):
        http.request.return_value = make_response(201, {"commit": {"sha": "c1"}})

        assert client.put_file_direct("demo", "main", "dir/a b.txt", b"hi", "Add a") == "c1"
        method, url, body, _ = sent(http)
        assert method == "PUT"
        assert url.endswith("/repos/octocat/demo/contents/dir/a%20b.txt")
        assert body == {"message": "Add a", "content": "aGk=", "branch": "main"}

    def test_missing_branch_falls_back_to_default(self, client, http):
        http.request.side_effect = [
            make_response(404, {"message": "Branch main not found"}),
            make_response(404, {"message": "Not Found"}),
            make_response(201, {"commit": {"sha": "c1"}}),
        ]

        assert client.put_file_direct("demo", "main", "a.txt", b"hi", "msg", fallback_to_default=True) == "c1"
        assert "branch" not in sent(http)[2]

    def test_missing_branch_without_fallback_raises(self, client, http):
        http.request.side_effect = [
            make_response(404, {"message": "Branch dev not found"}),
            make_response(404, {"message": "Not Found"}),
        ]

        with pytest.raises(NotFoundError, match="Branch dev not found"):
            client.put_file_direct("demo", "dev", "a.txt", b"hi", "msg")
        assert http.request.call_count == 2
        assert sent(http, 0)[2]["branch"] == "dev"
        assert sent(http)[0] == "GET"

    def test_existing_file_is_overwritten(self, client, http):
        http.request.side_effect = [
            make_response(422, {"message": "\"sha\" wasn't supplied."}),
            make_response(200, {"type": "file", "sha": "old"}),
            make_response(200, {"commit": {"sha": "c2"}}),
        ]

        assert client.put_file_direct("demo", "main", "a.txt", b"hi", "msg") == "c2"
        body = sent(http)[2]
        assert body["sha"] == "old"
        assert body["branch"] == "main"
        assert sent(http, 1)[3] == {"ref": "main"}


class TestRetry:

    def test_gateway_error_is_retried(self, client, http, sleeps):
        http.request.side_effect = [
            make_response(502, {"message": "Bad Gateway"}),
            make_response(201, {"sha": "b10b"}),
        ]

        assert client.create_blob("demo", b"x") == "b10b"
        assert sleeps == [1.0]

    def test_auth_error_is_not_retried(self, client, http, sleeps):
        http.request.return_value = make_response(401, {"message": "Bad credentials"})

        with pytest.raises(AuthError):
            client.create_blob("demo", b"x")
        assert http.request.call_count == 1
        assert sleeps == []

    def test_bad_request_is_not_retried_whatever_the_repo_name(self, client, http, sleeps):
        http.request.return_value = make_response(400, {"message": "Problems parsing JSON"})

        with pytest.raises(RemoteError) as exc_info:
            client.create_blob("network-tools", b"x")
        assert exc_info.value.status == 400
        assert http.request.call_count == 1
        assert sleeps == []

    def test_internal_error_is_not_retried(self, client, http, sleeps):
        http.request.return_value = make_response(500, {"message": "Server Error"})

        with pytest.raises(ServerError):
            client.create_commit("timeout-lab", "7ree", "msg")
        assert http.request.call_count == 1
        assert sleeps == []

    def test_exhausted_retries(self, client, http, sleeps):
        http.request.side_effect = requests.exceptions.ConnectTimeout("timed out")

        with pytest.raises(NetworkTimeoutError):
            client.create_commit("demo", "7ree", "msg")
        assert http.request.call_count == 3
        assert sleeps == [1.0, 2.0]


class TestBrowsing:

    def _repo(self, name):
        return {"name": name, "full_name": f"octocat/{name}", "default_branch": "main",
                "private": False, "html_url": f"https://github.com/octocat/{name}", "description": ""}

    def test_list_repositories_paginates(self, client, http):
        http.request.side_effect = [
            make_response(200, [self._repo("a"), self._repo("b")]),
            make_response(200, [self._repo("c")]),
        ]

        repos = client.list_repositories(per_page=2)

        assert [r.name for r in repos] == ["a", "b", "c"]
        assert repos[0].description is None
        assert sent(http)[3] == {"sort": "updated", "per_page": 2, "page": 2}

    def test_get_contents_directory(self, client, http):
        http.request.return_value = make_response(200, [
            {"name": "src", "path": "src", "type": "dir", "size": 0, "sha": "t1"},
            {"name": "a.txt", "path": "a.txt", "type": "file", "size": 3, "sha": "b1"},
        ])

        entries = client.get_contents("demo", ref="main")

        assert [(e.name, e.type) for e in entries] == [("src", "dir"), ("a.txt", "file")]
        assert sent(http)[1].endswith("/repos/octocat/demo/contents")
        assert sent(http)[3] == {"ref": "main"}

    def test_get_contents_single_file(self, client, http):
        http.request.return_value = make_response(
            200, {"name": "a.txt", "path": "docs/a.txt", "type": "file", "size": 3, "sha": "b1"}
        )

        entries = client.get_contents("demo", "docs/a.txt")

        assert len(entries) == 1 and entries[0].path == "docs/a.txt"

    def test_get_file_content_inline(self, client, http):
        encoded = base64.encodebytes(b"# demo\n" * 20).decode()
        http.request.return_value = make_response(
            200, {"type": "file", "path": "README.md", "sha": "b1", "encoding": "base64", "content": encoded}
        )

        assert client.get_file_content("demo", "README.md", ref="dev") == b"# demo\n" * 20
        assert sent(http)[1].endswith("/repos/octocat/demo/contents/README.md")
        assert sent(http)[3] == {"ref": "dev"}

    def test_get_file_content_large_file_reads_blob(self, client, http):
        http.request.side_effect = [
            make_response(200, {"type": "file", "path": "big.bin", "sha": "b1g", "encoding": "none", "content": ""}),
            make_response(200, {"sha": "b1g", "encoding": "base64", "content": base64.b64encode(b"\x00\xff").decode()}),
        ]

        assert client.get_file_content("demo", "big.bin") == b"\x00\xff"
        assert sent(http)[1].endswith("/repos/octocat/demo/git/blobs/b1g")

    def test_get_file_content_rejects_directory(self, client, http):
        http.request.return_value = make_response(200, [
            {"name": "a.txt", "path": "src/a.txt", "type": "file", "size": 3, "sha": "b1"},
        ])

        with pytest.raises(ValidationError, match="src is not a file"):
            client.get_file_content("demo", "src")

    def test_create_repository(self, client, http):
        http.request.return_value = make_response(201, self._repo("fresh"))

        info = client.create_repository("fresh", description="new", private=True)

        assert info.full_name == "octocat/fresh"
        assert sent(http)[2] == {"name": "fresh", "description": "new", "private": True, "auto_init": False}
