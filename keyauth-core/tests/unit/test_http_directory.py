"""Tests for keyauth_core.directory.remote.HttpDirectory using httpx.MockTransport."""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from keyauth_core.auth.client import AuthenticatorClient
from keyauth_core.crypto.keys import public_key_line, sign_bytes
from keyauth_core.directory.remote import HttpDirectory, SignatureReply
from keyauth_core.errors import DirectoryError
from keyauth_core.wire.codec import b64url_decode, b64url_encode


def _directory(handler) -> HttpDirectory:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpDirectory("keys.example.org", 8443, client=client)


def test_list_keys_requests_authorized_keys_path() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="# no keys\n")

    body = _directory(handler).list_keys("alice@example.com")

    assert body == "# no keys\n"
    assert seen[0].method == "GET"
    assert str(seen[0].url) == "https://keys.example.org:8443/authorizedKeys/alice@example.com"


def test_submit_signature_posts_form_fields() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "signature": "c2ln"})

    reply = _directory(handler).submit_signature(
        "alice", "Portal", "SHA256:abc", "prompt text", "Authorize", "cGF5bG9hZA", 4
    )

    assert reply == SignatureReply(success=True, signature="c2ln")
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/app/api/authenticator/signPayload"
    form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
    assert form == {
        "username": "alice",
        "fingerprint": "SHA256:abc",
        "remoteName": "Portal",
        "text": "prompt text",
        "authorizeText": "Authorize",
        "flags": "4",
        "payload": "cGF5bG9hZA",
    }


def test_missing_reply_fields_default_to_empty() -> None:
    reply = _directory(lambda r: httpx.Response(200, json={"success": False})).submit_signature(
        "a", "b", "c", "d", "e", "f", 0
    )
    assert reply == SignatureReply(success=False)


def test_build_sign_url() -> None:
    directory = _directory(lambda r: httpx.Response(404))
    assert directory.build_sign_url("abc") == "https://keys.example.org:8443/authenticator/sign/abc"
    assert directory.hostname() == "keys.example.org"
    assert directory.port() == 8443


def test_http_error_status_becomes_directory_error() -> None:
    directory = _directory(lambda r: httpx.Response(500, text="boom"))
    with pytest.raises(DirectoryError, match="HTTP 500"):
        directory.list_keys("alice")


def test_non_json_signing_reply_is_directory_error() -> None:
    directory = _directory(lambda r: httpx.Response(200, text="<html>login</html>"))
    with pytest.raises(DirectoryError, match="not JSON"):
        directory.submit_signature("a", "b", "c", "d", "e", "f", 0)


def test_non_object_signing_reply_is_directory_error() -> None:
    directory = _directory(lambda r: httpx.Response(200, json=["success"]))
    with pytest.raises(DirectoryError):
        directory.submit_signature("a", "b", "c", "d", "e", "f", 0)


def test_timeout_becomes_directory_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(DirectoryError, match="timed out"):
        _directory(handler).list_keys("alice", timeout=0.5)


def test_timeout_is_forwarded_to_request() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.extensions["timeout"])
        return httpx.Response(200, text="")

    _directory(handler).list_keys("alice", timeout=1.5)
    assert seen[0]["read"] == 1.5


def test_supplied_client_is_not_closed() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with HttpDirectory("keys.example.org", client=client):
        pass
    assert not client.is_closed


def test_end_to_end_with_client(ed25519_key) -> None:
    line = public_key_line(ed25519_key, "phone")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, text=f"# keys for bob\n{line}\n")
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        signature = sign_bytes(ed25519_key, b64url_decode(form["payload"]), int(form["flags"]))
        return httpx.Response(200, content=json.dumps({"success": True, "signature": b64url_encode(signature)}))

    with _directory(handler) as directory:
        response = AuthenticatorClient(directory).authenticate("bob")

    assert response.verify() is True
    assert response.key.comment == "phone"
