"""Directory collaborator contract and its HTTP implementation.

The directory owns key listings and forwards signing requests to the
principal's signer application.  The core only depends on :class:`Directory`;
:class:`HttpDirectory` talks to a directory server over HTTPS with ``httpx``.

Endpoints::

    GET  https://{host}:{port}/authorizedKeys/{principal}           -> text/plain key listing
    POST https://{host}:{port}/app/api/authenticator/signPayload    -> JSON SignatureReply
         form fields: username, fingerprint, remoteName, text,
                      authorizeText, flags, payload
         sign page:   https://{host}:{port}/authenticator/sign/{payload}
"""
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from keyauth_core.errors import DirectoryError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignatureReply:
    """Outcome of one signing request as reported by the directory.

    ``signature`` is base64url text when the signer approved.  When it is
    empty, ``response`` may carry a base64url wire reply explaining why.
    """

    success: bool
    signature: str = ""
    message: str = ""
    response: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "SignatureReply":
        if not isinstance(data, dict):
            raise DirectoryError(f"Signing reply must be a JSON object, got {type(data).__name__}")
        return cls(
            success=bool(data.get("success", False)),
            signature=data.get("signature") or "",
            message=data.get("message") or "",
            response=data.get("response") or "",
        )


class Directory(Protocol):
    """What the authenticator needs from a key directory."""

    def hostname(self) -> str: ...

    def port(self) -> int: ...

    def list_keys(self, principal: str, *, timeout: float | None = None) -> str: ...

    def submit_signature(
        self,
        principal: str,
        remote_name: str,
        fingerprint: str,
        text: str,
        button_text: str,
        encoded_payload: str,
        flags: int,
        *,
        timeout: float | None = None,
    ) -> SignatureReply: ...

    def build_sign_url(self, encoded_payload: str) -> str: ...


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------


class HttpDirectory:
    """Directory reached over HTTPS.

    Parameters
    ----------
    hostname:
        Directory host name; also substituted for ``{hostname}`` in prompts.
    port:
        Directory HTTPS port.
    client:
        Pre-configured ``httpx.Client`` (tests pass one with a mock transport).
        A new client is created when omitted and closed by :meth:`close`.
    timeout:
        Per-request timeout in seconds when the caller gives none.
    """

    def __init__(
        self,
        hostname: str,
        port: int = 443,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._hostname = hostname
        self._port = port
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client()

    def __enter__(self) -> "HttpDirectory":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def hostname(self) -> str:
        return self._hostname

    def port(self) -> int:
        return self._port

    @property
    def base_url(self) -> str:
        return f"https://{self._hostname}:{self._port}"

    def list_keys(self, principal: str, *, timeout: float | None = None) -> str:
        url = f"{self.base_url}/authorizedKeys/{quote(principal, safe='@')}"
        response = self._send("GET", url, timeout=timeout)
        return response.text

    def submit_signature(
        self,
        principal: str,
        remote_name: str,
        fingerprint: str,
        text: str,
        button_text: str,
        encoded_payload: str,
        flags: int,
        *,
        timeout: float | None = None,
    ) -> SignatureReply:
        form = {
            "username": principal,
            "fingerprint": fingerprint,
            "remoteName": remote_name,
            "text": text,
            "authorizeText": button_text,
            "flags": str(flags),
            "payload": encoded_payload,
        }
        url = f"{self.base_url}/app/api/authenticator/signPayload"
        response = self._send("POST", url, data=form, timeout=timeout)
        try:
            body = response.json()
        except ValueError as exc:
            raise DirectoryError(f"Signing reply from {url} is not JSON: {exc}") from exc
        return SignatureReply.from_json(body)

    def build_sign_url(self, encoded_payload: str) -> str:
        return f"{self.base_url}/authenticator/sign/{encoded_payload}"

    def _send(
        self,
        method: str,
        url: str,
        *,
        data: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        effective_timeout = timeout if timeout is not None else self._timeout
        logger.debug("%s %s (timeout=%.1fs)", method, url, effective_timeout)
        try:
            response = self._client.request(method, url, data=data, timeout=effective_timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise DirectoryError(f"{method} {url} timed out after {effective_timeout:.1f}s") from exc
        except httpx.HTTPStatusError as exc:
            raise DirectoryError(
                f"{method} {url} failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DirectoryError(f"{method} {url} failed: {exc}") from exc
        return response
