"""In-memory directory that also plays the principal's signer.

Used by unit tests, the attack demos, and offline experiments.  It exposes
the same interface as :class:`~keyauth_core.directory.remote.HttpDirectory`
so callers never know the difference.

Extra controls:
  - :meth:`LocalDirectory.deny` makes the signer decline one key, either
    with ``success=False`` or with a wire-encoded denial in ``response``.
  - :meth:`LocalDirectory.add_listing_line` injects raw listing lines
    (comments, malformed keys).
  - ``sign_calls`` records every signing request in order.
"""
from dataclasses import dataclass, field

from keyauth_core.crypto.keys import (
    KeyHandle,
    PrivateKey,
    parse_public_key,
    public_key_line,
    sign_bytes,
)
from keyauth_core.directory.remote import SignatureReply
from keyauth_core.wire.codec import (
    SignedResponse,
    b64url_decode,
    b64url_encode,
    decode_auth_request,
    encode_denial,
    encode_signed_response,
)


@dataclass
class _Denial:
    message: str
    via_response: bool


@dataclass
class _Principal:
    lines: list[str] = field(default_factory=list)
    private_keys: dict[str, PrivateKey] = field(default_factory=dict)


class LocalDirectory:
    """Directory and signer backed by in-memory private keys.

    Parameters
    ----------
    hostname:
        Reported host name (substituted into prompts).
    port:
        Reported port (used in sign URLs).
    """

    def __init__(self, hostname: str = "directory.local", port: int = 443) -> None:
        self._hostname = hostname
        self._port = port
        self._principals: dict[str, _Principal] = {}
        self._denials: dict[str, _Denial] = {}
        self.sign_calls: list[str] = []
        self.list_calls: list[str] = []
        self.prompts: list[str] = []

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, principal: str, private_key: PrivateKey, comment: str = "") -> KeyHandle:
        """Register *private_key* for *principal*; return its public handle."""
        line = public_key_line(private_key, comment)
        handle = parse_public_key(line)
        entry = self._principals.setdefault(principal, _Principal())
        entry.lines.append(line)
        entry.private_keys[handle.fingerprint] = private_key
        return handle

    def add_listing_line(self, principal: str, line: str) -> None:
        """Append a raw *line* to *principal*'s key listing."""
        self._principals.setdefault(principal, _Principal()).lines.append(line)

    def deny(self, fingerprint: str, message: str = "User denied the request", *, via_response: bool = False) -> None:
        """Make the signer decline requests for *fingerprint*."""
        self._denials[fingerprint] = _Denial(message=message, via_response=via_response)

    # ------------------------------------------------------------------
    # Directory interface
    # ------------------------------------------------------------------

    def hostname(self) -> str:
        return self._hostname

    def port(self) -> int:
        return self._port

    def list_keys(self, principal: str, *, timeout: float | None = None) -> str:
        self.list_calls.append(principal)
        entry = self._principals.get(principal)
        if entry is None:
            return ""
        return "\n".join(entry.lines)

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
        self.sign_calls.append(fingerprint)
        self.prompts.append(text)

        private_key = self._private_key(principal, fingerprint)
        if private_key is None:
            return SignatureReply(success=False, message=f"No key {fingerprint} for {principal}")

        denial = self._denials.get(fingerprint)
        if denial is not None:
            if denial.via_response:
                return SignatureReply(
                    success=True,
                    response=b64url_encode(encode_denial(denial.message)),
                )
            return SignatureReply(success=False, message=denial.message)

        signature = sign_bytes(private_key, b64url_decode(encoded_payload), flags)
        return SignatureReply(success=True, signature=b64url_encode(signature))

    def build_sign_url(self, encoded_payload: str) -> str:
        return f"https://{self._hostname}:{self._port}/authenticator/sign/{encoded_payload}"

    # ------------------------------------------------------------------
    # Signer side of the deferred-delivery path
    # ------------------------------------------------------------------

    def complete_request(self, encoded_payload: str, *, approve: bool = True) -> str:
        """Answer a pending request the way a signer application would.

        Returns the base64url wire reply to hand to
        :meth:`AuthenticatorRequest.process_response`.
        """
        payload = b64url_decode(encoded_payload)
        request = decode_auth_request(payload)
        private_key = self._private_key(request.principal, request.fingerprint)

        denial = self._denials.get(request.fingerprint)
        if not approve or denial is not None:
            message = denial.message if denial is not None else "User denied the request"
            return b64url_encode(encode_denial(message))
        if private_key is None:
            return b64url_encode(encode_denial(f"No key {request.fingerprint}"))

        signature = sign_bytes(private_key, payload, request.flags)
        reply = SignedResponse(
            username=request.principal,
            fingerprint=request.fingerprint,
            flags=request.flags,
            signature=signature,
        )
        return b64url_encode(encode_signed_response(reply))

    def _private_key(self, principal: str, fingerprint: str) -> PrivateKey | None:
        entry = self._principals.get(principal)
        if entry is None:
            return None
        return entry.private_keys.get(fingerprint)
