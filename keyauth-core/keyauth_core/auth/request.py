"""Pending request for out-of-band signature delivery.

The request holds only its encoded payload and a :class:`KeyResolver`, the
narrow capability it needs from the client that issued it: look up a
principal's key by fingerprint, build the signer-facing URL, and record the
outcome.  Completion is driven by the caller: hand the signer's reply to
:meth:`AuthenticatorRequest.process_response`.
"""
from dataclasses import dataclass
from typing import Protocol

from keyauth_core.auth.response import AuthenticatorResponse
from keyauth_core.crypto.keys import KeyHandle
from keyauth_core.wire.codec import b64url_decode, decode_signed_response


class KeyResolver(Protocol):
    """Operations a pending request may call back into."""

    def resolve_key(self, principal: str, fingerprint: str) -> KeyHandle: ...

    def build_sign_url(self, encoded_payload: str) -> str: ...

    def record_response(self, principal: str, response: AuthenticatorResponse) -> None: ...


def resolve_signed_reply(payload: bytes, signature: bytes, resolver: KeyResolver) -> AuthenticatorResponse:
    """Decode the signer's wire reply to *payload* and bind it to a known key.

    Raises
    ------
    SigningDenied
        If the reply carries a failure status.
    MalformedReply
        If the reply cannot be decoded.
    KeyNotFound
        If the reply names a key the directory does not list.
    ReplayAttackError
        If the outcome is recorded and this request was already completed.
    """
    reply = decode_signed_response(signature)
    key = resolver.resolve_key(reply.username, reply.fingerprint)
    response = AuthenticatorResponse(bytes(payload), reply.signature, key, reply.flags)
    resolver.record_response(reply.username, response)
    return response


@dataclass(frozen=True)
class AuthenticatorRequest:
    """An issued challenge awaiting its signature."""

    encoded_payload: str
    resolver: KeyResolver

    @property
    def sign_url(self) -> str:
        """URL where the principal's signer can pick up this request."""
        return self.resolver.build_sign_url(self.encoded_payload)

    def process_response(self, response: str) -> AuthenticatorResponse:
        """Resolve the signer's base64url *response* into a verifiable result.

        See :func:`resolve_signed_reply` for the errors raised.
        """
        payload = b64url_decode(self.encoded_payload)
        return resolve_signed_reply(payload, b64url_decode(response), self.resolver)
