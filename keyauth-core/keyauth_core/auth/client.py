"""Authentication orchestrator.

Flow for :meth:`AuthenticatorClient.authenticate_with_payload`:
  1. Fetch the principal's key listing from the directory and parse it.
  2. For each candidate key, in directory order, run one sign round trip:
     fingerprint and flags, render prompt, submit to the directory, decode
     the reply.
  3. Return the first successful round trip.  A declined or malformed round
     trip is logged and the next candidate is tried.
  4. If every candidate fails, return a response without signature or key.

Round trips never overlap: each one may put a prompt in front of the user,
and a single login must show at most one prompt at a time.

The deferred-delivery path splits the same exchange in two:
:meth:`generate_request` issues an encoded request, and
:meth:`process_response` resolves the signer's wire reply later.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable

from keyauth_core.audit.events_sqlite import (
    AuditEvent,
    AuditLog,
    challenge_id,
)
from keyauth_core.auth.request import AuthenticatorRequest, resolve_signed_reply
from keyauth_core.auth.response import AuthenticatorResponse
from keyauth_core.config import AuthenticatorConfig
from keyauth_core.crypto.keys import KeyHandle, flags_for
from keyauth_core.directory.remote import Directory
from keyauth_core.errors import (
    DeadlineExceeded,
    DirectoryError,
    MalformedReply,
    SigningDenied,
)
from keyauth_core.keys.selector import find_by_fingerprint, parse_keys, pick_default
from keyauth_core.wire.codec import (
    NOISE_SIZE,
    NONCE_SIZE,
    AuthRequestMessage,
    b64url_decode,
    b64url_encode,
    encode_auth_request,
    read_status,
)


@dataclass(frozen=True)
class _ClientResolver:
    """Capability handed to pending requests instead of the whole client."""

    resolve: Callable[[str, str], KeyHandle]
    sign_url: Callable[[str], str]
    record: Callable[[str, AuthenticatorResponse], None]

    def resolve_key(self, principal: str, fingerprint: str) -> KeyHandle:
        return self.resolve(principal, fingerprint)

    def build_sign_url(self, encoded_payload: str) -> str:
        return self.sign_url(encoded_payload)

    def record_response(self, principal: str, response: AuthenticatorResponse) -> None:
        self.record(principal, response)


def _remaining(deadline: float | None) -> float | None:
    """Seconds left before *deadline*; raises once it has passed."""
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise DeadlineExceeded("Authentication deadline exceeded")
    return remaining


def render_prompt(template: str, principal: str, remote_name: str, hostname: str) -> str:
    """Substitute ``{principal}``, ``{remoteName}`` and ``{hostname}`` in *template*."""
    return (
        template.replace("{principal}", principal)
        .replace("{remoteName}", remote_name)
        .replace("{hostname}", hostname)
    )


class AuthenticatorClient:
    """Drives challenge-response authentication against a key directory.

    Parameters
    ----------
    directory:
        Key directory and signing relay.
    config:
        Default configuration; every public flow also accepts a ``config``
        override that is used for that call only.
    logger:
        Logger for round trip failures and debug tracing.
    audit_log:
        Optional audit log.  When given, attempts are recorded and a pending
        request can only be completed once.
    """

    def __init__(
        self,
        directory: Directory,
        config: AuthenticatorConfig | None = None,
        *,
        logger: logging.Logger | None = None,
        audit_log: AuditLog | None = None,
    ) -> None:
        self._directory = directory
        self._config = config or AuthenticatorConfig()
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._audit = audit_log

    @property
    def directory(self) -> Directory:
        return self._directory

    @property
    def config(self) -> AuthenticatorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Candidate keys
    # ------------------------------------------------------------------

    def get_user_keys(
        self,
        principal: str,
        *,
        config: AuthenticatorConfig | None = None,
        deadline: float | None = None,
    ) -> list[KeyHandle]:
        """Return *principal*'s parseable keys in directory order.

        Raises
        ------
        DirectoryError
            If the directory lookup fails.
        DeadlineExceeded
            If *deadline* (a ``time.monotonic()`` value) already passed.
        """
        cfg = config or self._config
        _check_principal(principal)
        body = self._directory.list_keys(principal, timeout=_remaining(deadline))
        if cfg.debug:
            self._log.info("Key listing for %s:\n%s", principal, body)

        keys = parse_keys(body, log=self._log)
        if cfg.debug:
            self._log.info(
                "Decoded %d key(s) for %s: %s",
                len(keys),
                principal,
                ", ".join(f"{k.key_type.value} {k.fingerprint}" for k in keys),
            )
        self._emit(AuditEvent(event_type="keys_listed", principal=principal, details={"count": len(keys)}))
        return keys

    def get_user_key(self, principal: str, fingerprint: str) -> KeyHandle:
        """Return *principal*'s key with *fingerprint*.

        Raises
        ------
        KeyNotFound
            If the directory lists no such key.
        """
        return find_by_fingerprint(self.get_user_keys(principal), fingerprint)

    def get_default_key(self, principal: str) -> KeyHandle:
        """Return the key used for pending requests (non-RSA preferred).

        Raises
        ------
        NoSuitableKey
            If *principal* has no parseable keys.
        """
        return pick_default(self.get_user_keys(principal))

    # ------------------------------------------------------------------
    # Direct flow
    # ------------------------------------------------------------------

    def authenticate(
        self, principal: str, *, config: AuthenticatorConfig | None = None
    ) -> AuthenticatorResponse:
        """Authenticate *principal* with a fresh random challenge."""
        cfg = config or self._config
        payload = secrets.token_bytes(cfg.challenge_size)
        return self.authenticate_with_payload(principal, payload, config=cfg)

    def authenticate_with_payload(
        self,
        principal: str,
        payload: bytes,
        *,
        config: AuthenticatorConfig | None = None,
    ) -> AuthenticatorResponse:
        """Ask *principal*'s signer to sign *payload*, trying each key in turn.

        Returns a response without signature when every candidate declined
        or the deadline ran out between candidates; check ``verify()``.

        Raises
        ------
        DirectoryError
            If the key lookup fails.
        DeadlineExceeded
            If the deadline passed before the key lookup.
        """
        cfg = config or self._config
        payload = bytes(payload)
        deadline = (
            time.monotonic() + cfg.timeout_seconds if cfg.timeout_seconds is not None else None
        )

        keys = self.get_user_keys(principal, config=cfg, deadline=deadline)
        for key in keys:
            try:
                response = self._sign_round_trip(principal, key, payload, cfg, deadline)
            except DeadlineExceeded:
                self._log.warning(
                    "Deadline reached for %s; %s and later keys not tried",
                    principal,
                    key.fingerprint,
                )
                break
            except (SigningDenied, MalformedReply, DirectoryError) as exc:
                self._log.warning("Signing with key %s failed: %s", key.fingerprint, exc)
                self._emit(
                    AuditEvent(
                        event_type="signature_denied",
                        principal=principal,
                        fingerprint=key.fingerprint,
                        challenge_id=challenge_id(payload),
                        details={"reason": type(exc).__name__, "detail": str(exc)[:500]},
                    )
                )
                continue

            self._emit(
                AuditEvent(
                    event_type="signature_received",
                    principal=principal,
                    fingerprint=key.fingerprint,
                    challenge_id=challenge_id(payload),
                )
            )
            return response

        self._emit(
            AuditEvent(
                event_type="authentication_failed",
                principal=principal,
                challenge_id=challenge_id(payload),
                details={"candidates": len(keys)},
            )
        )
        return AuthenticatorResponse(payload, None, None, 0)

    def _sign_round_trip(
        self,
        principal: str,
        key: KeyHandle,
        payload: bytes,
        cfg: AuthenticatorConfig,
        deadline: float | None,
    ) -> AuthenticatorResponse:
        fingerprint = key.fingerprint
        flags = flags_for(key)
        if cfg.debug:
            self._log.info("Key fingerprint is %s (flags=%d)", fingerprint, flags)

        prompt = render_prompt(cfg.prompt_text, principal, cfg.remote_name, self._directory.hostname())
        reply = self._directory.submit_signature(
            principal,
            cfg.remote_name,
            fingerprint,
            prompt,
            cfg.authorize_text,
            b64url_encode(payload),
            flags,
            timeout=_remaining(deadline),
        )
        if cfg.debug:
            self._log.info("Signing reply: %r", reply)

        if not reply.success:
            raise SigningDenied(reply.message)

        if not reply.signature.strip():
            ok, message = read_status(b64url_decode(reply.response))
            if not ok:
                raise SigningDenied(message)
            raise MalformedReply("The server did not respond with a valid response")

        return AuthenticatorResponse(payload, b64url_decode(reply.signature), key, flags)

    # ------------------------------------------------------------------
    # Deferred-delivery flow
    # ------------------------------------------------------------------

    def generate_request(
        self,
        principal: str,
        redirect_url: str,
        *,
        config: AuthenticatorConfig | None = None,
    ) -> AuthenticatorRequest:
        """Issue a pending request for *principal*'s default key.

        The prompt template is sent unrendered; the signer fills it in.

        Raises
        ------
        NoSuitableKey
            If *principal* has no parseable keys.
        """
        cfg = config or self._config
        key = pick_default(self.get_user_keys(principal, config=cfg))
        message = AuthRequestMessage(
            principal=principal,
            fingerprint=key.fingerprint,
            remote_name=cfg.remote_name,
            prompt_text=cfg.prompt_text,
            authorize_text=cfg.authorize_text,
            flags=flags_for(key),
            nonce=secrets.token_bytes(NONCE_SIZE),
            redirect_url=redirect_url,
            noise=secrets.token_bytes(NOISE_SIZE),
        )
        payload = encode_auth_request(message)
        if cfg.debug:
            self._log.info("Issued request for %s with key %s", principal, key.fingerprint)
        self._emit(
            AuditEvent(
                event_type="request_issued",
                principal=principal,
                fingerprint=key.fingerprint,
                challenge_id=challenge_id(payload),
            )
        )
        return AuthenticatorRequest(b64url_encode(payload), self._resolver())

    def process_response(self, payload: bytes, signature: bytes) -> AuthenticatorResponse:
        """Decode the signer's wire reply to the request *payload*.

        Raises
        ------
        SigningDenied
            If the reply carries a failure status.
        MalformedReply
            If the reply cannot be decoded.
        KeyNotFound
            If the reply names a key the directory does not list.
        ReplayAttackError
            If an audit log is configured and this request was already completed.
        """
        return resolve_signed_reply(payload, signature, self._resolver())

    def build_sign_url(self, encoded_payload: str) -> str:
        return self._directory.build_sign_url(encoded_payload)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolver(self) -> _ClientResolver:
        return _ClientResolver(
            resolve=self.get_user_key,
            sign_url=self.build_sign_url,
            record=self._record_response,
        )

    def _record_response(self, principal: str, response: AuthenticatorResponse) -> None:
        # Only a verified reply completes the challenge.
        if self._audit is None:
            return
        verified = response.verify()
        if not verified:
            self._log.warning(
                "Reply for %s with key %s did not verify", principal, response.key.fingerprint
            )
        self._audit.record_response(
            principal,
            response.key.fingerprint,
            challenge_id(response.payload),
            verified=verified,
            details={"flags": response.flags},
        )

    def _emit(self, event: AuditEvent) -> None:
        if self._audit is not None:
            self._audit.emit(event)


def _check_principal(principal: str) -> None:
    if not principal:
        raise ValueError("principal must be a non-empty string")
