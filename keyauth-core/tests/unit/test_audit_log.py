"""Tests for keyauth_core.audit.events_sqlite and its use by the client."""
import pytest

from keyauth_core.audit.events_sqlite import (
    RESPONSE_PROCESSED,
    RESPONSE_REJECTED,
    AuditEvent,
    challenge_id,
)
from keyauth_core.auth.client import AuthenticatorClient
from keyauth_core.errors import ReplayAttackError
from keyauth_core.wire.codec import SignedResponse, b64url_decode, b64url_encode, encode_signed_response


PRINCIPAL = "carol"


def test_emit_and_read_back(tmp_audit_db) -> None:
    tmp_audit_db.emit(AuditEvent(event_type="keys_listed", principal=PRINCIPAL, details={"count": 2}))
    events = tmp_audit_db.recent_events()
    assert len(events) == 1
    assert events[0]["event_type"] == "keys_listed"
    assert events[0]["details_json"] == '{"count": 2}'


def test_recent_events_newest_first(tmp_audit_db) -> None:
    for name in ("a", "b", "c"):
        tmp_audit_db.emit(AuditEvent(event_type=name))
    assert [e["event_type"] for e in tmp_audit_db.recent_events(limit=2)] == ["c", "b"]


def test_second_completion_of_same_challenge_is_replay(tmp_audit_db) -> None:
    cid = challenge_id(b"challenge")
    tmp_audit_db.emit(AuditEvent(event_type=RESPONSE_PROCESSED, challenge_id=cid))
    assert tmp_audit_db.has_completed(cid)
    with pytest.raises(ReplayAttackError):
        tmp_audit_db.emit(AuditEvent(event_type=RESPONSE_PROCESSED, challenge_id=cid))


def test_other_events_may_share_challenge(tmp_audit_db) -> None:
    cid = challenge_id(b"challenge")
    tmp_audit_db.emit(AuditEvent(event_type="signature_denied", challenge_id=cid))
    tmp_audit_db.emit(AuditEvent(event_type="signature_denied", challenge_id=cid))
    assert not tmp_audit_db.has_completed(cid)


def test_authenticate_records_attempts(directory, tmp_audit_db, ed25519_key, ecdsa_key) -> None:
    first = directory.register(PRINCIPAL, ed25519_key)
    directory.register(PRINCIPAL, ecdsa_key)
    directory.deny(first.fingerprint)

    client = AuthenticatorClient(directory, audit_log=tmp_audit_db)
    assert client.authenticate(PRINCIPAL).verify()

    assert tmp_audit_db.count_events(PRINCIPAL, "keys_listed") == 1
    assert tmp_audit_db.count_events(PRINCIPAL, "signature_denied") == 1
    assert tmp_audit_db.count_events(PRINCIPAL, "signature_received") == 1
    assert tmp_audit_db.count_events(PRINCIPAL, "authentication_failed") == 0


def test_failed_authentication_is_recorded(directory, tmp_audit_db, ed25519_key) -> None:
    directory.deny(directory.register(PRINCIPAL, ed25519_key).fingerprint)
    client = AuthenticatorClient(directory, audit_log=tmp_audit_db)
    assert not client.authenticate(PRINCIPAL).verify()
    assert tmp_audit_db.count_events(PRINCIPAL, "authentication_failed") == 1


def test_pending_request_completes_only_once(directory, tmp_audit_db, ed25519_key) -> None:
    directory.register(PRINCIPAL, ed25519_key)
    client = AuthenticatorClient(directory, audit_log=tmp_audit_db)
    request = client.generate_request(PRINCIPAL, "https://example.org/done")
    reply = directory.complete_request(request.encoded_payload)

    assert request.process_response(reply).verify()
    assert tmp_audit_db.has_completed(challenge_id(b64url_decode(request.encoded_payload)))
    with pytest.raises(ReplayAttackError):
        request.process_response(reply)


def test_without_audit_log_replay_is_not_tracked(directory, client, ed25519_key) -> None:
    directory.register(PRINCIPAL, ed25519_key)
    request = client.generate_request(PRINCIPAL, "https://example.org/done")
    reply = directory.complete_request(request.encoded_payload)
    assert request.process_response(reply).verify()
    assert request.process_response(reply).verify()


def test_rejected_responses_do_not_complete_challenge(tmp_audit_db) -> None:
    cid = challenge_id(b"challenge")
    tmp_audit_db.record_response(PRINCIPAL, "SHA256:fp", cid, verified=False)
    tmp_audit_db.record_response(PRINCIPAL, "SHA256:fp", cid, verified=False)
    assert not tmp_audit_db.has_completed(cid)
    assert tmp_audit_db.count_events(PRINCIPAL, RESPONSE_REJECTED) == 2

    tmp_audit_db.record_response(PRINCIPAL, "SHA256:fp", cid, verified=True)
    assert tmp_audit_db.has_completed(cid)
    with pytest.raises(ReplayAttackError):
        tmp_audit_db.record_response(PRINCIPAL, "SHA256:fp", cid, verified=True)


def test_forged_reply_does_not_use_up_pending_request(directory, tmp_audit_db, ed25519_key) -> None:
    handle = directory.register(PRINCIPAL, ed25519_key)
    client = AuthenticatorClient(directory, audit_log=tmp_audit_db)
    request = client.generate_request(PRINCIPAL, "https://example.org/done")

    # Anyone holding the sign URL can answer with a listed fingerprint.
    forged = SignedResponse(username=PRINCIPAL, fingerprint=handle.fingerprint, flags=0, signature=bytes(64))
    assert request.process_response(b64url_encode(encode_signed_response(forged))).verify() is False

    reply = directory.complete_request(request.encoded_payload)
    assert request.process_response(reply).verify() is True
    assert tmp_audit_db.count_events(PRINCIPAL, RESPONSE_REJECTED) == 1
    with pytest.raises(ReplayAttackError):
        request.process_response(reply)
