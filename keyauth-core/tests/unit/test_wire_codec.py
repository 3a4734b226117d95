"""Tests for keyauth_core.wire.codec: request/response layouts and bounds checks."""
import struct

import pytest

from keyauth_core.errors import MalformedReply, SigningDenied
from keyauth_core.wire.codec import (
    AuthRequestMessage,
    SignedResponse,
    WireReader,
    WireWriter,
    b64url_decode,
    b64url_encode,
    decode_auth_request,
    decode_signed_response,
    encode_auth_request,
    encode_denial,
    encode_signed_response,
    read_status,
)


def _request(**overrides) -> AuthRequestMessage:
    fields = dict(
        principal="alice@example.com",
        fingerprint="SHA256:abc",
        remote_name="Portal",
        prompt_text="{principal} wants in",
        authorize_text="Authorize",
        flags=4,
        nonce=b"\x01\x02\x03\x04",
        redirect_url="https://portal.example.com/done",
        noise=bytes(range(16)),
    )
    fields.update(overrides)
    return AuthRequestMessage(**fields)


def test_request_layout_is_length_prefixed_big_endian() -> None:
    data = encode_auth_request(_request())
    assert data[:4] == struct.pack(">I", len("alice@example.com"))
    assert data[4:21] == b"alice@example.com"
    # Noise is appended raw, without a length prefix.
    assert data.endswith(bytes(range(16)))


def test_request_decodes_to_same_fields() -> None:
    message = _request(principal="zoë", prompt_text="ünïcode {hostname}")
    data = encode_auth_request(message)
    assert decode_auth_request(data) == message
    assert encode_auth_request(decode_auth_request(data)) == data


def test_nonce_is_written_as_raw_bytes() -> None:
    data = encode_auth_request(_request(nonce=b"\xff\xfe\xfd\xfc"))
    assert b"\xff\xfe\xfd\xfc" in data


@pytest.mark.parametrize("field,value", [("nonce", b"\x00" * 3), ("noise", b"\x00" * 15)])
def test_request_rejects_wrong_sized_random_fields(field, value) -> None:
    with pytest.raises(ValueError):
        encode_auth_request(_request(**{field: value}))


def test_request_with_trailing_bytes_is_malformed() -> None:
    with pytest.raises(MalformedReply):
        decode_auth_request(encode_auth_request(_request()) + b"\x00")


def test_signed_response_success_decodes() -> None:
    response = SignedResponse(username="bob", fingerprint="SHA256:xyz", flags=4, signature=b"\x00sig\xff")
    data = encode_signed_response(response)
    assert data[:1] == b"1"
    assert decode_signed_response(data) == response


def test_failure_status_raises_signing_denied_with_message() -> None:
    with pytest.raises(SigningDenied) as exc_info:
        decode_signed_response(encode_denial("User rejected the request"))
    assert exc_info.value.message == "User rejected the request"


def test_any_non_one_status_is_failure() -> None:
    data = WireWriter().write_char("x").write_string("nope").to_bytes()
    with pytest.raises(SigningDenied, match="nope"):
        decode_signed_response(data)


def test_length_prefix_past_end_is_malformed() -> None:
    data = b"1" + struct.pack(">I", 1000) + b"short"
    with pytest.raises(MalformedReply):
        decode_signed_response(data)


def test_truncated_signature_buffer_is_malformed() -> None:
    data = encode_signed_response(
        SignedResponse(username="bob", fingerprint="fp", flags=0, signature=b"A" * 64)
    )
    with pytest.raises(MalformedReply):
        decode_signed_response(data[:-1])


def test_empty_response_is_malformed() -> None:
    with pytest.raises(MalformedReply):
        decode_signed_response(b"")


def test_reader_never_reads_past_end() -> None:
    reader = WireReader(b"\x00\x00")
    with pytest.raises(MalformedReply):
        reader.read_int()


def test_read_status() -> None:
    assert read_status(b"1") == (True, "")
    assert read_status(encode_denial("Denied by policy")) == (False, "Denied by policy")


def test_b64url_is_unpadded_and_url_safe() -> None:
    encoded = b64url_encode(b"\xfb\xff\xfe")
    assert "=" not in encoded
    assert "+" not in encoded and "/" not in encoded
    assert b64url_decode(encoded) == b"\xfb\xff\xfe"
    # Padding is tolerated on input.
    assert b64url_decode(b64url_encode(b"ab") + "==") == b"ab"


def test_b64url_rejects_garbage() -> None:
    with pytest.raises(MalformedReply):
        b64url_decode("not base64 !!")


def test_mpint_round_trips_high_bit_values() -> None:
    data = WireWriter().write_mpint(0x80).write_mpint(0).to_bytes()
    reader = WireReader(data)
    assert reader.read_mpint() == 0x80
    assert reader.read_mpint() == 0
