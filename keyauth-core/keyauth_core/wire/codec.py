"""Binary wire codec for the two authenticator message layouts.

Encoding rules (SSH-style, big-endian):
  - string / buffer: uint32 length followed by the raw bytes (text is UTF-8)
  - int32:           4 bytes, big-endian, signed
  - char:            a single byte

Outbound authentication request::

    principal, fingerprint, remoteName, promptText, authorizeText   (string)
    flags                                                          (int32)
    nonce                                                          (4 raw bytes)
    redirectURL                                                    (string)
    noise                                                          (16 raw bytes, unprefixed)

Inbound signed response::

    status char '1':  username (string), fingerprint (string), flags (int32), signature (buffer)
    anything else:    message (string)

Every read is bounds-checked; a length prefix that runs past the end of the
buffer raises :class:`~keyauth_core.errors.MalformedReply`.
"""
import base64
import binascii
import struct
from dataclasses import dataclass

from keyauth_core.errors import MalformedReply, SigningDenied


STATUS_SUCCESS = "1"
STATUS_FAILURE = "0"
NONCE_SIZE = 4
NOISE_SIZE = 16

_INT32 = struct.Struct(">i")
_UINT32 = struct.Struct(">I")


# ---------------------------------------------------------------------------
# base64url
# ---------------------------------------------------------------------------


def b64url_encode(data: bytes) -> str:
    """Encode *data* as unpadded base64url text."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """Decode base64url *text*; padding is optional.

    Raises
    ------
    MalformedReply
        If *text* is not valid base64url.
    """
    cleaned = "".join(text.split()).rstrip("=")
    padded = cleaned + "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedReply(f"Invalid base64url data: {exc}") from exc


# ---------------------------------------------------------------------------
# Primitive reader / writer
# ---------------------------------------------------------------------------


class WireWriter:
    """Append-only builder for length-prefixed wire messages."""

    def __init__(self) -> None:
        self._parts: list[bytes] = []

    def write_char(self, char: str) -> "WireWriter":
        raw = char.encode("ascii")
        if len(raw) != 1:
            raise ValueError(f"Expected a single ASCII character, got {char!r}")
        self._parts.append(raw)
        return self

    def write_string(self, value: str | bytes) -> "WireWriter":
        raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        self._parts.append(_UINT32.pack(len(raw)))
        self._parts.append(raw)
        return self

    write_buffer = write_string

    def write_int(self, value: int) -> "WireWriter":
        self._parts.append(_INT32.pack(value))
        return self

    def write_mpint(self, value: int) -> "WireWriter":
        """Write a non-negative integer in SSH mpint form."""
        if value < 0:
            raise ValueError("Negative mpint values are not supported")
        raw = value.to_bytes((value.bit_length() + 8) // 8, "big") if value else b""
        return self.write_buffer(raw)

    def write_raw(self, raw: bytes) -> "WireWriter":
        self._parts.append(bytes(raw))
        return self

    def to_bytes(self) -> bytes:
        return b"".join(self._parts)


class WireReader:
    """Bounds-checked cursor over a wire message."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def read_raw(self, size: int) -> bytes:
        if size < 0 or size > self.remaining:
            raise MalformedReply(
                f"Field of {size} bytes at offset {self._offset} exceeds "
                f"the {self.remaining} bytes remaining"
            )
        chunk = self._data[self._offset:self._offset + size]
        self._offset += size
        return chunk

    def read_char(self) -> str:
        return chr(self.read_raw(1)[0])

    def read_int(self) -> int:
        return _INT32.unpack(self.read_raw(_INT32.size))[0]

    def read_buffer(self) -> bytes:
        (length,) = _UINT32.unpack(self.read_raw(_UINT32.size))
        return self.read_raw(length)

    def read_string(self) -> str:
        raw = self.read_buffer()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedReply(f"String field is not valid UTF-8: {exc}") from exc

    def read_mpint(self) -> int:
        return int.from_bytes(self.read_buffer(), "big", signed=True)


# ---------------------------------------------------------------------------
# Outbound authentication request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthRequestMessage:
    """Fields of an outbound authentication request."""

    principal: str
    fingerprint: str
    remote_name: str
    prompt_text: str
    authorize_text: str
    flags: int
    nonce: bytes
    redirect_url: str
    noise: bytes


def encode_auth_request(message: AuthRequestMessage) -> bytes:
    """Serialise *message* to the outbound request layout."""
    if len(message.nonce) != NONCE_SIZE:
        raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(message.nonce)}")
    if len(message.noise) != NOISE_SIZE:
        raise ValueError(f"noise must be {NOISE_SIZE} bytes, got {len(message.noise)}")
    return (
        WireWriter()
        .write_string(message.principal)
        .write_string(message.fingerprint)
        .write_string(message.remote_name)
        .write_string(message.prompt_text)
        .write_string(message.authorize_text)
        .write_int(message.flags)
        .write_raw(message.nonce)
        .write_string(message.redirect_url)
        .write_raw(message.noise)
        .to_bytes()
    )


def decode_auth_request(data: bytes) -> AuthRequestMessage:
    """Parse an outbound request, as the signer side reads it.

    Raises
    ------
    MalformedReply
        If a field runs past the end of *data* or bytes are left over.
    """
    reader = WireReader(data)
    message = AuthRequestMessage(
        principal=reader.read_string(),
        fingerprint=reader.read_string(),
        remote_name=reader.read_string(),
        prompt_text=reader.read_string(),
        authorize_text=reader.read_string(),
        flags=reader.read_int(),
        nonce=reader.read_raw(NONCE_SIZE),
        redirect_url=reader.read_string(),
        noise=reader.read_raw(NOISE_SIZE),
    )
    if reader.remaining:
        raise MalformedReply(f"{reader.remaining} trailing bytes after authentication request")
    return message


# ---------------------------------------------------------------------------
# Inbound signed response
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignedResponse:
    """A successful inbound response."""

    username: str
    fingerprint: str
    flags: int
    signature: bytes


def encode_signed_response(response: SignedResponse) -> bytes:
    """Serialise a success response (status ``'1'``)."""
    return (
        WireWriter()
        .write_char(STATUS_SUCCESS)
        .write_string(response.username)
        .write_string(response.fingerprint)
        .write_int(response.flags)
        .write_buffer(response.signature)
        .to_bytes()
    )


def encode_denial(message: str) -> bytes:
    """Serialise a failure response carrying *message*."""
    return WireWriter().write_char(STATUS_FAILURE).write_string(message).to_bytes()


def decode_signed_response(data: bytes) -> SignedResponse:
    """Parse an inbound response.

    Raises
    ------
    SigningDenied
        If the status byte is not ``'1'``; carries the embedded message.
    MalformedReply
        If the buffer is empty or a field runs past its end.
    """
    reader = WireReader(data)
    if reader.remaining == 0:
        raise MalformedReply("Empty signed response")
    status = reader.read_char()
    if status != STATUS_SUCCESS:
        raise SigningDenied(reader.read_string())
    return SignedResponse(
        username=reader.read_string(),
        fingerprint=reader.read_string(),
        flags=reader.read_int(),
        signature=reader.read_buffer(),
    )


def read_status(data: bytes) -> tuple[bool, str]:
    """Decode the status prefix of a secondary reply.

    Returns ``(True, "")`` for a success status, ``(False, message)`` otherwise.
    """
    reader = WireReader(data)
    if reader.remaining == 0:
        raise MalformedReply("Empty status reply")
    if reader.read_char() == STATUS_SUCCESS:
        return True, ""
    return False, reader.read_string()
