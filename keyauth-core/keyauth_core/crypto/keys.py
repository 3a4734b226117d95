"""Public key capability: parse OpenSSH key lines, fingerprint, sign, verify.

Supported key types and signature encodings:
  - rsa      PKCS#1 v1.5 signature bytes; hash chosen by the caller
  - ed25519  raw 64-byte signature (PyNaCl); SHA-512 is intrinsic to Ed25519
  - ecdsa    SSH signature blob ``string alg, string(mpint r, mpint s)``

Fingerprints use the OpenSSH ``SHA256:<unpadded base64>`` form computed over
the decoded key blob, so they match ``ssh-keygen -lf``.

Each key type maps to exactly one verifier in :data:`_VERIFIERS`; adding an
algorithm means adding a :class:`KeyType` member and a verifier.
"""
import base64
import binascii
import enum
import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable

import nacl.exceptions
import nacl.signing
from cryptography.exceptions import InvalidSignature
from cryptography.exceptions import UnsupportedAlgorithm as CryptoUnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from keyauth_core.errors import MalformedReply, UnsupportedAlgorithm
from keyauth_core.wire.codec import WireReader, WireWriter


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class KeyParseError(ValueError):
    """Raised when a public key line cannot be parsed."""


class UnsupportedKeyType(KeyParseError):
    """Raised when a public key line names an algorithm we cannot verify."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


class KeyType(enum.Enum):
    RSA = "rsa"
    ED25519 = "ed25519"
    ECDSA = "ecdsa"


#: Flag bits that select the RSA hash.  Anything else means SHA-1.
FLAG_SHA256 = 2
FLAG_SHA512 = 4

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
    "sha512": hashes.SHA512,
}

_SSH_ALGORITHMS: dict[str, KeyType] = {
    "ssh-rsa": KeyType.RSA,
    "ssh-ed25519": KeyType.ED25519,
    "ecdsa-sha2-nistp256": KeyType.ECDSA,
    "ecdsa-sha2-nistp384": KeyType.ECDSA,
    "ecdsa-sha2-nistp521": KeyType.ECDSA,
}

_CURVE_NAMES: dict[str, str] = {
    "secp256r1": "nistp256",
    "secp384r1": "nistp384",
    "secp521r1": "nistp521",
}


@dataclass(frozen=True)
class KeyHandle:
    """A parsed public key.  Identity is the fingerprint alone."""

    fingerprint: str
    key_type: KeyType = field(compare=False)
    material: Any = field(compare=False, repr=False)
    comment: str = field(default="", compare=False)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def fingerprint_blob(blob: bytes) -> str:
    """Return the OpenSSH SHA256 fingerprint of a raw key blob."""
    digest = hashlib.sha256(blob).digest()
    return "SHA256:" + base64.b64encode(digest).rstrip(b"=").decode("ascii")


def parse_public_key(line: str) -> KeyHandle:
    """Parse one OpenSSH public key line (``<alg> <base64> [comment]``).

    Leading ``authorized_keys`` options are skipped: the first token that names
    a known algorithm starts the key.

    Raises
    ------
    UnsupportedKeyType
        If the line names no supported algorithm.
    KeyParseError
        If the key blob is not valid.
    """
    tokens = line.strip().split()
    for index, token in enumerate(tokens):
        if token in _SSH_ALGORITHMS:
            break
    else:
        raise UnsupportedKeyType(f"No supported key algorithm in line: {line.strip()[:60]!r}")

    if index + 1 >= len(tokens):
        raise KeyParseError(f"Key line has no key data after {token!r}")
    algorithm = token
    b64_blob = tokens[index + 1]
    comment = " ".join(tokens[index + 2:])

    try:
        blob = base64.b64decode(b64_blob, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyParseError(f"Key data is not valid base64: {exc}") from exc

    try:
        embedded = WireReader(blob).read_string()
    except MalformedReply as exc:
        raise KeyParseError(f"Key blob is truncated: {exc}") from exc
    if embedded != algorithm:
        raise KeyParseError(f"Key blob algorithm {embedded!r} does not match {algorithm!r}")

    try:
        public_key = serialization.load_ssh_public_key(f"{algorithm} {b64_blob}".encode("ascii"))
    except (ValueError, CryptoUnsupportedAlgorithm) as exc:
        raise KeyParseError(f"Invalid {algorithm} key: {exc}") from exc

    key_type = _SSH_ALGORITHMS[algorithm]
    if key_type is KeyType.ED25519:
        material: Any = nacl.signing.VerifyKey(
            public_key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
        )
    else:
        material = public_key

    return KeyHandle(
        fingerprint=fingerprint_blob(blob),
        key_type=key_type,
        material=material,
        comment=comment,
    )


# ---------------------------------------------------------------------------
# Hash selection
# ---------------------------------------------------------------------------


def flags_for(key: KeyHandle) -> int:
    """Flags to request for *key*: RSA asks for SHA-512, the rest send 0."""
    if key.key_type is KeyType.RSA:
        return FLAG_SHA512
    return 0


def hash_for(key_type: KeyType, flags: int) -> str:
    """Return the hash name used to verify a *key_type* signature.

    Only RSA honours *flags*; Ed25519 and ECDSA always use SHA-512.
    """
    if key_type is not KeyType.RSA:
        return "sha512"
    if flags == FLAG_SHA512:
        return "sha512"
    if flags == FLAG_SHA256:
        return "sha256"
    return "sha1"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def _verify_rsa(material: rsa.RSAPublicKey, hash_name: str, message: bytes, signature: bytes) -> bool:
    try:
        material.verify(signature, message, padding.PKCS1v15(), _HASHES[hash_name]())
    except (InvalidSignature, ValueError):
        return False
    return True


def _verify_ed25519(
    material: nacl.signing.VerifyKey, hash_name: str, message: bytes, signature: bytes
) -> bool:
    try:
        material.verify(message, signature)
    except (nacl.exceptions.BadSignatureError, ValueError, TypeError):
        return False
    return True


def _verify_ecdsa(
    material: ec.EllipticCurvePublicKey, hash_name: str, message: bytes, signature: bytes
) -> bool:
    try:
        outer = WireReader(signature)
        if not outer.read_string().startswith("ecdsa-sha2-"):
            return False
        inner = WireReader(outer.read_buffer())
        r = inner.read_mpint()
        s = inner.read_mpint()
        if r <= 0 or s <= 0:
            return False
        material.verify(encode_dss_signature(r, s), message, ec.ECDSA(_HASHES[hash_name]()))
    except (MalformedReply, InvalidSignature, ValueError):
        return False
    return True


_VERIFIERS: dict[KeyType, Callable[[Any, str, bytes, bytes], bool]] = {
    KeyType.RSA: _verify_rsa,
    KeyType.ED25519: _verify_ed25519,
    KeyType.ECDSA: _verify_ecdsa,
}


def verify_signature(key: KeyHandle, hash_name: str, message: bytes, signature: bytes) -> bool:
    """Return True if *signature* over *message* was made by *key*.

    Raises
    ------
    UnsupportedAlgorithm
        If *key* has a type without a verifier.
    """
    verifier = _VERIFIERS.get(key.key_type)
    if verifier is None:
        raise UnsupportedAlgorithm(f"Unsupported algorithm {key.key_type!r}")
    return verifier(key.material, hash_name, message, signature)


# ---------------------------------------------------------------------------
# Signing side (directory stand-ins, demos, tests)
# ---------------------------------------------------------------------------

PrivateKey = nacl.signing.SigningKey | rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


def generate_keypair(key_type: KeyType, *, rsa_bits: int = 2048, curve: str = "secp256r1") -> PrivateKey:
    """Generate a fresh private key of *key_type*."""
    if key_type is KeyType.ED25519:
        return nacl.signing.SigningKey.generate()
    if key_type is KeyType.RSA:
        return rsa.generate_private_key(public_exponent=65537, key_size=rsa_bits)
    if key_type is KeyType.ECDSA:
        return ec.generate_private_key(getattr(ec, curve.upper())())
    raise UnsupportedAlgorithm(f"Unsupported algorithm {key_type!r}")


def key_type_of(private_key: PrivateKey) -> KeyType:
    if isinstance(private_key, nacl.signing.SigningKey):
        return KeyType.ED25519
    if isinstance(private_key, rsa.RSAPrivateKey):
        return KeyType.RSA
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return KeyType.ECDSA
    raise UnsupportedAlgorithm(f"Unsupported private key {type(private_key).__name__}")


def _ecdsa_algorithm(private_key: ec.EllipticCurvePrivateKey) -> str:
    return "ecdsa-sha2-" + _CURVE_NAMES[private_key.curve.name]


def public_key_line(private_key: PrivateKey, comment: str = "") -> str:
    """Render the OpenSSH public key line for *private_key*."""
    if isinstance(private_key, nacl.signing.SigningKey):
        blob = WireWriter().write_string("ssh-ed25519").write_buffer(bytes(private_key.verify_key)).to_bytes()
        line = "ssh-ed25519 " + base64.b64encode(blob).decode("ascii")
    else:
        line = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode("ascii")
    return f"{line} {comment}".rstrip()


def sign_bytes(private_key: PrivateKey, message: bytes, flags: int = 0) -> bytes:
    """Sign *message* and return the signature in its wire encoding.

    The hash follows the same rules as verification: *flags* selects the RSA
    hash, Ed25519 and ECDSA always use SHA-512.
    """
    key_type = key_type_of(private_key)
    hash_name = hash_for(key_type, flags)
    if key_type is KeyType.ED25519:
        return private_key.sign(message).signature
    if key_type is KeyType.RSA:
        return private_key.sign(message, padding.PKCS1v15(), _HASHES[hash_name]())
    der = private_key.sign(message, ec.ECDSA(_HASHES[hash_name]()))
    r, s = decode_dss_signature(der)
    inner = WireWriter().write_mpint(r).write_mpint(s).to_bytes()
    return WireWriter().write_string(_ecdsa_algorithm(private_key)).write_buffer(inner).to_bytes()
