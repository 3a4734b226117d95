#!/usr/bin/env python3
"""Attack: Hand back a signed reply whose signature bytes were altered.

Demonstrates that a pending request resolved with a tampered signature
never verifies, and that a reply naming a key the directory does not list
for the principal is refused outright.

Expected outcome: verify() returns False / KeyNotFound raised → attack BLOCKED.
Exit 0 if blocked (boundary held), exit 1 if breach.

Usage:
    python examples/attacks/tamper_signature.py
"""
import sys
from pathlib import Path

_REPO_ROOT = Path(__file__).parents[2]
sys.path.insert(0, str(_REPO_ROOT / "keyauth-core"))

from keyauth_core.auth.client import AuthenticatorClient
from keyauth_core.crypto.keys import KeyType, generate_keypair, parse_public_key, public_key_line, sign_bytes
from keyauth_core.directory.local import LocalDirectory
from keyauth_core.errors import KeyNotFound
from keyauth_core.wire.codec import (
    SignedResponse,
    b64url_decode,
    b64url_encode,
    decode_signed_response,
    encode_signed_response,
)


def main() -> None:
    print("=" * 60)
    print("ATTACK: Tampered Signature")
    print("=" * 60)
    print("Scenario: An attacker intercepts the signer's reply to a pending")
    print("          request and alters it, first by flipping a signature bit,")
    print("          then by re-signing with their own key.")
    print()

    directory = LocalDirectory(hostname="directory.example.org")
    victim_key = generate_keypair(KeyType.ED25519)
    directory.register("alice", victim_key, "alice@phone")
    client = AuthenticatorClient(directory)

    request = client.generate_request("alice", "https://portal.example.org/done")
    genuine = decode_signed_response(b64url_decode(directory.complete_request(request.encoded_payload)))
    print(f"[*] Genuine reply captured for key {genuine.fingerprint}")

    # 1. Flip one bit of the signature.
    flipped = SignedResponse(
        username=genuine.username,
        fingerprint=genuine.fingerprint,
        flags=genuine.flags,
        signature=bytes([genuine.signature[0] ^ 0x80]) + genuine.signature[1:],
    )
    response = request.process_response(b64url_encode(encode_signed_response(flipped)))
    if response.verify():
        print("BREACH: Tampered signature verified.", file=sys.stderr)
        sys.exit(1)
    print("[+] Bit-flipped signature rejected: verify() is False")

    # 2. Re-sign with an attacker key that alice never registered.
    attacker_key = generate_keypair(KeyType.ED25519)
    attacker_fp = parse_public_key(public_key_line(attacker_key)).fingerprint
    forged = SignedResponse(
        username="alice",
        fingerprint=attacker_fp,
        flags=0,
        signature=sign_bytes(attacker_key, b64url_decode(request.encoded_payload)),
    )
    try:
        response = request.process_response(b64url_encode(encode_signed_response(forged)))
        print(f"BREACH: Reply with unlisted key accepted (verify={response.verify()}).", file=sys.stderr)
        sys.exit(1)
    except KeyNotFound as exc:
        print(f"[+] KeyNotFound raised: {exc}")
    except Exception as exc:
        print(f"UNEXPECTED ERROR: {type(exc).__name__}: {exc}", file=sys.stderr)
        sys.exit(1)

    print()
    print("BLOCKED: Only an unmodified signature by one of alice's listed keys verifies.")
    sys.exit(0)


if __name__ == "__main__":
    main()
