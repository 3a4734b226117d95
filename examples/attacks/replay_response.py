#!/usr/bin/env python3
"""Attack: Replay a previously accepted signer reply.

Demonstrates that once a pending request has been completed, handing the
same reply to it again is rejected by the audit log's UNIQUE constraint on
``response_processed`` events.

Expected outcome: ReplayAttackError raised → attack BLOCKED.
Exit 0 if blocked (boundary held), exit 1 if breach.

Usage:
    python examples/attacks/replay_response.py
"""
import sys
import tempfile
from pathlib import Path

_REPO_ROOT = Path(__file__).parents[2]
sys.path.insert(0, str(_REPO_ROOT / "keyauth-core"))

from keyauth_core.audit.events_sqlite import AuditLog
from keyauth_core.auth.client import AuthenticatorClient
from keyauth_core.crypto.keys import KeyType, generate_keypair
from keyauth_core.directory.local import LocalDirectory
from keyauth_core.errors import ReplayAttackError
from keyauth_core.wire.codec import SignedResponse, b64url_encode, encode_signed_response


def main() -> None:
    print("=" * 60)
    print("ATTACK: Replay Response")
    print("=" * 60)
    print("Scenario: An attacker captures a valid signer reply for a pending")
    print("          request and submits it again to log in a second time.")
    print()

    with tempfile.TemporaryDirectory(prefix="keyauth_attack_") as tmpdir:
        audit = AuditLog(Path(tmpdir) / "audit.db")
        directory = LocalDirectory(hostname="directory.example.org")
        handle = directory.register("bob", generate_keypair(KeyType.ECDSA), "bob@laptop")
        client = AuthenticatorClient(directory, audit_log=audit)

        request = client.generate_request("bob", "https://portal.example.org/done")

        # A forged reply must not use up the request before bob answers.
        forged = SignedResponse(username="bob", fingerprint=handle.fingerprint, flags=0, signature=b"\x00" * 72)
        if request.process_response(b64url_encode(encode_signed_response(forged))).verify():
            print("BREACH: Forged reply verified.", file=sys.stderr)
            sys.exit(1)
        print("[*] Forged reply rejected; the request stays open.")

        reply = directory.complete_request(request.encoded_payload)

        first = request.process_response(reply)
        if not first.verify():
            print("UNEXPECTED: legitimate reply did not verify.", file=sys.stderr)
            sys.exit(1)
        print("[*] First submission accepted (legitimate login).")
        print("[*] Re-submitting the captured reply...")

        try:
            second = request.process_response(reply)
            print(f"BREACH: Replayed reply accepted (verify={second.verify()}).", file=sys.stderr)
            sys.exit(1)
        except ReplayAttackError as exc:
            print(f"[+] ReplayAttackError raised: {exc}")
            print()
            print("BLOCKED: A pending request can only be completed once.")
            sys.exit(0)
        except Exception as exc:
            print(f"UNEXPECTED ERROR: {type(exc).__name__}: {exc}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
