"""Command line entry points.

``keyauth-authenticate``
    Authenticate a principal against a directory and report the outcome.
    Exit 0 if the signature verified, 1 otherwise.

``keyauth-request``
    Issue a pending request and print its encoded payload and sign URL.
"""
import argparse
import logging
import sys
from pathlib import Path

from keyauth_core.audit.events_sqlite import AuditLog
from keyauth_core.auth.client import AuthenticatorClient
from keyauth_core.config import AuthenticatorConfig, load_config
from keyauth_core.directory.remote import HttpDirectory
from keyauth_core.errors import AuthenticatorError


def _common_parser(description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("hostname", help="Directory host name")
    parser.add_argument("principal", help="Principal to authenticate (username or email)")
    parser.add_argument("--port", type=int, default=443, help="Directory HTTPS port")
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("--audit-db", type=Path, help="SQLite audit log path")
    parser.add_argument("--debug", action="store_true", help="Trace intermediate state")
    return parser


def _build_client(args: argparse.Namespace, directory: HttpDirectory) -> AuthenticatorClient:
    config = load_config(args.config) if args.config else AuthenticatorConfig()
    if args.debug:
        config = config.with_overrides(debug=True)
    logging.basicConfig(
        level=logging.INFO if config.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    audit_log = AuditLog(args.audit_db) if args.audit_db else None
    return AuthenticatorClient(directory, config, audit_log=audit_log)


def authenticate_main(argv: list[str] | None = None) -> int:
    """Entry point for ``keyauth-authenticate``."""
    parser = _common_parser("Authenticate a principal with its registered public keys.")
    args = parser.parse_args(argv)

    with HttpDirectory(args.hostname, args.port) as directory:
        try:
            client = _build_client(args, directory)
            response = client.authenticate(args.principal)
            verified = response.verify()
        except AuthenticatorError as exc:
            print(f"ERROR: {type(exc).__name__}: {exc}", file=sys.stderr)
            return 1

    if verified:
        print(f"Authenticated {args.principal} with key {response.key.fingerprint}")
        return 0
    print(f"Authentication failed for {args.principal}", file=sys.stderr)
    return 1


def request_main(argv: list[str] | None = None) -> int:
    """Entry point for ``keyauth-request``."""
    parser = _common_parser("Issue a pending authentication request.")
    parser.add_argument("redirect_url", help="URL the signer returns to after signing")
    args = parser.parse_args(argv)

    with HttpDirectory(args.hostname, args.port) as directory:
        try:
            client = _build_client(args, directory)
            request = client.generate_request(args.principal, args.redirect_url)
        except AuthenticatorError as exc:
            print(f"ERROR: {type(exc).__name__}: {exc}", file=sys.stderr)
            return 1

    print(f"Payload:  {request.encoded_payload}")
    print(f"Sign URL: {request.sign_url}")
    return 0


def main() -> None:
    raise SystemExit(authenticate_main())


def request_entry() -> None:
    raise SystemExit(request_main())
