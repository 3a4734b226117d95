"""Shared pytest fixtures for keyauth tests."""
from pathlib import Path

import pytest

from keyauth_core.auth.client import AuthenticatorClient
from keyauth_core.config import AuthenticatorConfig
from keyauth_core.crypto.keys import KeyType, generate_keypair
from keyauth_core.directory.local import LocalDirectory


# ---------------------------------------------------------------------------
# Keypair fixtures (session-scoped for speed)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def ed25519_key():
    """Fresh Ed25519 private key (PyNaCl SigningKey)."""
    return generate_keypair(KeyType.ED25519)


@pytest.fixture(scope="session")
def rsa_key():
    """Fresh 2048-bit RSA private key."""
    return generate_keypair(KeyType.RSA)


@pytest.fixture(scope="session")
def ecdsa_key():
    """Fresh NIST P-256 private key."""
    return generate_keypair(KeyType.ECDSA)


@pytest.fixture(scope="session")
def private_keys(ed25519_key, rsa_key, ecdsa_key):
    """Dict of key type → private key."""
    return {
        KeyType.ED25519: ed25519_key,
        KeyType.RSA: rsa_key,
        KeyType.ECDSA: ecdsa_key,
    }


# ---------------------------------------------------------------------------
# Directory and client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def directory() -> LocalDirectory:
    """An empty in-memory directory."""
    return LocalDirectory(hostname="some.directory.org")


@pytest.fixture
def config() -> AuthenticatorConfig:
    """Default config with debug tracing on (never changes outcomes)."""
    return AuthenticatorConfig(debug=True)


@pytest.fixture
def client(directory, config) -> AuthenticatorClient:
    return AuthenticatorClient(directory, config)


@pytest.fixture
def tmp_audit_db(tmp_path: Path):
    """A fresh AuditLog backed by a temp SQLite file."""
    from keyauth_core.audit.events_sqlite import AuditLog

    return AuditLog(tmp_path / "audit.db")
