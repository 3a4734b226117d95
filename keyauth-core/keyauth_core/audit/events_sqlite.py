"""SQLite-backed audit log of authentication attempts with replay protection.

A pending request is completed when a reply whose signature verifies is
resolved: that records a ``response_processed`` event keyed by the challenge
digest.  The ``challenge_id`` is UNIQUE for this event type only, so a second
completion raises :class:`ReplayAttackError` at INSERT time while replies that
fail verification (``response_rejected``) may repeat freely.

WAL journal mode is enabled so readers do not block the writer.
"""
import hashlib
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from keyauth_core.errors import ReplayAttackError


RESPONSE_PROCESSED = "response_processed"
RESPONSE_REJECTED = "response_rejected"


def challenge_id(payload: bytes) -> str:
    """Hex SHA-256 of a challenge payload; identifies one attempt."""
    return hashlib.sha256(payload).hexdigest()


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class AuditEvent:
    """A single audit event to be written to the events database."""

    event_type: str
    timestamp_utc: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    principal: str | None = None
    fingerprint: str | None = None
    challenge_id: str | None = None
    details: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_EVENTS = """
CREATE TABLE IF NOT EXISTS audit_events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type      TEXT NOT NULL,
    principal       TEXT,
    fingerprint     TEXT,
    challenge_id    TEXT,
    timestamp_utc   TEXT NOT NULL,
    details_json    TEXT
);
"""

# Partial index: one completion per challenge.
_CREATE_COMPLETION_IDX = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_completed_challenge
    ON audit_events (challenge_id)
    WHERE challenge_id IS NOT NULL AND event_type = 'response_processed';
"""

_CREATE_PRINCIPAL_IDX = """
CREATE INDEX IF NOT EXISTS idx_principal_event_ts
    ON audit_events (principal, event_type, timestamp_utc);
"""

_INSERT_EVENT = """
INSERT INTO audit_events
    (event_type, principal, fingerprint, challenge_id, timestamp_utc, details_json)
VALUES (?, ?, ?, ?, ?, ?)
"""


# ---------------------------------------------------------------------------
# AuditLog
# ---------------------------------------------------------------------------


class AuditLog:
    """Append-only SQLite audit log.

    Connections are short-lived: each operation opens one, runs inside a
    transaction, and closes it, so one log file can be shared by several
    processes.

    A pending request counts as completed only once its signature verified.
    :meth:`record_response` writes rejected replies as ``response_rejected``,
    which carries no uniqueness constraint, so a forged reply cannot use up
    the challenge before the genuine one arrives.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._transaction() as conn:
            conn.executescript(_CREATE_EVENTS + _CREATE_COMPLETION_IDX + _CREATE_PRINCIPAL_IDX)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            with conn:
                yield conn
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def emit(self, event: AuditEvent) -> None:
        """Insert *event* into the audit log.

        Raises
        ------
        ReplayAttackError
            If *event* completes a challenge that was already completed.
        """
        row = (
            event.event_type,
            event.principal,
            event.fingerprint,
            event.challenge_id,
            event.timestamp_utc,
            json.dumps(event.details) if event.details is not None else None,
        )
        try:
            with self._transaction() as conn:
                conn.execute(_INSERT_EVENT, row)
        except sqlite3.IntegrityError as exc:
            if event.event_type == RESPONSE_PROCESSED and event.challenge_id is not None:
                raise ReplayAttackError(
                    f"Replay detected: challenge {event.challenge_id[:16]}… already completed"
                ) from exc
            raise

    def record_response(
        self,
        principal: str,
        fingerprint: str,
        challenge: str,
        *,
        verified: bool,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record the outcome of resolving a signer reply for *challenge*.

        Only a *verified* reply completes the challenge; anything else is
        logged as ``response_rejected`` and leaves the challenge open.

        Raises
        ------
        ReplayAttackError
            If *verified* and the challenge was already completed.
        """
        self.emit(
            AuditEvent(
                event_type=RESPONSE_PROCESSED if verified else RESPONSE_REJECTED,
                principal=principal,
                fingerprint=fingerprint,
                challenge_id=challenge,
                details=details,
            )
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_completed(self, challenge: str) -> bool:
        """Return True if the challenge with digest *challenge* was completed."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM audit_events WHERE challenge_id = ? AND event_type = ? LIMIT 1",
                (challenge, RESPONSE_PROCESSED),
            ).fetchone()
        return row is not None

    def count_events(self, principal: str, event_type: str) -> int:
        """Count *event_type* events recorded for *principal*."""
        with self._transaction() as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM audit_events WHERE principal = ? AND event_type = ?",
                (principal, event_type),
            ).fetchone()
        return count

    def recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        """Return the most recent *limit* events as dicts, newest first."""
        with self._transaction() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM audit_events ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [dict(row) for row in rows]
