"""SQLite access layer for nexus links, pairing requests, activity and verification state."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Mapping, Sequence

from trustate.store.models import (
    CANCELLED,
    PENDING,
    ActivityLogEntry,
    NexusLink,
    PairingRequest,
    VerificationRecord,
)

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


class ConstraintViolation(RuntimeError):
    """Raised when an insert or update is rejected by a schema constraint."""


class SqliteStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS broker_nexus (
                broker_id TEXT PRIMARY KEY,
                nexus_code TEXT NOT NULL UNIQUE,
                totp_secret TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS pairing_requests (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                broker_id TEXT NOT NULL,
                status TEXT NOT NULL
                    CHECK (status IN ('pending', 'accepted', 'rejected', 'cancelled')),
                created_at TEXT NOT NULL,
                responded_at TEXT,
                FOREIGN KEY(broker_id) REFERENCES broker_nexus(broker_id)
            );

            CREATE TABLE IF NOT EXISTS pairing_pardons (
                agent_id TEXT PRIMARY KEY,
                request_id TEXT NOT NULL,
                used_at TEXT NOT NULL,
                FOREIGN KEY(request_id) REFERENCES pairing_requests(id)
            );

            CREATE TABLE IF NOT EXISTS activity_logs (
                id TEXT PRIMARY KEY,
                subject_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                actor_role TEXT NOT NULL,
                action_type TEXT NOT NULL,
                description TEXT NOT NULL,
                metadata TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS verification_status (
                user_id TEXT PRIMARY KEY,
                outcome TEXT NOT NULL,
                similarity REAL,
                field_count INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS uq_pairing_active_agent
                ON pairing_requests(agent_id)
                WHERE status IN ('pending', 'accepted');
            CREATE INDEX IF NOT EXISTS idx_pairing_agent_status
                ON pairing_requests(agent_id, status);
            CREATE INDEX IF NOT EXISTS idx_pairing_broker_created_at
                ON pairing_requests(broker_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_activity_subject_created_at
                ON activity_logs(subject_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_verification_outcome
                ON verification_status(outcome);

            CREATE TRIGGER IF NOT EXISTS activity_logs_no_update
                BEFORE UPDATE ON activity_logs
                BEGIN
                    SELECT RAISE(ABORT, 'activity_logs is append-only');
                END;
            CREATE TRIGGER IF NOT EXISTS activity_logs_no_delete
                BEFORE DELETE ON activity_logs
                BEGIN
                    SELECT RAISE(ABORT, 'activity_logs is append-only');
                END;
            """
        )
        self._conn.commit()

    def execute(
        self,
        query: str,
        params: _SqlParams,
    ) -> int:
        with self._lock:
            try:
                cursor = self._conn.execute(query, params)
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ConstraintViolation(str(exc)) from exc
            self._conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(
        self,
        query: str,
        params: _SqlParams,
    ) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(
        self,
        query: str,
        params: _SqlParams,
    ) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    # Nexus links

    def create_nexus(self, link: NexusLink) -> None:
        self.execute(
            """
            INSERT INTO broker_nexus (broker_id, nexus_code, totp_secret, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (link.broker_id, link.nexus_code, link.totp_secret, link.created_at),
        )

    def get_nexus_by_code(self, nexus_code: str) -> NexusLink | None:
        row = self.fetch_one("SELECT * FROM broker_nexus WHERE nexus_code = ?", (nexus_code,))
        if row is None:
            return None
        return NexusLink(**dict(row))

    def get_nexus_by_broker(self, broker_id: str) -> NexusLink | None:
        row = self.fetch_one("SELECT * FROM broker_nexus WHERE broker_id = ?", (broker_id,))
        if row is None:
            return None
        return NexusLink(**dict(row))

    # Pairing requests

    def create_pairing_request(self, request: PairingRequest) -> None:
        """Insert a request; a second active row for the agent is a ConstraintViolation."""
        self.execute(
            """
            INSERT INTO pairing_requests (
                id, agent_id, broker_id, status, created_at, responded_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                request.id,
                request.agent_id,
                request.broker_id,
                request.status,
                request.created_at,
                request.responded_at,
            ),
        )

    def get_pairing_request(self, request_id: str) -> PairingRequest | None:
        row = self.fetch_one("SELECT * FROM pairing_requests WHERE id = ?", (request_id,))
        if row is None:
            return None
        return PairingRequest(**dict(row))

    def resolve_pending_request(
        self,
        request_id: str,
        broker_id: str,
        status: str,
        responded_at: str,
    ) -> PairingRequest | None:
        """Atomically move a broker's pending request to ``status``.

        Returns the updated request if exactly one row matched id, broker and
        pending status, None otherwise. Concurrent responders cannot both win.
        """
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "UPDATE pairing_requests SET status = ?, responded_at = ? "
                    "WHERE id = ? AND broker_id = ? AND status = ?",
                    (status, responded_at, request_id, broker_id, PENDING),
                )
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ConstraintViolation(str(exc)) from exc
            self._conn.commit()
            if cursor.rowcount != 1:
                return None
            row = self._conn.execute(
                "SELECT * FROM pairing_requests WHERE id = ?", (request_id,)
            ).fetchone()
        return PairingRequest(**dict(row))

    def pardon_used(self, agent_id: str) -> bool:
        row = self.fetch_one(
            """
            SELECT
                (SELECT COUNT(*) FROM pairing_requests
                    WHERE agent_id = ? AND status = 'cancelled')
                + (SELECT COUNT(*) FROM pairing_pardons WHERE agent_id = ?)
            """,
            (agent_id, agent_id),
        )
        return bool(row[0])

    def cancel_pending_request(self, agent_id: str, cancelled_at: str) -> PairingRequest | None:
        """Cancel the agent's pending request and record the pardon in one transaction.

        Returns None when the agent has nothing pending. Raises
        ConstraintViolation if a pardon was consumed between the caller's
        check and this write.
        """
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                used = self._conn.execute(
                    "SELECT COUNT(*) FROM pairing_requests WHERE agent_id = ? AND status = ?",
                    (agent_id, CANCELLED),
                ).fetchone()[0]
                if used:
                    raise sqlite3.IntegrityError("pairing pardon already used")

                row = self._conn.execute(
                    "SELECT * FROM pairing_requests WHERE agent_id = ? AND status = ?",
                    (agent_id, PENDING),
                ).fetchone()
                if row is None:
                    self._conn.rollback()
                    return None

                self._conn.execute(
                    "INSERT INTO pairing_pardons (agent_id, request_id, used_at) VALUES (?, ?, ?)",
                    (agent_id, row["id"], cancelled_at),
                )
                self._conn.execute(
                    "UPDATE pairing_requests SET status = ?, responded_at = ? "
                    "WHERE id = ? AND status = ?",
                    (CANCELLED, cancelled_at, row["id"], PENDING),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ConstraintViolation(str(exc)) from exc
            except BaseException:
                self._conn.rollback()
                raise

            updated = self._conn.execute(
                "SELECT * FROM pairing_requests WHERE id = ?", (row["id"],)
            ).fetchone()
        return PairingRequest(**dict(updated))

    def agent_has_status(self, agent_id: str, status: str) -> bool:
        row = self.fetch_one(
            "SELECT 1 FROM pairing_requests WHERE agent_id = ? AND status = ? LIMIT 1",
            (agent_id, status),
        )
        return row is not None

    def list_requests_for_broker(self, broker_id: str) -> list[PairingRequest]:
        rows = self.fetch_all(
            "SELECT * FROM pairing_requests WHERE broker_id = ? ORDER BY created_at DESC",
            (broker_id,),
        )
        return [PairingRequest(**dict(row)) for row in rows]

    def list_requests_for_agent(self, agent_id: str) -> list[PairingRequest]:
        rows = self.fetch_all(
            "SELECT * FROM pairing_requests WHERE agent_id = ? ORDER BY created_at DESC",
            (agent_id,),
        )
        return [PairingRequest(**dict(row)) for row in rows]

    # Activity log

    def append_activity(self, entry: ActivityLogEntry) -> None:
        self.execute(
            """
            INSERT INTO activity_logs (
                id, subject_id, actor_id, actor_role, action_type,
                description, metadata, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.subject_id,
                entry.actor_id,
                entry.actor_role,
                entry.action_type,
                entry.description,
                json.dumps(entry.metadata, sort_keys=True, default=str),
                entry.created_at,
            ),
        )

    def has_activity_prefixed(self, subject_id: str, prefixes: tuple[str, ...]) -> bool:
        """True if any entry for ``subject_id`` has an action type in ``prefixes``."""
        clause = " OR ".join("substr(action_type, 1, ?) = ?" for _ in prefixes)
        params: list[object] = [subject_id]
        for prefix in prefixes:
            params.extend((len(prefix), prefix))
        row = self.fetch_one(
            f"SELECT 1 FROM activity_logs WHERE subject_id = ? AND ({clause}) LIMIT 1",
            tuple(params),
        )
        return row is not None

    def list_activity(
        self,
        subject_id: str,
        limit: int,
        offset: int,
    ) -> tuple[list[ActivityLogEntry], int]:
        with self._lock:
            total = self._conn.execute(
                "SELECT COUNT(*) FROM activity_logs WHERE subject_id = ?", (subject_id,)
            ).fetchone()[0]
            rows = self._conn.execute(
                "SELECT * FROM activity_logs WHERE subject_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (subject_id, limit, offset),
            ).fetchall()
        entries = []
        for row in rows:
            data = dict(row)
            data["metadata"] = json.loads(data["metadata"])
            entries.append(ActivityLogEntry(**data))
        return entries, total

    # Verification status

    def upsert_verification(self, record: VerificationRecord) -> None:
        self.execute(
            """
            INSERT INTO verification_status (user_id, outcome, similarity, field_count, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                outcome = excluded.outcome,
                similarity = excluded.similarity,
                field_count = excluded.field_count,
                updated_at = excluded.updated_at
            """,
            (
                record.user_id,
                record.outcome,
                record.similarity,
                record.field_count,
                record.updated_at,
            ),
        )

    def get_verification(self, user_id: str) -> VerificationRecord | None:
        row = self.fetch_one("SELECT * FROM verification_status WHERE user_id = ?", (user_id,))
        if row is None:
            return None
        return VerificationRecord(**dict(row))

    def list_verifications_by_outcome(self, outcome: str) -> list[VerificationRecord]:
        rows = self.fetch_all(
            "SELECT * FROM verification_status WHERE outcome = ? ORDER BY updated_at ASC",
            (outcome,),
        )
        return [VerificationRecord(**dict(row)) for row in rows]
