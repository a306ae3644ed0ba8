from __future__ import annotations

import sqlite3
from dataclasses import replace

import pytest

from trustate.store.db import ConstraintViolation, SqliteStore
from trustate.store.models import (
    ActivityLogEntry,
    NexusLink,
    PairingRequest,
    VerificationRecord,
)


def _nexus(store: SqliteStore, broker_id: str = "broker-1", code: str = "ABCD1234") -> NexusLink:
    link = NexusLink(broker_id, code, "SECRET", "2024-01-01T00:00:00Z")
    store.create_nexus(link)
    return link


def _request(
    request_id: str,
    agent_id: str = "agent-1",
    broker_id: str = "broker-1",
    status: str = "pending",
    created_at: str = "2024-01-01T00:00:00Z",
) -> PairingRequest:
    return PairingRequest(request_id, agent_id, broker_id, status, created_at)


def test_nexus_lookup_by_code_and_broker(store: SqliteStore) -> None:
    link = _nexus(store)
    assert store.get_nexus_by_code("ABCD1234") == link
    assert store.get_nexus_by_broker("broker-1") == link
    assert store.get_nexus_by_code("ZZZZ9999") is None


def test_nexus_code_is_unique(store: SqliteStore) -> None:
    _nexus(store)
    with pytest.raises(ConstraintViolation):
        _nexus(store, broker_id="broker-2")


def test_one_active_request_per_agent(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1"))
    with pytest.raises(ConstraintViolation):
        store.create_pairing_request(_request("req-2"))


def test_terminal_requests_do_not_block_new_ones(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1", status="rejected"))
    store.create_pairing_request(_request("req-2", status="cancelled"))
    store.create_pairing_request(_request("req-3"))
    assert store.get_pairing_request("req-3").status == "pending"


def test_accepted_request_blocks_new_pending(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1", status="accepted"))
    with pytest.raises(ConstraintViolation):
        store.create_pairing_request(_request("req-2"))


def test_resolve_pending_request_is_conditional(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1"))

    assert store.resolve_pending_request("req-1", "broker-2", "accepted", "t1") is None
    updated = store.resolve_pending_request("req-1", "broker-1", "accepted", "t1")
    assert updated.status == "accepted"
    assert updated.responded_at == "t1"
    # Already resolved
    assert store.resolve_pending_request("req-1", "broker-1", "rejected", "t2") is None
    assert store.get_pairing_request("req-1").status == "accepted"


def test_cancel_pending_request_records_pardon(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1"))
    assert store.pardon_used("agent-1") is False

    cancelled = store.cancel_pending_request("agent-1", "t1")

    assert cancelled.id == "req-1"
    assert cancelled.status == "cancelled"
    assert store.pardon_used("agent-1") is True
    row = store.fetch_one("SELECT * FROM pairing_pardons WHERE agent_id = ?", ("agent-1",))
    assert row["request_id"] == "req-1"


def test_cancel_without_pending_request_is_noop(store: SqliteStore) -> None:
    assert store.cancel_pending_request("agent-1", "t1") is None
    assert store.pardon_used("agent-1") is False


def test_second_cancel_violates_pardon(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1"))
    store.cancel_pending_request("agent-1", "t1")
    store.create_pairing_request(_request("req-2"))

    with pytest.raises(ConstraintViolation):
        store.cancel_pending_request("agent-1", "t2")
    assert store.get_pairing_request("req-2").status == "pending"


def test_agent_has_status(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1", status="rejected"))
    assert store.agent_has_status("agent-1", "accepted") is False
    store.create_pairing_request(_request("req-2", status="accepted"))
    assert store.agent_has_status("agent-1", "accepted") is True


def test_list_requests_newest_first(store: SqliteStore) -> None:
    _nexus(store)
    store.create_pairing_request(_request("req-1", agent_id="a1", created_at="2024-01-01"))
    store.create_pairing_request(_request("req-2", agent_id="a2", created_at="2024-01-02"))
    assert [r.id for r in store.list_requests_for_broker("broker-1")] == ["req-2", "req-1"]
    assert [r.id for r in store.list_requests_for_agent("a1")] == ["req-1"]


def _entry(entry_id: str, created_at: str, subject_id: str = "tx-1") -> ActivityLogEntry:
    return ActivityLogEntry(
        id=entry_id,
        subject_id=subject_id,
        actor_id="user-1",
        actor_role="agent",
        action_type="note",
        description="something happened",
        metadata={"n": entry_id},
        created_at=created_at,
    )


def test_activity_pagination_orders_newest_first(store: SqliteStore) -> None:
    for i in range(5):
        store.append_activity(_entry(f"e{i}", f"2024-01-0{i + 1}"))
    store.append_activity(_entry("other", "2024-02-01", subject_id="tx-2"))

    entries, total = store.list_activity("tx-1", limit=2, offset=0)
    assert total == 5
    assert [e.id for e in entries] == ["e4", "e3"]
    assert entries[0].metadata == {"n": "e4"}

    entries, _ = store.list_activity("tx-1", limit=2, offset=4)
    assert [e.id for e in entries] == ["e0"]



def test_has_activity_prefixed(store: SqliteStore) -> None:
    store.append_activity(_entry("e1", "2024-01-01"))
    assert not store.has_activity_prefixed("tx-1", ("pairing_", "verification_"))

    entry = _entry("e2", "2024-01-02", subject_id="agent-1")
    store.append_activity(replace(entry, action_type="pairing_requested"))
    assert store.has_activity_prefixed("agent-1", ("pairing_", "verification_"))
    assert not store.has_activity_prefixed("agent-1", ("verification_",))
    # "_" must match literally, not as a LIKE wildcard
    store.append_activity(replace(_entry("e3", "2024-01-03", "tx-9"), action_type="pairingX"))
    assert not store.has_activity_prefixed("tx-9", ("pairing_",))


@pytest.mark.parametrize(
    "statement",
    [
        "UPDATE activity_logs SET description = 'edited'",
        "DELETE FROM activity_logs",
    ],
)
def test_activity_log_is_append_only(store: SqliteStore, statement: str) -> None:
    store.append_activity(_entry("e1", "2024-01-01"))
    with pytest.raises((ConstraintViolation, sqlite3.DatabaseError)):
        store.execute(statement, ())
    entries, total = store.list_activity("tx-1", limit=10, offset=0)
    assert total == 1
    assert entries[0].description == "something happened"


def test_verification_upsert_and_queue(store: SqliteStore) -> None:
    store.upsert_verification(VerificationRecord("u1", "review", 85.0, 3, "t1"))
    store.upsert_verification(VerificationRecord("u2", "review", 82.0, 1, "t2"))
    assert [r.user_id for r in store.list_verifications_by_outcome("review")] == ["u1", "u2"]

    store.upsert_verification(VerificationRecord("u1", "verified", 95.0, 3, "t3"))
    assert store.get_verification("u1").outcome == "verified"
    assert [r.user_id for r in store.list_verifications_by_outcome("review")] == ["u2"]


def test_in_memory_store() -> None:
    memory_store = SqliteStore(":memory:", wal=False)
    try:
        _nexus(memory_store)
        assert memory_store.get_nexus_by_broker("broker-1") is not None
    finally:
        memory_store.close()
