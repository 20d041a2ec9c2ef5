"""
Persistence: the SQLite key-value store, reload/repair of yard state, the
movement log, and best-effort writes.
"""

import sqlite3
from datetime import datetime

import pytest

from yard import KEYS, SlotFull, Status, Yard, slot_signature

FIRST = "A-R01-C01"


def test_get_put_roundtrip(db_store):
    assert db_store.get("missing", {}) == {}
    db_store.put("k", {"a": [1, 2]})
    assert db_store.get("k") == {"a": [1, 2]}
    db_store.put("k", ["replaced"])
    assert db_store.get("k") == ["replaced"]
    db_store.delete("k")
    assert db_store.get("k", "default") == "default"


def test_malformed_json_falls_back_to_default(db_store):
    with db_store.lock:
        db_store.conn.execute("INSERT INTO kv (key, value) VALUES (?, ?)", ("bad", "{not json"))
        db_store.conn.commit()
    assert db_store.get("bad", []) == []


def test_yard_state_survives_reload(db_store, records):
    y = Yard(store=db_store)
    ids = y.ingest(records[:5])
    y.auto_place(3)
    y.acknowledge()
    y.reorder(FIRST, 0, 1)

    again = Yard(store=db_store)
    assert again.inbound == y.inbound
    assert again.layout == y.layout
    assert again.baseline == y.baseline
    assert {cid: c.to_dict() for cid, c in again.containers.items()} == \
        {cid: c.to_dict() for cid, c in y.containers.items()}
    assert again.changed_slots() == {FIRST}
    assert again.stack(FIRST) == [ids[1], ids[0]]


def test_failed_move_is_not_persisted(db_store, records):
    y = Yard(store=db_store)
    ids = y.ingest(records[:3])
    y.auto_place(2)
    stored = db_store.get(KEYS["layout"])
    with pytest.raises(SlotFull):
        y.move(ids[2], FIRST)
    assert db_store.get(KEYS["layout"]) == stored
    assert Yard(store=db_store).inbound == [ids[2]]


def test_missing_slots_are_restored_empty(memory_store):
    memory_store.put(KEYS["layout"], {"A-R01-C01": []})
    y = Yard(store=memory_store)
    assert set(y.layout) == set(y.slots)
    assert all(stack == [] for stack in y.layout.values())


def test_wrong_types_fall_back_to_empty(memory_store):
    memory_store.put(KEYS["containers"], ["not", "a", "dict"])
    memory_store.put(KEYS["inbound"], {"not": "a list"})
    memory_store.put(KEYS["layout"], "garbage")
    memory_store.put(KEYS["baseline"], 7)
    y = Yard(store=memory_store)
    assert y.is_empty()
    assert y.baseline == {}


def test_load_reconciles_inconsistent_state(memory_store, caplog):
    def record(cid, status="IN_YARD", slot=FIRST):
        return {"id": cid, "status": status, "slotId": slot}

    memory_store.put(KEYS["containers"], {
        "CONT-1": record("CONT-1"),
        "CONT-2": record("CONT-2"),
        "CONT-3": record("CONT-3"),
        "CONT-4": record("CONT-4", "INBOUND", None),
        "CONT-5": record("CONT-5", "IN_YARD", "A-R01-C02"),
    })
    memory_store.put(KEYS["layout"], {
        # over capacity, plus an id with no record
        FIRST: ["CONT-1", "CONT-2", "CONT-3", "CONT-GHOST"],
        # duplicate of a container already in FIRST
        "A-R01-C02": ["CONT-1"],
        # slot outside the grid
        "Z-R01-C01": ["CONT-5"],
    })
    memory_store.put(KEYS["inbound"], ["CONT-4", "CONT-1"])

    y = Yard(store=memory_store)

    assert y.check_invariants() == []
    assert y.stack(FIRST) == ["CONT-1", "CONT-2"]
    assert y.stack("A-R01-C02") == []
    assert set(y.inbound) == {"CONT-3", "CONT-4", "CONT-5"}
    assert y.get("CONT-3").status == Status.INBOUND
    assert y.get("CONT-5").slot_id is None
    assert "over capacity" in caplog.text
    assert "Invariant violated" not in caplog.text


def test_baseline_for_vanished_slot_reports_change(memory_store):
    memory_store.put(KEYS["baseline"], {"Z-R01-C01": "CONT-9"})
    y = Yard(store=memory_store)
    assert y.changed_slots() == {"Z-R01-C01"}
    y.acknowledge()
    assert y.changed_slots() == set()
    assert memory_store.get(KEYS["baseline"]) == {s: "" for s in y.slots}


def test_movement_log(db_store, records):
    y = Yard(store=db_store)
    ids = y.ingest(records[:2])
    y.auto_place(1)
    y.move(ids[1], "B-R01-C01")
    y.evict("B-R01-C01", ids[1])

    df = db_store.query_movements(ids[1])
    assert list(df["stage"]) == ["Evicted", "Moved", "Inbound"]
    assert list(df["slot_id"]) == ["B-R01-C01", "B-R01-C01", ""]

    assert len(db_store.movements_frame()) == 5
    assert len(db_store.query_movements(limit=2)) == 2
    db_store.clear_movements()
    assert db_store.movements_frame().empty


def test_memory_store_movement_log(memory_store, records):
    y = Yard(store=memory_store)
    (cid,) = y.ingest(records[:1])
    y.auto_place(1)
    df = memory_store.query_movements(cid)
    assert list(df["stage"]) == ["Placed", "Inbound"]
    assert df["slot_id"].iloc[0] == FIRST


class BrokenStore:
    """Accepts reads, fails every write."""

    def get(self, key, default=None):
        return default

    def put(self, key, value):
        raise sqlite3.OperationalError("disk I/O error")

    def log_movement(self, container_id, stage, slot_id=""):
        raise sqlite3.OperationalError("disk I/O error")


def test_persistence_failure_keeps_in_memory_commit(records, caplog):
    y = Yard(store=BrokenStore())
    ids = y.ingest(records[:2])
    assert y.auto_place(2) == 2
    y.acknowledge()

    assert y.stack(FIRST) == ids
    assert y.baseline[FIRST] == slot_signature(ids)
    assert "Failed to persist" in caplog.text


def test_dated_feed_record_is_persisted_in_full(memory_store):
    y = Yard(store=memory_store)
    (cid,) = y.ingest([{"moveInDate": datetime(2024, 1, 1)}])

    assert memory_store.get(KEYS["inbound"]) == [cid]
    assert memory_store.get(KEYS["containers"])[cid]["moveInDate"] == "2024-01-01T00:00:00"
    assert list(memory_store.query_movements(cid)["stage"]) == ["Inbound"]
    assert Yard(store=memory_store).inbound == [cid]


class UnserializableStore(BrokenStore):
    """Fails the way json.dumps does on a value it cannot encode."""

    def put(self, key, value):
        raise TypeError("Object of type set is not JSON serializable")

    def log_movement(self, container_id, stage, slot_id=""):
        raise ValueError("bad value")


def test_encoding_failure_does_not_escape_commit(records, caplog):
    y = Yard(store=UnserializableStore())
    ids = y.ingest(records[:2])
    assert y.inbound == list(reversed(ids))
    assert "Failed to persist yard.containers.v1" in caplog.text
    assert "Failed to persist yard.layout.v1" in caplog.text
    assert "Failed to log movement" in caplog.text


def test_reset_removes_stored_entries(memory_store, records):
    y = Yard(store=memory_store)
    y.ingest(records[:3])
    y.auto_place(2)
    y.acknowledge()
    y.reset()

    for key in KEYS.values():
        assert memory_store.get(key) is None
    assert Yard(store=memory_store).is_empty()


def test_reset_removes_sqlite_entries(db_store, records):
    y = Yard(store=db_store)
    y.ingest(records[:2])
    y.reset()
    assert db_store.get(KEYS["containers"], "gone") == "gone"
    assert Yard(store=db_store).is_empty()


def test_clean_load_logs_no_invariant_warnings(db_store, records, caplog):
    y = Yard(store=db_store)
    y.ingest(records[:3])
    y.auto_place(3)
    Yard(store=db_store)
    assert "Invariant violated" not in caplog.text
