"""
Unit tests for the SQLite persistence layer.
"""

from datetime import datetime, timezone

import pytest

from claimdesk.database import Database, parse_iso, to_iso
from claimdesk.error_handler import ValidationError


@pytest.mark.unit
class TestTimestamps:

    def test_to_iso_normalizes_to_utc(self):
        naive = datetime(2025, 3, 12, 15, 0)
        assert to_iso(naive) == "2025-03-12T15:00:00+00:00"
        assert to_iso("2025-03-12") == "2025-03-12"
        assert to_iso(None) is None

    def test_parse_iso(self):
        assert parse_iso("2025-03-12T15:00:00Z") == datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)
        assert parse_iso("2025-03-12") == datetime(2025, 3, 12, tzinfo=timezone.utc)
        assert parse_iso("") is None
        assert parse_iso(None) is None


@pytest.mark.unit
class TestCrud:

    def test_insert_fills_id_and_timestamps(self, db):
        row = db.insert("claims", {"claim_number": "FC-1", "is_closed": False})
        assert row["id"]
        assert row["created_at"] == row["updated_at"]
        assert row["is_closed"] == 0

    def test_json_columns_round_trip(self, db):
        automation = db.insert("automations", {
            "name": "Welcome",
            "trigger_type": "manual",
            "trigger_config": {"status": "New"},
            "actions": [{"type": "send_email", "config": {"recipient_type": "policyholder"}}],
        })
        fetched = db.get("automations", automation["id"])
        assert fetched["trigger_config"] == {"status": "New"}
        assert fetched["actions"][0]["type"] == "send_email"

    def test_update_refreshes_updated_at(self, db):
        row = db.insert("claims", {"claim_number": "FC-1", "updated_at": "2020-01-01T00:00:00+00:00"})
        updated = db.update("claims", row["id"], {"status": "Open"})
        assert updated["status"] == "Open"
        assert updated["updated_at"] > "2020-01-01T00:00:00+00:00"

    def test_update_keeps_explicit_updated_at(self, db):
        row = db.insert("claims", {"claim_number": "FC-1"})
        updated = db.update("claims", row["id"], {"updated_at": "2024-06-01T00:00:00+00:00"})
        assert updated["updated_at"] == "2024-06-01T00:00:00+00:00"

    def test_upsert_updates_existing_row(self, db):
        first = db.upsert("claim_automations", {"claim_id": "c1", "follow_up_enabled": True}, on_conflict="claim_id")
        second = db.upsert("claim_automations", {"claim_id": "c1", "follow_up_max_count": 9}, on_conflict="claim_id")
        assert first["id"] == second["id"]
        assert second["follow_up_enabled"] == 1
        assert second["follow_up_max_count"] == 9
        assert db.count("claim_automations") == 1

    def test_delete(self, db):
        row = db.insert("notes", {"claim_id": "c1", "content": "hello"})
        assert db.delete("notes", row["id"]) is True
        assert db.delete("notes", row["id"]) is False
        assert db.get("notes", row["id"]) is None

    def test_get_without_id(self, db):
        assert db.get("claims", None) is None

    def test_persists_across_instances(self, db, tmp_path):
        db.insert("claims", {"claim_number": "FC-KEEP"})
        reopened = Database(tmp_path / "claimdesk.db")
        assert reopened.count("claims", where={"claim_number": "FC-KEEP"}) == 1


@pytest.mark.unit
class TestQueries:

    def setup_rows(self, db):
        for number, status, amount in (("A", "New", 100.0), ("B", "Open", 250.0), ("C", None, 50.0)):
            db.insert("claims", {"claim_number": number, "status": status, "claim_amount": amount})

    def test_equality_and_null(self, db):
        self.setup_rows(db)
        assert [row["claim_number"] for row in db.select("claims", where={"status": "New"})] == ["A"]
        assert [row["claim_number"] for row in db.select("claims", where={"status": None})] == ["C"]

    def test_operators(self, db):
        self.setup_rows(db)
        numbers = lambda rows: sorted(row["claim_number"] for row in rows)

        assert numbers(db.select("claims", where={"claim_amount": (">", 75)})) == ["A", "B"]
        assert numbers(db.select("claims", where={"status": ("!=", "New")})) == ["B"]
        assert numbers(db.select("claims", where={"status": ("is not", None)})) == ["A", "B"]
        assert numbers(db.select("claims", where={"claim_number": ("in", ["A", "C"])})) == ["A", "C"]
        assert numbers(db.select("claims", where={"status": ("like", "op%")})) == ["B"]
        assert db.select("claims", where={"claim_number": ("in", [])}) == []

    def test_order_and_limit(self, db):
        self.setup_rows(db)
        rows = db.select("claims", order_by="claim_amount", descending=True, limit=2)
        assert [row["claim_number"] for row in rows] == ["B", "A"]
        assert db.select_one("claims", order_by="claim_amount")["claim_number"] == "C"

    def test_select_in_with_extra_filter(self, db):
        self.setup_rows(db)
        rows = db.select_in("claims", "claim_number", ["A", "B"], where={"status": "Open"})
        assert [row["claim_number"] for row in rows] == ["B"]

    def test_latest(self, db):
        db.insert("claim_updates", {"claim_id": "c1", "content": "old", "created_at": "2025-01-01T00:00:00+00:00"})
        db.insert("claim_updates", {"claim_id": "c1", "content": "new", "created_at": "2025-02-01T00:00:00+00:00"})
        db.insert("claim_updates", {"claim_id": "c2", "content": "other", "created_at": "2025-03-01T00:00:00+00:00"})
        assert db.latest("claim_updates", "c1", "created_at")["content"] == "new"
        assert db.latest("claim_updates", "c3", "created_at") is None


@pytest.mark.unit
class TestValidation:

    def test_unknown_table(self, db):
        with pytest.raises(ValidationError):
            db.insert("invoices", {"name": "x"})

    def test_unknown_column(self, db):
        with pytest.raises(ValidationError):
            db.insert("claims", {"claim_numbr": "x"})

    def test_unknown_operator(self, db):
        with pytest.raises(ValidationError):
            db.select("claims", where={"status": ("~", "x")})

    def test_unknown_order_column(self, db):
        with pytest.raises(ValidationError):
            db.select("claims", order_by="created; DROP TABLE claims")
