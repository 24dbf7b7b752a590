"""Tests for the audit trail."""
import json

import pytest

from mcp_router_acl.utils.audit_log import (
    ChangeRecord,
    ChangeTracker,
    get_recent_changes,
    setup_audit_logging,
)


@pytest.fixture
def audit_file(tmp_path):
    return setup_audit_logging(str(tmp_path))


class TestChangeTracker:
    """Tests for writing audit records."""

    def test_record_written_as_json_line(self, audit_file):
        record = ChangeTracker("rtx-edge").log_change(
            "acl_create", "ip:web", {"name": "web"}, success=True,
            changes=["define 100"], after_state={"name": "web"},
        )

        lines = audit_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["identity"] == "ip:web"
        assert data["changes"] == ["define 100"]
        assert data["timestamp"] == record.timestamp

    def test_setup_redirects_trail(self, tmp_path):
        first = setup_audit_logging(str(tmp_path / "a"))
        second = setup_audit_logging(str(tmp_path / "b"))
        ChangeTracker("rtx").log_change("acl_delete", "ip:web", {}, success=True)

        assert second.read_text(encoding="utf-8")
        assert not first.exists() or first.read_text(encoding="utf-8") == ""


class TestGetRecentChanges:
    """Tests for reading the audit trail back."""

    def write(self, device_id, operation, identity, success=True):
        ChangeTracker(device_id).log_change(operation, identity, {}, success=success)

    def test_newest_first_with_limit(self, audit_file):
        for name in ("a", "b", "c"):
            self.write("rtx", "acl_create", f"ip:{name}")

        records = get_recent_changes(log_file=str(audit_file), limit=2)
        assert [r.identity for r in records] == ["ip:c", "ip:b"]

    def test_filters(self, audit_file):
        self.write("rtx-edge", "acl_create", "ip:web")
        self.write("rtx-edge", "apply_set", "ip:lan1:in")
        self.write("rtx-branch", "acl_create", "ip:web")

        assert len(get_recent_changes(log_file=str(audit_file), device_id="rtx-edge")) == 2
        assert len(get_recent_changes(log_file=str(audit_file), identity="ip:web")) == 2
        only = get_recent_changes(log_file=str(audit_file), operation="apply_set")
        assert [r.identity for r in only] == ["ip:lan1:in"]

    def test_limit_applies_after_filtering(self, audit_file):
        self.write("rtx-edge", "acl_create", "ip:web")
        for _ in range(3):
            self.write("rtx-branch", "acl_update", "ip:web")

        records = get_recent_changes(log_file=str(audit_file), device_id="rtx-edge", limit=1)
        assert [r.device_id for r in records] == ["rtx-edge"]

    def test_malformed_lines_skipped(self, audit_file):
        self.write("rtx", "acl_create", "ip:web")
        with audit_file.open("a", encoding="utf-8") as f:
            f.write("not json\n\n{\"unexpected\": 1}\n")

        assert [r.identity for r in get_recent_changes(log_file=str(audit_file))] == ["ip:web"]

    def test_missing_file(self, tmp_path):
        assert get_recent_changes(log_file=str(tmp_path / "none.log")) == []


class TestChangeRecord:
    """Tests for ChangeRecord helpers."""

    def test_parse_blank(self):
        assert ChangeRecord.parse("   \n") is None

    def test_summary_drops_snapshots(self):
        record = ChangeRecord(
            timestamp="2024-01-01T00:00:00+00:00", device_id="rtx", operation="acl_update",
            identity="ip:web", dry_run=False, success=False, parameters={"name": "web"},
            before_state={"name": "web"}, error="define 30 rejected",
        )
        summary = record.summary()
        assert "before_state" not in summary
        assert "parameters" not in summary
        assert summary["error"] == "define 30 rejected"
