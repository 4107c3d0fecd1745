from pathlib import Path

import pytest

from converge_automation.errors import ReconcileError
from converge_automation.executors import LocalExecutor
from converge_automation.operations.cron import CronOperation
from converge_automation.types import HostConfig


def build_executor() -> LocalExecutor:
    return LocalExecutor(HostConfig(name="local"), dry_run=False)


def test_cron_creates_entry_file(tmp_path: Path) -> None:
    op = CronOperation(
        {
            "name": "backup company_db",
            "schedule": "0 2 * * *",
            "user": "postgres",
            "command": "pg_dump company_db > /var/backups/company_db.sql",
            "cron_dir": str(tmp_path),
        }
    )

    result = op.apply(HostConfig("db1"), build_executor())

    target = tmp_path / "backup-company_db"
    assert result.changed is True
    assert result.details == "created"
    assert target.read_text() == (
        "# converge: backup company_db\n"
        "0 2 * * * postgres pg_dump company_db > /var/backups/company_db.sql\n"
    )


def test_cron_is_idempotent_and_updates(tmp_path: Path) -> None:
    spec = {"name": "cleanup", "minute": "30", "hour": "4", "command": "/usr/local/bin/cleanup", "cron_dir": str(tmp_path)}
    CronOperation(spec).apply(HostConfig("db1"), build_executor())

    again = CronOperation(spec).apply(HostConfig("db1"), build_executor())
    updated = CronOperation({**spec, "hour": "5"}).apply(HostConfig("db1"), build_executor())

    assert again.changed is False
    assert updated.details == "updated"
    assert "30 5 * * * root /usr/local/bin/cleanup" in (tmp_path / "cleanup").read_text()


def test_cron_env_lines(tmp_path: Path) -> None:
    op = CronOperation(
        {
            "name": "report",
            "schedule": "0 6 * * *",
            "command": "run-report",
            "env": {"MAILTO": "ops@example.com"},
            "cron_dir": str(tmp_path),
        }
    )

    assert "MAILTO=ops@example.com\n" in op.render()


def test_cron_absent_removes(tmp_path: Path) -> None:
    (tmp_path / "cleanup").write_text("# converge: cleanup\n0 4 * * * root /usr/local/bin/cleanup\n")
    op = CronOperation({"name": "cleanup", "state": "absent", "cron_dir": str(tmp_path)})

    assert op.apply(HostConfig("db1"), build_executor()).details == "removed"
    assert op.apply(HostConfig("db1"), build_executor()).changed is False


def test_cron_names_sharing_a_file_conflict(tmp_path: Path) -> None:
    first = {"name": "backup db", "schedule": "0 2 * * *", "command": "backup", "cron_dir": str(tmp_path)}
    second = {**first, "name": "backup-db", "schedule": "0 3 * * *"}
    CronOperation(first).apply(HostConfig("db1"), build_executor())

    with pytest.raises(ReconcileError) as excinfo:
        CronOperation(second).apply(HostConfig("db1"), build_executor())

    assert excinfo.value.kind == "cron-name-conflict"
    assert CronOperation(first).apply(HostConfig("db1"), build_executor()).changed is False


def test_cron_absent_leaves_foreign_file(tmp_path: Path) -> None:
    (tmp_path / "backup-db").write_text("# converge: backup db\n0 2 * * * root backup\n")
    op = CronOperation({"name": "backup-db", "state": "absent", "cron_dir": str(tmp_path)})

    assert op.apply(HostConfig("db1"), build_executor()).changed is False
    assert (tmp_path / "backup-db").exists()


def test_cron_file_name_drops_dots():
    assert CronOperation.file_name("backup db.example.com") == "backup-db-example-com"


@pytest.mark.parametrize(
    "spec",
    [
        {"command": "true"},
        {"name": "x"},
        {"name": "x", "command": "true", "schedule": "* * *"},
        {"name": "...", "command": "true"},
    ],
)
def test_cron_rejects_invalid_spec(spec):
    with pytest.raises(ValueError):
        CronOperation(spec)
